"""Human-timing helpers.

The target fingerprints input cadence, so typing is one key at a time with
a uniform random gap, and clicks are preceded by a hover and a short pause.
"""

import asyncio
import logging
import random

logger = logging.getLogger(__name__)


def random_delay_ms(min_ms: int, max_ms: int) -> int:
    """Uniform integer delay in [min_ms, max_ms]."""
    if max_ms <= min_ms:
        return max(0, min_ms)
    return random.randint(min_ms, max_ms)


async def pause(min_ms: int, max_ms: int) -> None:
    await asyncio.sleep(random_delay_ms(min_ms, max_ms) / 1000)


async def human_type(locator, text: str, min_delay_ms: int, max_delay_ms: int) -> list[int]:
    """Type ``text`` one character at a time. Returns the delays used."""
    delays = []
    for char in text:
        await locator.press_sequentially(char)
        delay = random_delay_ms(min_delay_ms, max_delay_ms)
        delays.append(delay)
        await asyncio.sleep(delay / 1000)
    logger.debug("Typed %d characters with human cadence", len(text))
    return delays


async def human_click(locator, min_pause_ms: int, max_pause_ms: int, timeout_ms: int = 5000) -> None:
    """Hover, wait a moment, then click."""
    try:
        await locator.hover(timeout=timeout_ms)
    except Exception as e:
        # Hover is cosmetic; the click below decides success
        logger.debug("Hover before click failed: %s", e)
    await pause(min_pause_ms, max_pause_ms)
    await locator.click(timeout=timeout_ms)


async def idle_mouse_move(page, width: int, height: int) -> None:
    """Move the pointer somewhere inside the viewport in a few small steps."""
    x = random.uniform(width * 0.2, width * 0.8)
    y = random.uniform(height * 0.2, height * 0.8)
    try:
        await page.mouse.move(x, y, steps=random.randint(3, 8))
    except Exception as e:
        logger.debug("Idle mouse move failed: %s", e)
