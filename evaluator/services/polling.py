"""Bounded polling and deadline bookkeeping.

Every wait in the pipeline goes through ``poll_until``: a check is
re-evaluated at a fixed interval until it returns a truthy value or the
budget (clipped to the evaluation deadline) runs out. Nothing here ever
waits without a bound.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from evaluator.core.exceptions import DeadlineExceededError

logger = logging.getLogger(__name__)


class Deadline:
    """Absolute wall-clock limit for one evaluation (monotonic clock)."""

    def __init__(self, seconds: float):
        self.started_at = time.monotonic()
        self.expires_at = self.started_at + max(0.0, seconds)

    @property
    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def remaining_ms(self) -> int:
        return int(self.remaining * 1000)

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def clip_ms(self, budget_ms: int) -> int:
        """Shrink a step budget so it never outlives the deadline."""
        return max(0, min(budget_ms, self.remaining_ms))

    def check(self, where: str = "") -> None:
        if self.expired:
            raise DeadlineExceededError(
                f"Evaluation deadline exceeded{' during ' + where if where else ''}"
            )


@dataclass
class PollResult:
    value: Any
    satisfied: bool
    attempts: int
    elapsed_ms: int


async def poll_until(
    check: Callable[[], Awaitable[Any]],
    *,
    timeout_ms: int,
    interval_ms: int,
    deadline: Deadline | None = None,
    on_tick: Callable[[int], Awaitable[None]] | None = None,
) -> PollResult:
    """Re-run ``check`` until it returns something truthy or time runs out.

    The check always runs at least once, so a zero budget is a single
    observation. ``on_tick`` is awaited between attempts (attempt number
    passed in) and may be used for idle interactions.
    """
    if deadline is not None:
        timeout_ms = deadline.clip_ms(timeout_ms)
    interval = max(0.0, interval_ms / 1000)
    started = time.monotonic()
    ends_at = started + timeout_ms / 1000
    attempts = 0
    value = None

    while True:
        attempts += 1
        value = await check()
        if value:
            return PollResult(value, True, attempts, int((time.monotonic() - started) * 1000))

        now = time.monotonic()
        if now >= ends_at:
            break
        if on_tick is not None:
            await on_tick(attempts)
        await asyncio.sleep(min(interval, max(0.0, ends_at - time.monotonic())))

    return PollResult(value, False, attempts, int((time.monotonic() - started) * 1000))
