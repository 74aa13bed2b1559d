"""Per-evaluation browser session.

One session owns one Chromium process, one context and one page. It is
created for a single evaluation, never pooled, and released exactly once
by whoever opened it. The stealth profile is fully applied to the context
(headers, geolocation, locale, viewport, init script) before the page is
created, so the first request already carries it.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from evaluator.config import Settings
from evaluator.core.exceptions import SessionStartError
from evaluator.core.metrics import active_browser_sessions
from evaluator.services.stealth import CHROMIUM_ARGS, StealthProfile, build_stealth_script

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request interception: ad/tracking domains never affect the valuation
# ---------------------------------------------------------------------------

BLOCKED_DOMAINS = frozenset(
    {
        "doubleclick.net",
        "googlesyndication.com",
        "googletagservices.com",
        "amazon-adsystem.com",
        "adnxs.com",
        "criteo.com",
        "criteo.net",
        "outbrain.com",
        "taboola.com",
        "hotjar.com",
        "fullstory.com",
        "mouseflow.com",
    }
)


async def _block_trackers(route, request):
    """Abort requests to known ad/tracking domains."""
    url = request.url
    try:
        after_scheme = url.split("//", 1)[1]
        hostname = after_scheme.split("/", 1)[0].split(":")[0].lower()
    except (IndexError, ValueError):
        await route.continue_()
        return

    for domain in BLOCKED_DOMAINS:
        if domain in hostname:
            await route.abort()
            return

    await route.continue_()


class BrowserSession:
    """An exclusively-owned browser/context/page triple."""

    def __init__(
        self,
        profile: StealthProfile,
        playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        deadline_at: datetime | None = None,
        close_timeout: float = 5.0,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.created_at = datetime.now(timezone.utc)
        self.profile = profile
        self.deadline_at = deadline_at
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.close_timeout = close_timeout
        self._closed = False
        self._close_lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Release page, context, browser and driver. Safe to call repeatedly."""
        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            await _release(
                self.playwright, self.browser, self.context, self.page, self.close_timeout
            )
            active_browser_sessions.dec()
            logger.info("Browser session %s closed", self.id)


async def _release(playwright, browser, context, page, timeout: float = 5.0) -> None:
    """Tear down whatever part of a session exists, innermost first.

    Each step runs even if the previous one failed, since a watchdog may
    already have killed the browser underneath us. A step that does not
    finish within ``timeout`` seconds is abandoned so that
    ``playwright.stop()`` still runs and kills the driver process.
    """
    for label, closer in (
        ("page", page.close if page else None),
        ("context", context.close if context else None),
        ("browser", browser.close if browser else None),
        ("playwright", playwright.stop if playwright else None),
    ):
        if closer is None:
            continue
        try:
            await asyncio.wait_for(closer(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s close did not finish within %.1fs, moving on", label.capitalize(), timeout)
        except (asyncio.CancelledError, Exception) as e:
            logger.debug("Ignoring %s close error: %s", label, e)


async def open_session(
    profile: StealthProfile,
    settings: Settings,
    deadline_at: datetime | None = None,
) -> BrowserSession:
    """Launch an isolated browser and return a session with the profile applied.

    Raises:
        SessionStartError: launch or context creation failed. Anything that
            was already started is released before raising.
    """
    playwright = browser = context = page = None
    try:
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(
            headless=settings.BROWSER_HEADLESS,
            slow_mo=settings.BROWSER_SLOW_MO_MS,
            timeout=settings.BROWSER_LAUNCH_TIMEOUT_MS,
            args=CHROMIUM_ARGS,
        )
        context = await browser.new_context(**profile.context_options())
        context.set_default_navigation_timeout(settings.NAVIGATION_TIMEOUT_MS)
        await context.route("**/*", _block_trackers)
        if profile.automation_markers_suppressed:
            await context.add_init_script(build_stealth_script(profile))
        page = await context.new_page()
    except asyncio.CancelledError:
        await _release(playwright, browser, context, page, settings.BROWSER_CLOSE_TIMEOUT_SECONDS)
        raise
    except Exception as e:
        logger.error("Browser session failed to start: %s", e)
        await _release(playwright, browser, context, page, settings.BROWSER_CLOSE_TIMEOUT_SECONDS)
        raise SessionStartError(f"Browser launch failed: {e}") from e

    session = BrowserSession(
        profile,
        playwright,
        browser,
        context,
        page,
        deadline_at,
        close_timeout=settings.BROWSER_CLOSE_TIMEOUT_SECONDS,
    )
    active_browser_sessions.inc()
    logger.info(
        "Browser session %s opened (headless=%s, tz=%s, locale=%s)",
        session.id,
        settings.BROWSER_HEADLESS,
        profile.timezone_id,
        profile.locale,
    )
    return session
