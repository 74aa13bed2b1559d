"""Locator strategies for the target site's UI.

The target's markup changes without notice, so every element the flow
needs is described by an ordered list of strategies. Surface changes are
handled by editing these lists; the navigation state machine never names
a selector itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from evaluator.services.polling import Deadline, poll_until

logger = logging.getLogger(__name__)

CSS = "css"
ROLE = "role"
TEXT = "text"


@dataclass(frozen=True)
class LocatorStrategy:
    """One way of finding an element: CSS selector, ARIA role, or text."""

    kind: str
    value: str
    name: str | None = None  # accessible name for role strategies

    def resolve(self, page):
        if self.kind == ROLE:
            return page.get_by_role(self.value, name=self.name).first
        if self.kind == TEXT:
            return page.get_by_text(self.value).first
        return page.locator(self.value).first

    def __str__(self) -> str:
        if self.kind == ROLE:
            return f"role={self.value}[name={self.name!r}]"
        if self.kind == TEXT:
            return f"text={self.value!r}"
        return self.value


def css(selector: str) -> LocatorStrategy:
    return LocatorStrategy(CSS, selector)


def role(aria_role: str, name: str) -> LocatorStrategy:
    return LocatorStrategy(ROLE, aria_role, name)


def text(value: str) -> LocatorStrategy:
    return LocatorStrategy(TEXT, value)


# ---------------------------------------------------------------------------
# Strategy lists, most specific first
# ---------------------------------------------------------------------------

CONSENT_BUTTONS = [
    css('button[data-consent="accept"]'),
    css(".js-accept-all"),
    css('[data-test="accept-all"]'),
    css("#acceptAllCookies"),
    role("button", "Accept all"),
    role("button", "Allow all"),
    role("button", "I agree"),
    role("button", "OK"),
    css('button[id*="accept"]'),
    css('button[class*="accept"]'),
    css('button[data-testid*="accept"]'),
    css(".cookie-consent button"),
    css(".cookie-banner button"),
    css("#cookie-consent button"),
    css("[data-cookie-consent] button"),
]

SEARCH_INPUT = [
    css("#productSearch"),
    css('input[name="model"]'),
    css('input[placeholder*="Reference"]'),
    css('input[placeholder*="reference"]'),
    css('input[placeholder*="model"]'),
    css(".wt-product-search-input"),
    role("combobox", "Brand, model, reference number"),
    role("textbox", "Brand, model, reference number"),
]

SUGGESTION_ITEMS = [
    css(".productsearch-menu li"),
    css(".wt-product-search-result-list li"),
    css('[data-test="menu"] li'),
    css(".search-results li"),
    css(".dropdown-menu li"),
    css('[role="listbox"] [role="option"]'),
]

CONDITION_SELECT = [
    css("#condition"),
    css('select[name="condition"]'),
]

DELIVERY_SELECT = [
    css("#scopeOfDelivery"),
    css('select[name="scopeOfDelivery"]'),
]

SUBMIT_BUTTON = [
    css("#calculateStats"),
    css('input[name="calculateStats"]'),
    role("button", "Calculate"),
    css('form button[type="submit"]'),
]

RESULTS_MARKERS = [
    css(".market-value"),
    css(".value-range"),
    css('[class*="market"]'),
    css('[class*="valuation"]'),
    css('input[value="Have it appraised for free"]'),
]

# Anti-bot interstitial markers
CHALLENGE_TITLE_MARKERS = ("just a moment", "security check", "checking your browser", "attention required")
CHALLENGE_TEXT_MARKERS = (
    "verify you are human",
    "checking your browser",
    "checking if the site connection is secure",
    "press & hold",
    "please complete the captcha",
    "enable javascript and cookies to continue",
)
CHALLENGE_ELEMENTS = [
    css('iframe[src*="challenges.cloudflare.com"]'),
    css("#challenge-running"),
    css("#challenge-stage"),
    css(".cf-turnstile"),
    css(".cf-browser-verification"),
    css("#cf-wrapper"),
    css(".cf-challenge"),
]
VERIFICATION_TOKEN_FIELDS = [
    css('input[name="challengeToken"]'),
    css('input[name="cf-turnstile-response"]'),
]
BLOCK_TEXT_MARKERS = ("access denied", "you have been blocked", "error 1020", "request blocked")

# Login form
LOGIN_EMAIL = [css("#email"), css('input[name="email"]'), css('input[type="email"]')]
LOGIN_PASSWORD = [css("#password"), css('input[name="password"]'), css('input[type="password"]')]
LOGIN_STAY_SIGNED_IN = [css("#userLogInPermanently")]
LOGIN_SUBMIT = [css(".js-login-button"), role("button", "Log in"), css('form button[type="submit"]')]
LOGGED_IN_MARKERS = [css('a[href*="/user/"]')]


async def first_visible(page, strategies: list[LocatorStrategy]):
    """Return ``(locator, strategy)`` for the first visible match, else None."""
    for strategy in strategies:
        try:
            locator = strategy.resolve(page)
            if await locator.is_visible():
                return locator, strategy
        except Exception as e:
            logger.debug("Locator %s failed: %s", strategy, e)
    return None


async def first_present(page, strategies: list[LocatorStrategy]):
    """Return ``(locator, strategy)`` for the first attached match, visible or not."""
    for strategy in strategies:
        try:
            locator = strategy.resolve(page)
            if await locator.count() > 0:
                return locator, strategy
        except Exception as e:
            logger.debug("Locator %s failed: %s", strategy, e)
    return None


async def wait_for_first_visible(
    page,
    strategies: list[LocatorStrategy],
    *,
    timeout_ms: int,
    interval_ms: int,
    deadline: Deadline | None = None,
):
    """Poll the strategy list until one matches a visible element.

    Returns ``(locator, strategy)`` or None when the wait is exhausted.
    """
    result = await poll_until(
        lambda: first_visible(page, strategies),
        timeout_ms=timeout_ms,
        interval_ms=interval_ms,
        deadline=deadline,
    )
    if result.satisfied:
        logger.debug("Matched %s after %d attempt(s)", result.value[1], result.attempts)
        return result.value
    return None
