"""Anti-bot challenge and cookie-consent handling.

The challenge handler never tries to solve anything. It watches the page
for either the interstitial going away or the hidden verification token
being populated, keeping the pointer moving meanwhile so the session does
not look idle. Whether a timeout aborts the evaluation is an explicit,
configured policy.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from evaluator.config import Settings
from evaluator.core.exceptions import ChallengeTimeoutError
from evaluator.core.metrics import challenge_outcomes_total
from evaluator.services import locators
from evaluator.services.human import human_click, idle_mouse_move
from evaluator.services.polling import Deadline, poll_until

logger = logging.getLogger(__name__)

POLICY_PROCEED = "proceed"
POLICY_ABORT = "abort"


class ChallengeOutcome(str, Enum):
    RESOLVED = "resolved"
    STILL_PRESENT = "still_present"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ChallengeSignal:
    """One observation of the page's challenge state."""

    marker: str | None  # what identified the challenge, None if nothing did
    token_length: int = 0

    @property
    def active(self) -> bool:
        return self.marker is not None


@dataclass(frozen=True)
class ChallengeReport:
    outcome: ChallengeOutcome
    signal: ChallengeSignal
    attempts: int
    elapsed_ms: int

    @property
    def resolved(self) -> bool:
        return self.outcome == ChallengeOutcome.RESOLVED


async def _body_text(page) -> str:
    try:
        return await page.evaluate(
            "() => (document.body && document.body.innerText || '').substring(0, 2000)"
        )
    except Exception:
        return ""


async def verification_token_length(page) -> int:
    """Length of the hidden verification token, 0 if the field is absent."""
    found = await locators.first_present(page, locators.VERIFICATION_TOKEN_FIELDS)
    if not found:
        return 0
    locator, _ = found
    try:
        value = await locator.input_value(timeout=1000)
    except Exception as e:
        logger.debug("Could not read verification token: %s", e)
        return 0
    return len((value or "").strip())


async def detect_challenge(page) -> ChallengeSignal:
    """Observe title, body text and challenge widgets once."""
    token_length = await verification_token_length(page)

    try:
        title = (await page.title()).lower()
    except Exception:
        title = ""
    for marker in locators.CHALLENGE_TITLE_MARKERS:
        if marker in title:
            return ChallengeSignal(f"title:{marker}", token_length)

    found = await locators.first_visible(page, locators.CHALLENGE_ELEMENTS)
    if found:
        return ChallengeSignal(f"element:{found[1]}", token_length)

    body = (await _body_text(page)).lower()
    for marker in locators.CHALLENGE_TEXT_MARKERS:
        if marker in body:
            return ChallengeSignal(f"text:{marker}", token_length)

    return ChallengeSignal(None, token_length)


async def detect_block(page) -> str | None:
    """Return the marker of a hard block page (not a solvable challenge)."""
    body = (await _body_text(page)).lower()
    for marker in locators.BLOCK_TEXT_MARKERS:
        if marker in body:
            return marker
    signal = await detect_challenge(page)
    return signal.marker


class ChallengeHandler:
    """Waits out interstitial challenges on one page."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _satisfied(self, signal: ChallengeSignal) -> bool:
        return (
            not signal.active
            or signal.token_length >= self.settings.CHALLENGE_TOKEN_MIN_LENGTH
        )

    async def resolve_challenges(
        self,
        session,
        budget_ms: int,
        deadline: Deadline | None = None,
    ) -> ChallengeReport:
        """Poll until the challenge clears or ``budget_ms`` elapses.

        A zero budget is a single observation: the result is RESOLVED or
        STILL_PRESENT. A positive budget ends RESOLVED or TIMED_OUT.
        """
        page = session.page
        viewport = session.profile.viewport
        last = ChallengeSignal(None)

        async def check():
            nonlocal last
            last = await detect_challenge(page)
            return self._satisfied(last)

        async def keep_busy(attempt: int):
            if attempt == 1:
                logger.warning("Challenge detected (%s), waiting for it to clear", last.marker)
            await idle_mouse_move(page, viewport.width, viewport.height)

        result = await poll_until(
            check,
            timeout_ms=budget_ms,
            interval_ms=self.settings.CHALLENGE_POLL_INTERVAL_MS,
            deadline=deadline,
            on_tick=keep_busy,
        )

        if result.satisfied:
            outcome = ChallengeOutcome.RESOLVED
        elif budget_ms <= 0:
            outcome = ChallengeOutcome.STILL_PRESENT
        else:
            outcome = ChallengeOutcome.TIMED_OUT

        challenge_outcomes_total.labels(outcome=outcome.value).inc()
        report = ChallengeReport(outcome, last, result.attempts, result.elapsed_ms)
        if report.resolved:
            if result.attempts > 1:
                logger.info(
                    "Challenge cleared after %d polls (%dms, token length %d)",
                    result.attempts,
                    result.elapsed_ms,
                    last.token_length,
                )
        else:
            logger.warning(
                "Challenge %s after %dms: marker=%s, last token length=%d (min %d)",
                outcome.value,
                result.elapsed_ms,
                last.marker,
                last.token_length,
                self.settings.CHALLENGE_TOKEN_MIN_LENGTH,
            )
        return report

    def apply_policy(self, report: ChallengeReport) -> None:
        """Abort or proceed on an unresolved challenge, per configuration."""
        if report.resolved:
            return
        if self.settings.CHALLENGE_TIMEOUT_POLICY == POLICY_ABORT:
            logger.error(
                "Aborting: challenge unresolved (policy=abort, token length %d)",
                report.signal.token_length,
            )
            raise ChallengeTimeoutError(
                f"Challenge unresolved after {report.elapsed_ms}ms ({report.signal.marker})",
                token_length=report.signal.token_length,
            )
        logger.warning(
            "Proceeding despite unresolved challenge (policy=proceed, token length %d)",
            report.signal.token_length,
        )


class ConsentResolver:
    """Dismisses the cookie-consent overlay if one is showing."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def resolve(
        self, page, deadline: Deadline | None = None, wait_ms: int | None = None
    ) -> bool:
        """Click the first visible consent button.

        Waits ``wait_ms`` (default ``CONSENT_WAIT_MS``) for an overlay.
        Returns True when a button was clicked, False when no overlay
        showed up within the wait (already accepted or never shown).
        """
        found = await locators.wait_for_first_visible(
            page,
            locators.CONSENT_BUTTONS,
            timeout_ms=self.settings.CONSENT_WAIT_MS if wait_ms is None else wait_ms,
            interval_ms=self.settings.POLL_INTERVAL_MS,
            deadline=deadline,
        )
        if not found:
            logger.info("No cookie consent overlay shown")
            return False

        locator, strategy = found
        try:
            await human_click(
                locator,
                self.settings.ACTION_DELAY_MIN_MS,
                self.settings.ACTION_DELAY_MAX_MS,
            )
        except Exception as e:
            # Overlay vanished between detection and click
            logger.warning("Consent button %s could not be clicked: %s", strategy, e)
            return False
        logger.info("Cookie consent accepted via %s", strategy)
        return True
