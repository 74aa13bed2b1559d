"""Navigation state machine for the valuation form.

Drives one session from a blank page to a rendered valuation:

    Start -> PageLoading -> [ChallengePresent -> ChallengeResolved]
          -> [ConsentPresent] -> ConsentResolved -> [Authenticating -> Authenticated]
          -> SearchReady -> ReferenceEntered -> SuggestionSelected
          -> ConditionSet -> DeliverySet -> Submitted -> ResultsRendered

Every element lookup goes through a strategy list from ``locators``.
Any failure moves the flow to ``Failed`` with the error kind recorded,
and the whole run is bounded by the evaluation deadline.
"""

import logging

from evaluator.config import Settings
from evaluator.core.exceptions import (
    AuthenticationError,
    DeadlineExceededError,
    ElementNotFoundError,
    ErrorKind,
    EvaluationError,
    NavigationError,
    NoSuggestionsError,
    ResultsNotRenderedError,
)
from evaluator.core.metrics import navigation_failures_total
from evaluator.schemas.valuation import NavigationState
from evaluator.services import locators
from evaluator.services.challenge import ChallengeHandler, ConsentResolver, detect_block
from evaluator.services.human import human_click, human_type, pause
from evaluator.services.polling import Deadline

logger = logging.getLogger(__name__)


class NavigationFlow:
    def __init__(
        self,
        session,
        settings: Settings,
        deadline: Deadline,
        challenge_handler: ChallengeHandler | None = None,
        consent_resolver: ConsentResolver | None = None,
    ):
        self.session = session
        self.page = session.page
        self.settings = settings
        self.deadline = deadline
        self.challenges = challenge_handler or ChallengeHandler(settings)
        self.consent = consent_resolver or ConsentResolver(settings)
        self.state = NavigationState.START
        self.history: list[NavigationState] = [NavigationState.START]
        self.failure: ErrorKind | None = None
        self._consent_accepted = False

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _transition(self, state: NavigationState) -> None:
        self.deadline.check(state.value)
        logger.info(
            "Session %s: %s -> %s (%dms)",
            self.session.id,
            self.state.value,
            state.value,
            self.deadline.elapsed_ms,
        )
        self.state = state
        self.history.append(state)

    def _fail(self, error: EvaluationError) -> None:
        if isinstance(error, NavigationError) and error.state is None:
            error.state = self.state
        self.failure = error.kind
        navigation_failures_total.labels(reason=error.kind.value).inc()
        logger.warning(
            "Session %s: %s -> Failed{%s}: %s",
            self.session.id,
            self.state.value,
            error.kind.value,
            error.detail,
        )
        self.state = NavigationState.FAILED
        self.history.append(NavigationState.FAILED)

    def mark_extracted(self) -> None:
        self._transition(NavigationState.EXTRACTED)

    def _wait_ms(self, budget_ms: int) -> int:
        return self.deadline.clip_ms(budget_ms)

    async def _find(self, strategies, budget_ms: int):
        return await locators.wait_for_first_visible(
            self.page,
            strategies,
            timeout_ms=budget_ms,
            interval_ms=self.settings.POLL_INTERVAL_MS,
            deadline=self.deadline,
        )

    async def _action_pause(self) -> None:
        await pause(self.settings.ACTION_DELAY_MIN_MS, self.settings.ACTION_DELAY_MAX_MS)

    async def _click(self, locator) -> None:
        await human_click(
            locator,
            self.settings.ACTION_DELAY_MIN_MS,
            self.settings.ACTION_DELAY_MAX_MS,
            timeout_ms=max(1, self._wait_ms(self.settings.ELEMENT_WAIT_MS)),
        )

    async def _type(self, locator, value: str) -> None:
        await locator.click(timeout=max(1, self._wait_ms(self.settings.ELEMENT_WAIT_MS)))
        await locator.fill("")
        await human_type(
            locator,
            value,
            self.settings.TYPING_DELAY_MIN_MS,
            self.settings.TYPING_DELAY_MAX_MS,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, ref_number: str) -> NavigationState:
        """Drive the flow to ``ResultsRendered`` or raise a classified error."""
        try:
            if self.settings.has_credentials:
                await self._open(self.settings.login_url)
                await self._clear_obstacles()
                await self._authenticate()
            await self._open(self.settings.valuation_url)
            await self._clear_obstacles()
            await self._enter_reference(ref_number)
            await self._select_suggestion(ref_number)
            await self._set_category(
                locators.CONDITION_SELECT,
                self.settings.CONDITION_VALUE,
                NavigationState.CONDITION_SET,
                "condition",
            )
            await self._set_category(
                locators.DELIVERY_SELECT,
                self.settings.DELIVERY_VALUE,
                NavigationState.DELIVERY_SET,
                "scope of delivery",
            )
            await self._submit()
            await self._await_results()
        except EvaluationError as e:
            self._fail(e)
            raise
        except Exception as e:
            if self.deadline.expired:
                err = DeadlineExceededError(f"Deadline exceeded in {self.state.value}: {e}")
            else:
                err = NavigationError(f"Unexpected failure in {self.state.value}: {e}")
            self._fail(err)
            raise err from e
        return self.state

    async def _open(self, url: str) -> None:
        self._transition(NavigationState.PAGE_LOADING)
        await self.page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=max(1, self._wait_ms(self.settings.NAVIGATION_TIMEOUT_MS)),
        )

    async def _clear_challenge(self) -> None:
        report = await self.challenges.resolve_challenges(
            self.session, self.settings.CHALLENGE_BUDGET_MS, self.deadline
        )
        if report.resolved and report.attempts == 1:
            return
        self._transition(NavigationState.CHALLENGE_PRESENT)
        self.challenges.apply_policy(report)
        self._transition(NavigationState.CHALLENGE_RESOLVED)

    async def _clear_obstacles(self) -> None:
        await self._clear_challenge()
        # Once accepted the cookie is set; later pages get a single look
        wait_ms = 0 if self._consent_accepted else None
        if await self.consent.resolve(self.page, self.deadline, wait_ms=wait_ms):
            self._consent_accepted = True
            self._transition(NavigationState.CONSENT_PRESENT)
        self._transition(NavigationState.CONSENT_RESOLVED)

    async def _authenticate(self) -> None:
        self._transition(NavigationState.AUTHENTICATING)

        # An earlier step in this same session may already have signed in
        if await locators.first_visible(self.page, locators.LOGGED_IN_MARKERS):
            logger.info("Session %s already signed in", self.session.id)
            self._transition(NavigationState.AUTHENTICATED)
            return

        email = await self._find(locators.LOGIN_EMAIL, self.settings.ELEMENT_WAIT_MS)
        password = await self._find(locators.LOGIN_PASSWORD, self.settings.ELEMENT_WAIT_MS)
        if not email or not password:
            raise AuthenticationError("Login form not found")

        await self._type(email[0], self.settings.TARGET_EMAIL)
        await self._action_pause()
        await self._type(password[0], self.settings.TARGET_PASSWORD)
        await self._action_pause()

        stay = await locators.first_visible(self.page, locators.LOGIN_STAY_SIGNED_IN)
        if stay:
            await self._click(stay[0])

        submit = await self._find(locators.LOGIN_SUBMIT, self.settings.ELEMENT_WAIT_MS)
        if not submit:
            raise AuthenticationError("Login submit control not found")
        await self._click(submit[0])
        await self._clear_challenge_quietly()

        if not await self._find(locators.LOGGED_IN_MARKERS, self.settings.LOGIN_WAIT_MS):
            raise AuthenticationError("No signed-in marker after login")
        self._transition(NavigationState.AUTHENTICATED)

    async def _clear_challenge_quietly(self) -> None:
        """Challenge wait that does not add states (mid-step navigations)."""
        report = await self.challenges.resolve_challenges(
            self.session, self.settings.CHALLENGE_BUDGET_MS, self.deadline
        )
        self.challenges.apply_policy(report)

    async def _enter_reference(self, ref_number: str) -> None:
        found = await self._find(locators.SEARCH_INPUT, self.settings.ELEMENT_WAIT_MS)
        if not found:
            raise ElementNotFoundError(
                "Reference search input not found", state=self.state
            )
        search_input, strategy = found
        logger.info("Search input matched via %s", strategy)
        self._transition(NavigationState.SEARCH_READY)

        await self._type(search_input, ref_number)
        self._transition(NavigationState.REFERENCE_ENTERED)

    async def _select_suggestion(self, ref_number: str) -> None:
        found = await self._find(locators.SUGGESTION_ITEMS, self.settings.SUGGESTION_WAIT_MS)
        if not found:
            raise NoSuggestionsError(
                f"No suggestions shown for {ref_number}", state=self.state
            )
        suggestion, strategy = found
        logger.info("Selecting first suggestion via %s", strategy)
        await self._click(suggestion)
        self._transition(NavigationState.SUGGESTION_SELECTED)

    async def _set_category(self, strategies, value: str, state: NavigationState, label: str) -> None:
        found = await self._find(strategies, self.settings.ELEMENT_WAIT_MS)
        if not found:
            if self.settings.REQUIRE_CATEGORY_SELECTORS:
                raise ElementNotFoundError(f"{label} selector not found", state=self.state)
            # Absence is benign only when the rest of the form is there
            if not await locators.first_visible(self.page, locators.SUBMIT_BUTTON):
                raise ElementNotFoundError(
                    f"{label} selector and submit control both missing", state=self.state
                )
            logger.warning("No %s selector on the form, continuing without it", label)
            self._transition(state)
            return

        select, strategy = found
        try:
            await select.select_option(
                value, timeout=max(1, self._wait_ms(self.settings.ELEMENT_WAIT_MS))
            )
        except Exception as e:
            raise ElementNotFoundError(
                f"{label} option {value!r} not selectable via {strategy}: {e}",
                state=self.state,
            ) from e
        logger.info("Set %s to %s", label, value)
        await self._action_pause()
        self._transition(state)

    async def _submit(self) -> None:
        # Embedded widgets must have issued their token before the form posts
        await self._clear_challenge_quietly()
        found = await self._find(locators.SUBMIT_BUTTON, self.settings.ELEMENT_WAIT_MS)
        if not found:
            raise ElementNotFoundError("Submit control not found", state=self.state)
        await self._click(found[0])
        self._transition(NavigationState.SUBMITTED)

    async def _await_results(self) -> None:
        await self._clear_challenge_quietly()
        found = await self._find(locators.RESULTS_MARKERS, self.settings.RESULTS_WAIT_MS)
        if not found:
            self.deadline.check("results wait")
            marker = await detect_block(self.page)
            raise ResultsNotRenderedError(
                f"Results not rendered (block marker: {marker})",
                blocked=marker is not None,
                state=self.state,
            )
        logger.info("Results rendered (%s)", found[1])
        self._transition(NavigationState.RESULTS_RENDERED)
