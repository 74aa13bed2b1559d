"""Evaluation orchestrator.

Composes one evaluation end to end:

    admit -> open session -> navigate -> extract -> calculate -> release

under a single wall-clock deadline. Every session opened here is closed
exactly once, whichever way the evaluation ends. A watchdog timer armed
when the session opens force-releases it and cancels the pipeline if the
deadline passes while a page operation is still hanging.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone

from evaluator.config import Settings, settings as default_settings
from evaluator.core.exceptions import (
    CapacityExceededError,
    ChallengeTimeoutError,
    DeadlineExceededError,
    EvaluationError,
    ResultsNotRenderedError,
)
from evaluator.core.metrics import (
    admission_rejected_total,
    evaluation_duration_seconds,
    evaluations_total,
    watchdog_fired_total,
)
from evaluator.middleware.request_id import bind_session_id, unbind_session_id
from evaluator.schemas.valuation import ValuationResult
from evaluator.services.browser import open_session
from evaluator.services.calculator import calculate, normalize_ref
from evaluator.services.challenge import ChallengeHandler
from evaluator.services.extraction import extract
from evaluator.services.navigation import NavigationFlow
from evaluator.services.polling import Deadline
from evaluator.services.stealth import build_profile

logger = logging.getLogger(__name__)

# Failures a fresh session has a realistic chance of getting past
RETRYABLE_ERRORS = (ChallengeTimeoutError, ResultsNotRenderedError)


class SessionLease:
    """Guarantees ``session.close()`` is awaited exactly once.

    Both the watchdog and the normal exit path call ``release``; whoever
    comes first starts the close, the other awaits the same task. A close
    that outlives ``timeout`` is abandoned and logged.
    """

    def __init__(self, session, timeout: float | None = None):
        self.session = session
        self.timeout = timeout
        self.watchdog_fired = False
        self._release_task: asyncio.Task | None = None

    @property
    def released(self) -> bool:
        return self._release_task is not None

    def release(self) -> asyncio.Task:
        if self._release_task is None:
            self._release_task = asyncio.ensure_future(self._close())
        return self._release_task

    async def _close(self) -> None:
        try:
            await asyncio.wait_for(self.session.close(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Session %s did not close within %.1fs, abandoning it",
                getattr(self.session, "id", "?"),
                self.timeout,
            )
        except Exception as e:
            logger.warning("Session %s close failed: %s", getattr(self.session, "id", "?"), e)


class EvaluationOrchestrator:
    def __init__(
        self,
        settings: Settings | None = None,
        session_factory=open_session,
        profile_factory=build_profile,
    ):
        self.settings = settings or default_settings
        self.session_factory = session_factory
        self.profile_factory = profile_factory
        self._admission = asyncio.Semaphore(max(1, self.settings.MAX_CONCURRENT_EVALUATIONS))

    # ------------------------------------------------------------------
    # Admission control
    # ------------------------------------------------------------------

    async def _admit(self, deadline: Deadline) -> None:
        try:
            await asyncio.wait_for(
                self._admission.acquire(),
                timeout=min(self.settings.ADMISSION_TIMEOUT_SECONDS, deadline.remaining),
            )
        except asyncio.TimeoutError:
            admission_rejected_total.inc()
            logger.warning(
                "No evaluation slot freed within %.0fs (limit %d)",
                self.settings.ADMISSION_TIMEOUT_SECONDS,
                self.settings.MAX_CONCURRENT_EVALUATIONS,
            )
            raise CapacityExceededError(
                f"No capacity within {self.settings.ADMISSION_TIMEOUT_SECONDS}s"
            ) from None

    # ------------------------------------------------------------------
    # Session ownership + watchdog
    # ------------------------------------------------------------------

    async def _with_session(self, deadline: Deadline, work):
        """Open a session, run ``work(session)`` under the watchdog, release.

        ``work`` runs as its own task so the watchdog can cancel it without
        cancelling the caller.
        """
        deadline.check("session start")
        profile = self.profile_factory(self.settings)
        deadline_at = datetime.now(timezone.utc) + timedelta(seconds=deadline.remaining)
        session = await self.session_factory(profile, self.settings, deadline_at=deadline_at)
        lease = SessionLease(session, timeout=self.settings.SESSION_RELEASE_TIMEOUT_SECONDS)
        # Copied into the pipeline task and the watchdog callback below
        session_token = bind_session_id(getattr(session, "id", ""))

        loop = asyncio.get_running_loop()
        pipeline = asyncio.ensure_future(work(session))

        def fire_watchdog():
            if pipeline.done():
                return
            lease.watchdog_fired = True
            watchdog_fired_total.inc()
            logger.error(
                "Watchdog fired for session %s after %dms, force-releasing",
                getattr(session, "id", "?"),
                deadline.elapsed_ms,
            )
            lease.release()
            pipeline.cancel()

        watchdog = loop.call_later(deadline.remaining, fire_watchdog)
        try:
            return await pipeline
        except asyncio.CancelledError:
            if lease.watchdog_fired:
                raise DeadlineExceededError(
                    f"Watchdog released the session after {deadline.elapsed_ms}ms"
                ) from None
            raise
        finally:
            watchdog.cancel()
            try:
                await asyncio.shield(lease.release())
            finally:
                unbind_session_id(session_token)

    # ------------------------------------------------------------------
    # Evaluate
    # ------------------------------------------------------------------

    async def _evaluate_once(self, ref: str, deadline: Deadline) -> ValuationResult:
        async def pipeline(session):
            flow = NavigationFlow(
                session, self.settings, deadline, challenge_handler=ChallengeHandler(self.settings)
            )
            await flow.run(ref)
            record = await extract(session)
            flow.mark_extracted()
            return calculate(ref, record)

        return await self._with_session(deadline, pipeline)

    async def evaluate(self, ref_number: str) -> ValuationResult:
        """Run one full evaluation for a reference number.

        The deadline starts before admission, so time spent waiting for a
        slot counts against it. Wall-clock time is bounded by the deadline
        plus ``SESSION_RELEASE_TIMEOUT_SECONDS`` for the final teardown.

        Raises:
            EvaluationError: a classified failure; unexpected exceptions are
                wrapped with kind ``Unknown``.
        """
        ref = normalize_ref(ref_number)
        started = time.monotonic()
        status = "success"

        try:
            deadline = Deadline(self.settings.EVALUATION_DEADLINE_SECONDS)
            await self._admit(deadline)
            try:
                attempts = 1 + self.settings.EVALUATION_RETRIES
                for attempt in range(1, attempts + 1):
                    try:
                        result = await self._evaluate_once(ref, deadline)
                        break
                    except RETRYABLE_ERRORS as e:
                        if attempt >= attempts or deadline.expired:
                            raise
                        logger.warning(
                            "Evaluation of %s failed with %s, retrying in a fresh session",
                            ref,
                            e.kind.value,
                        )
            finally:
                self._admission.release()
        except EvaluationError as e:
            status = e.kind.value
            raise
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception as e:
            status = "Unknown"
            logger.exception("Unexpected failure evaluating %s", ref)
            raise EvaluationError(f"Unexpected error: {e}") from e
        finally:
            duration = time.monotonic() - started
            evaluations_total.labels(status=status).inc()
            evaluation_duration_seconds.observe(duration)
            logger.info("Evaluation of %s finished: %s in %.1fs", ref, status, duration)

        return result

    async def test_connection(self) -> dict:
        """Load the target home page in a throwaway session."""
        deadline = Deadline(self.settings.EVALUATION_DEADLINE_SECONDS)
        await self._admit(deadline)
        try:

            async def load_home(session):
                await session.page.goto(
                    self.settings.TARGET_BASE_URL,
                    wait_until="domcontentloaded",
                    timeout=max(1, deadline.clip_ms(self.settings.NAVIGATION_TIMEOUT_MS)),
                )
                return await session.page.title()

            try:
                title = await self._with_session(deadline, load_home)
            except EvaluationError:
                raise
            except Exception as e:
                logger.warning("Connection test failed: %s", e)
                raise EvaluationError(f"Connection test failed: {e}") from e
        finally:
            self._admission.release()

        logger.info("Connection test OK, page title %r", title)
        return {
            "status": "connected",
            "service": "chrono24",
            "pageTitle": title,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }


orchestrator = EvaluationOrchestrator()
