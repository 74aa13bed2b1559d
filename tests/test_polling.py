"""Unit tests for evaluator.services.polling."""

import asyncio

import pytest

from evaluator.core.exceptions import DeadlineExceededError, ErrorKind
from evaluator.services.polling import Deadline, poll_until


class TestDeadline:
    def test_fresh_deadline_not_expired(self):
        deadline = Deadline(60)
        assert not deadline.expired
        assert 0 < deadline.remaining <= 60
        deadline.check("anywhere")

    def test_zero_deadline_is_expired(self):
        deadline = Deadline(0)
        assert deadline.expired
        assert deadline.remaining == 0
        with pytest.raises(DeadlineExceededError) as exc_info:
            deadline.check("results wait")
        assert exc_info.value.kind == ErrorKind.DEADLINE
        assert "results wait" in exc_info.value.detail

    def test_clip_never_exceeds_remaining(self):
        deadline = Deadline(1)
        assert deadline.clip_ms(30000) <= 1000
        assert deadline.clip_ms(10) == 10
        assert Deadline(0).clip_ms(5000) == 0


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_satisfied_on_later_attempt(self):
        calls = []

        async def check():
            calls.append(1)
            return "ready" if len(calls) >= 3 else None

        result = await poll_until(check, timeout_ms=1000, interval_ms=1)
        assert result.satisfied
        assert result.value == "ready"
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_zero_budget_checks_exactly_once(self):
        calls = []

        async def check():
            calls.append(1)
            return False

        result = await poll_until(check, timeout_ms=0, interval_ms=1)
        assert not result.satisfied
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        async def never():
            return None

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await poll_until(never, timeout_ms=30, interval_ms=5)
        assert not result.satisfied
        assert result.attempts > 1
        assert loop.time() - started < 1

    @pytest.mark.asyncio
    async def test_budget_clipped_to_deadline(self):
        """An expired deadline turns any budget into a single observation."""

        async def never():
            return None

        result = await poll_until(never, timeout_ms=60000, interval_ms=1, deadline=Deadline(0))
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_on_tick_between_attempts(self):
        ticks = []

        async def check():
            return len(ticks) >= 2

        async def on_tick(attempt):
            ticks.append(attempt)

        result = await poll_until(check, timeout_ms=1000, interval_ms=1, on_tick=on_tick)
        assert result.satisfied
        assert ticks == [1, 2]
