"""Unit tests for evaluator.services.challenge against a fake page."""

import pytest

from evaluator.core.exceptions import ChallengeTimeoutError
from evaluator.services.challenge import (
    ChallengeHandler,
    ChallengeOutcome,
    ChallengeReport,
    ChallengeSignal,
    ConsentResolver,
    detect_block,
    detect_challenge,
    verification_token_length,
)

from conftest import make_settings

TOKEN_FIELD = 'input[name="challengeToken"]'


class TestDetectChallenge:
    @pytest.mark.asyncio
    async def test_clean_page(self, fake_page):
        signal = await detect_challenge(fake_page())
        assert not signal.active
        assert signal.token_length == 0

    @pytest.mark.asyncio
    async def test_title_marker(self, fake_page):
        signal = await detect_challenge(fake_page(title="Just a moment..."))
        assert signal.active
        assert signal.marker == "title:just a moment"

    @pytest.mark.asyncio
    async def test_widget_marker(self, fake_page):
        page = fake_page(visible={".cf-turnstile"})
        signal = await detect_challenge(page)
        assert signal.marker == "element:.cf-turnstile"

    @pytest.mark.asyncio
    async def test_body_text_marker(self, fake_page):
        page = fake_page(body="Please verify you are human to continue")
        signal = await detect_challenge(page)
        assert signal.marker == "text:verify you are human"

    @pytest.mark.asyncio
    async def test_hidden_token_length(self, fake_page):
        page = fake_page()
        page.hidden.add(TOKEN_FIELD)
        page.values[TOKEN_FIELD] = "  " + "a" * 64 + " "
        assert await verification_token_length(page) == 64

    @pytest.mark.asyncio
    async def test_block_page(self, fake_page):
        assert await detect_block(fake_page(body="Access denied. Error 1020")) == "access denied"
        assert await detect_block(fake_page()) is None


class TestResolveChallenges:
    @pytest.mark.asyncio
    async def test_no_challenge_resolves_first_poll(self, fake_page, make_session):
        handler = ChallengeHandler(make_settings())
        report = await handler.resolve_challenges(make_session(fake_page()), budget_ms=1000)
        assert report.outcome == ChallengeOutcome.RESOLVED
        assert report.attempts == 1

    @pytest.mark.asyncio
    async def test_token_populated_while_waiting(self, fake_page, make_session):
        """The challenge counts as cleared once the token is long enough."""
        page = fake_page(title="Just a moment...")
        page.hidden.add(TOKEN_FIELD)

        async def move(*args, **kwargs):
            if page.mouse.move.await_count >= 3:
                page.values[TOKEN_FIELD] = "t" * 80

        page.mouse.move.side_effect = move
        handler = ChallengeHandler(make_settings(CHALLENGE_POLL_INTERVAL_MS=1))

        report = await handler.resolve_challenges(make_session(page), budget_ms=2000)
        assert report.resolved
        assert report.attempts == 4
        assert report.signal.token_length == 80
        # Pointer kept moving while waiting
        assert page.mouse.move.await_count == 3

    @pytest.mark.asyncio
    async def test_short_token_does_not_count(self, fake_page, make_session):
        page = fake_page(title="Just a moment...")
        page.hidden.add(TOKEN_FIELD)
        page.values[TOKEN_FIELD] = "t" * 50
        handler = ChallengeHandler(make_settings(CHALLENGE_TOKEN_MIN_LENGTH=51))

        report = await handler.resolve_challenges(make_session(page), budget_ms=20)
        assert report.outcome == ChallengeOutcome.TIMED_OUT
        assert report.signal.token_length == 50

    @pytest.mark.asyncio
    async def test_zero_budget_reports_still_present(self, fake_page, make_session):
        handler = ChallengeHandler(make_settings())
        page = fake_page(title="Just a moment...")
        report = await handler.resolve_challenges(make_session(page), budget_ms=0)
        assert report.outcome == ChallengeOutcome.STILL_PRESENT
        assert report.attempts == 1


class TestChallengePolicy:
    def _report(self, outcome, token_length=12):
        return ChallengeReport(outcome, ChallengeSignal("title:just a moment", token_length), 30, 30000)

    def test_proceed_policy_does_not_raise(self):
        handler = ChallengeHandler(make_settings(CHALLENGE_TIMEOUT_POLICY="proceed"))
        handler.apply_policy(self._report(ChallengeOutcome.TIMED_OUT))

    def test_abort_policy_raises_access_denied(self):
        handler = ChallengeHandler(make_settings(CHALLENGE_TIMEOUT_POLICY="abort"))
        with pytest.raises(ChallengeTimeoutError) as exc_info:
            handler.apply_policy(self._report(ChallengeOutcome.TIMED_OUT, token_length=12))
        assert exc_info.value.status_code == 403
        assert exc_info.value.token_length == 12
        assert exc_info.value.to_response()["error"] == "Access denied"

    def test_resolved_is_never_an_error(self):
        handler = ChallengeHandler(make_settings(CHALLENGE_TIMEOUT_POLICY="abort"))
        handler.apply_policy(self._report(ChallengeOutcome.RESOLVED))

    def test_unknown_policy_falls_back_to_proceed(self):
        assert make_settings(CHALLENGE_TIMEOUT_POLICY="explode").CHALLENGE_TIMEOUT_POLICY == "proceed"


class TestConsentResolver:
    @pytest.mark.asyncio
    async def test_clicks_first_visible_button(self, fake_page):
        page = fake_page(visible={".js-accept-all", 'button[class*="accept"]'})
        resolved = await ConsentResolver(make_settings()).resolve(page)
        assert resolved
        assert page.clicked(".js-accept-all")
        assert not page.clicked('button[class*="accept"]')

    @pytest.mark.asyncio
    async def test_role_strategy(self, fake_page):
        page = fake_page(visible={"role=button[name='Accept all']"})
        assert await ConsentResolver(make_settings()).resolve(page)

    @pytest.mark.asyncio
    async def test_absent_overlay_is_not_an_error(self, fake_page):
        page = fake_page()
        assert await ConsentResolver(make_settings()).resolve(page) is False
        assert page.actions == []
