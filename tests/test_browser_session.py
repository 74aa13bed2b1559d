"""Unit tests for evaluator.services.browser and evaluator.services.stealth."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from evaluator.core.exceptions import SessionStartError
from evaluator.services.browser import _block_trackers, open_session
from evaluator.services.stealth import CHROMIUM_ARGS, build_profile, build_stealth_script

from conftest import make_settings


def _fake_playwright(launch_error: Exception | None = None):
    page = MagicMock()
    page.close = AsyncMock()

    context = MagicMock()
    context.route = AsyncMock()
    context.add_init_script = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    pw = MagicMock()
    pw.chromium.launch = AsyncMock(return_value=browser, side_effect=launch_error)
    pw.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=pw)
    return starter, pw, browser, context, page


class TestStealthProfile:
    def test_defaults_are_florida_desktop_chrome(self):
        profile = build_profile(make_settings())
        assert "Chrome/" in profile.user_agent
        assert profile.locale == "en-US"
        assert profile.timezone_id == "America/New_York"
        assert profile.geolocation.latitude == pytest.approx(26.3683064)
        assert (profile.viewport.width, profile.viewport.height) == (1920, 1080)

    def test_context_options(self):
        options = build_profile(make_settings()).context_options()
        assert options["permissions"] == ["geolocation"]
        assert options["geolocation"]["longitude"] == pytest.approx(-80.1289321)
        assert options["extra_http_headers"]["Accept-Language"].startswith("en-US")
        assert "User-Agent" not in options["extra_http_headers"]

    def test_profile_is_immutable(self):
        profile = build_profile(make_settings())
        with pytest.raises(Exception):
            profile.locale = "de-DE"
        with pytest.raises(TypeError):
            profile.extra_headers["X-Test"] = "1"

    def test_generated_headers(self):
        generated = {
            "User-Agent": "Mozilla/5.0 (Macintosh) Chrome/139.0.0.0",
            "Accept-Language": "en-US,en;q=0.9",
            "Host": "example.com",
        }
        with patch("evaluator.services.stealth.HeaderGenerator") as generator_cls:
            generator_cls.return_value.generate.return_value = generated
            profile = build_profile(make_settings(STEALTH_GENERATE_HEADERS=True))

        assert profile.user_agent == "Mozilla/5.0 (Macintosh) Chrome/139.0.0.0"
        assert "Host" not in profile.extra_headers
        assert "User-Agent" not in profile.extra_headers

    def test_init_script_hides_webdriver(self):
        script = build_stealth_script(build_profile(make_settings()))
        assert "webdriver" in script
        assert "'en-US', 'en'" in script


class TestOpenSession:
    @pytest.mark.asyncio
    async def test_profile_applied_before_page(self):
        starter, pw, browser, context, page = _fake_playwright()
        settings = make_settings()
        profile = build_profile(settings)

        with patch("evaluator.services.browser.async_playwright", return_value=starter):
            session = await open_session(profile, settings)

        launch_kwargs = pw.chromium.launch.await_args.kwargs
        assert launch_kwargs["headless"] is True
        assert launch_kwargs["args"] == CHROMIUM_ARGS
        browser.new_context.assert_awaited_once_with(**profile.context_options())
        context.add_init_script.assert_awaited_once()
        context.new_page.assert_awaited_once()
        assert session.page is page
        assert not session.closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        starter, pw, browser, context, page = _fake_playwright()
        settings = make_settings()
        with patch("evaluator.services.browser.async_playwright", return_value=starter):
            session = await open_session(build_profile(settings), settings)

        await session.close()
        await session.close()

        assert session.closed
        page.close.assert_awaited_once()
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_continues_past_errors(self):
        """A dead browser does not stop the driver from being stopped."""
        starter, pw, browser, context, page = _fake_playwright()
        page.close.side_effect = RuntimeError("Target closed")
        browser.close.side_effect = RuntimeError("Browser has been closed")
        settings = make_settings()
        with patch("evaluator.services.browser.async_playwright", return_value=starter):
            session = await open_session(build_profile(settings), settings)

        await session.close()
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_frozen_browser_close_still_stops_driver(self):
        starter, pw, browser, context, page = _fake_playwright()

        async def frozen():
            await asyncio.sleep(3600)

        browser.close.side_effect = frozen
        settings = make_settings(BROWSER_CLOSE_TIMEOUT_SECONDS=0.05)
        with patch("evaluator.services.browser.async_playwright", return_value=starter):
            session = await open_session(build_profile(settings), settings)

        await asyncio.wait_for(session.close(), timeout=2)
        assert session.closed
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_failure_releases_driver(self):
        starter, pw, *_ = _fake_playwright(launch_error=RuntimeError("Executable doesn't exist"))
        settings = make_settings()
        with patch("evaluator.services.browser.async_playwright", return_value=starter):
            with pytest.raises(SessionStartError):
                await open_session(build_profile(settings), settings)
        pw.stop.assert_awaited_once()


class TestTrackerBlocking:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url, blocked",
        [
            ("https://securepubads.g.doubleclick.net/tag/js/gpt.js", True),
            ("https://static.hotjar.com/c/hotjar.js", True),
            ("https://www.chrono24.com/info/valuation.htm", False),
            ("https://img.chrono24.com/images/uhren/1.jpg", False),
        ],
    )
    async def test_route_handler(self, url, blocked):
        route = MagicMock()
        route.abort = AsyncMock()
        route.continue_ = AsyncMock()
        request = MagicMock(url=url)

        await _block_trackers(route, request)

        assert route.abort.await_count == int(blocked)
        assert route.continue_.await_count == int(not blocked)
