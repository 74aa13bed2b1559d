"""Shared fixtures: HTTP client, fast settings, and an in-memory fake page."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from evaluator.config import Settings
from evaluator.services.stealth import build_profile


@pytest_asyncio.fixture
async def client():
    from evaluator.main import app

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_settings(**overrides) -> Settings:
    """Settings with every wait collapsed so tests run instantly."""
    values = dict(
        TARGET_EMAIL="",
        TARGET_PASSWORD="",
        EVALUATION_DEADLINE_SECONDS=5,
        CHALLENGE_BUDGET_MS=0,
        CHALLENGE_POLL_INTERVAL_MS=1,
        CONSENT_WAIT_MS=0,
        ELEMENT_WAIT_MS=0,
        SUGGESTION_WAIT_MS=0,
        RESULTS_WAIT_MS=0,
        LOGIN_WAIT_MS=0,
        POLL_INTERVAL_MS=1,
        TYPING_DELAY_MIN_MS=0,
        TYPING_DELAY_MAX_MS=0,
        ACTION_DELAY_MIN_MS=0,
        ACTION_DELAY_MAX_MS=0,
        CHALLENGE_TIMEOUT_POLICY="proceed",
        REQUIRE_CATEGORY_SELECTORS=False,
        EVALUATION_RETRIES=0,
        MAX_CONCURRENT_EVALUATIONS=2,
        ADMISSION_TIMEOUT_SECONDS=1,
        STEALTH_GENERATE_HEADERS=False,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def fast_settings():
    return make_settings()


# ---------------------------------------------------------------------------
# Fake Playwright page
# ---------------------------------------------------------------------------


class FakeLocator:
    """Locator over a ``FakePage``; ``key`` is the selector or strategy string."""

    def __init__(self, page: "FakePage", key: str):
        self.page = page
        self.key = key

    @property
    def first(self):
        return self

    async def is_visible(self):
        return self.key in self.page.visible

    async def count(self):
        return int(self.key in self.page.visible or self.key in self.page.hidden)

    async def hover(self, timeout=None):
        self.page.actions.append(("hover", self.key))

    async def click(self, timeout=None):
        self.page.actions.append(("click", self.key))
        hook = self.page.on_click.get(self.key)
        if hook:
            hook(self.page)

    async def fill(self, value):
        self.page.actions.append(("fill", self.key, value))
        self.page.typed[self.key] = value

    async def press_sequentially(self, text):
        self.page.typed[self.key] = self.page.typed.get(self.key, "") + text

    async def select_option(self, value, timeout=None):
        if self.key in self.page.unselectable:
            raise RuntimeError(f"option {value} not found in {self.key}")
        self.page.actions.append(("select", self.key, value))

    async def input_value(self, timeout=None):
        return self.page.values.get(self.key, "")


class FakePage:
    def __init__(self, visible=(), title="Watch valuation | Chrono24", body="", html=""):
        self.visible = set(visible)
        self.hidden = set()
        self.values = {}
        self.title_text = title
        self.body_text = body
        self.html = html
        self.actions = []
        self.typed = {}
        self.on_click = {}
        self.unselectable = set()
        self.goto_urls = []
        self.mouse = SimpleNamespace(move=AsyncMock())

    def locator(self, selector):
        return FakeLocator(self, selector)

    def get_by_role(self, role, name=None):
        return FakeLocator(self, f"role={role}[name={name!r}]")

    def get_by_text(self, text):
        return FakeLocator(self, f"text={text!r}")

    async def goto(self, url, **kwargs):
        self.goto_urls.append(url)

    async def title(self):
        return self.title_text

    async def evaluate(self, script):
        return self.body_text

    async def content(self):
        return self.html

    def clicked(self, key) -> bool:
        return ("click", key) in self.actions


VALUATION_FORM = {
    "#productSearch",
    ".productsearch-menu li",
    "#condition",
    "#scopeOfDelivery",
    "#calculateStats",
}


@pytest.fixture
def fake_page():
    """Factory for bare fake pages."""
    return FakePage


@pytest.fixture
def valuation_page():
    """A page showing the valuation form; submitting renders the results."""
    page = FakePage(visible=VALUATION_FORM)
    page.on_click["#calculateStats"] = lambda p: p.visible.add(".market-value")
    return page


@pytest.fixture
def make_session(fast_settings):
    def _make(page, settings=None):
        return SimpleNamespace(
            id="test-session",
            page=page,
            profile=build_profile(settings or fast_settings),
        )

    return _make
