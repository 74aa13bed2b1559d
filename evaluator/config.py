import logging

from pydantic_settings import BaseSettings
from typing import List

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Target Price Evaluator"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # Target site
    TARGET_BASE_URL: str = "https://www.chrono24.com"
    VALUATION_PATH: str = "/info/valuation.htm"
    LOGIN_PATH: str = "/auth/login.htm?userRegisterOrigin=Direct"

    # Credentials: login step is skipped unless both are set
    TARGET_EMAIL: str = ""
    TARGET_PASSWORD: str = ""

    # Browser
    BROWSER_HEADLESS: bool = True
    BROWSER_SLOW_MO_MS: int = 0
    BROWSER_LAUNCH_TIMEOUT_MS: int = 60000
    NAVIGATION_TIMEOUT_MS: int = 30000

    # Stealth profile (Florida desktop Chrome by default)
    STEALTH_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
    )
    STEALTH_LOCALE: str = "en-US"
    STEALTH_TIMEZONE: str = "America/New_York"
    STEALTH_LATITUDE: float = 26.3683064
    STEALTH_LONGITUDE: float = -80.1289321
    STEALTH_GEO_ACCURACY: float = 100.0
    STEALTH_VIEWPORT_WIDTH: int = 1920
    STEALTH_VIEWPORT_HEIGHT: int = 1080
    STEALTH_GENERATE_HEADERS: bool = False  # BrowserForge UA + headers instead of the fixed set

    # Timing (ms unless noted)
    EVALUATION_DEADLINE_SECONDS: float = 120.0
    CHALLENGE_BUDGET_MS: int = 30000
    CHALLENGE_POLL_INTERVAL_MS: int = 1000
    CHALLENGE_TOKEN_MIN_LENGTH: int = 50
    CONSENT_WAIT_MS: int = 4000
    ELEMENT_WAIT_MS: int = 8000
    SUGGESTION_WAIT_MS: int = 10000
    RESULTS_WAIT_MS: int = 15000
    LOGIN_WAIT_MS: int = 10000
    POLL_INTERVAL_MS: int = 250
    TYPING_DELAY_MIN_MS: int = 50
    TYPING_DELAY_MAX_MS: int = 150
    ACTION_DELAY_MIN_MS: int = 200
    ACTION_DELAY_MAX_MS: int = 600

    # Policy
    CHALLENGE_TIMEOUT_POLICY: str = "proceed"  # "proceed" or "abort"
    REQUIRE_CATEGORY_SELECTORS: bool = False
    CONDITION_VALUE: str = "Used"
    DELIVERY_VALUE: str = "WatchOnly"
    EVALUATION_RETRIES: int = 0  # whole-evaluation retries, clamped to 0..1

    # Capacity
    MAX_CONCURRENT_EVALUATIONS: int = 2
    ADMISSION_TIMEOUT_SECONDS: float = 30.0

    # Teardown
    BROWSER_CLOSE_TIMEOUT_SECONDS: float = 5.0  # per close step; the driver stop always runs
    SESSION_RELEASE_TIMEOUT_SECONDS: float = 25.0

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    def model_post_init(self, __context) -> None:
        if self.CHALLENGE_TIMEOUT_POLICY not in ("proceed", "abort"):
            _logger.warning(
                "Unknown CHALLENGE_TIMEOUT_POLICY %r, falling back to 'proceed'",
                self.CHALLENGE_TIMEOUT_POLICY,
            )
            object.__setattr__(self, "CHALLENGE_TIMEOUT_POLICY", "proceed")
        if self.TYPING_DELAY_MIN_MS > self.TYPING_DELAY_MAX_MS:
            object.__setattr__(self, "TYPING_DELAY_MAX_MS", self.TYPING_DELAY_MIN_MS)
        if self.ACTION_DELAY_MIN_MS > self.ACTION_DELAY_MAX_MS:
            object.__setattr__(self, "ACTION_DELAY_MAX_MS", self.ACTION_DELAY_MIN_MS)
        # No hidden retry loops: at most one whole-evaluation retry
        object.__setattr__(
            self, "EVALUATION_RETRIES", max(0, min(1, self.EVALUATION_RETRIES))
        )

    @property
    def valuation_url(self) -> str:
        return self.TARGET_BASE_URL.rstrip("/") + self.VALUATION_PATH

    @property
    def login_url(self) -> str:
        return self.TARGET_BASE_URL.rstrip("/") + self.LOGIN_PATH

    @property
    def has_credentials(self) -> bool:
        return bool(self.TARGET_EMAIL and self.TARGET_PASSWORD)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
