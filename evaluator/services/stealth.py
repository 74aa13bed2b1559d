"""Stealth profile for evaluation sessions.

A ``StealthProfile`` is built once per session from settings (fixed
Florida desktop Chrome by default, or BrowserForge-generated headers) and
is immutable afterwards. The Chromium launch args and the init script that
hides automation markers live here too.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from browserforge.headers import HeaderGenerator

from evaluator.config import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Chromium launch args: automation flag off, no sandbox or GPU in containers
# ---------------------------------------------------------------------------

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--disable-extensions",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-gpu",
    "--disable-crashpad",
    "--disable-features=TranslateUI,BlinkGenPropertyTrees",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-ipc-flooding-protection",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7",
    "Accept-Encoding": "gzip, deflate, br, zstd",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "max-age=0",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Sec-Ch-Ua-Mobile": "?0",
    "Upgrade-Insecure-Requests": "1",
}

# Headers Playwright manages itself; sending them as extras breaks requests
_MANAGED_HEADERS = frozenset({"user-agent", "host", "connection", "content-length"})


@dataclass(frozen=True)
class Geolocation:
    latitude: float
    longitude: float
    accuracy: float = 100.0


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True)
class StealthProfile:
    """Browser characteristics applied to a context before its first request."""

    user_agent: str
    locale: str
    timezone_id: str
    geolocation: Geolocation
    viewport: Viewport
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    automation_markers_suppressed: bool = True

    def __post_init__(self):
        # Freeze the header map so the profile stays immutable
        object.__setattr__(
            self, "extra_headers", MappingProxyType(dict(self.extra_headers))
        )

    def context_options(self) -> dict:
        """Keyword arguments for ``Browser.new_context``."""
        return {
            "user_agent": self.user_agent,
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "geolocation": {
                "latitude": self.geolocation.latitude,
                "longitude": self.geolocation.longitude,
                "accuracy": self.geolocation.accuracy,
            },
            "permissions": ["geolocation"],
            "viewport": {"width": self.viewport.width, "height": self.viewport.height},
            "screen": {"width": self.viewport.width, "height": self.viewport.height},
            "device_scale_factor": 1,
            "is_mobile": False,
            "has_touch": False,
            "color_scheme": "light",
            "extra_http_headers": dict(self.extra_headers),
        }


def _platform_hint(user_agent: str) -> str:
    if "Win" in user_agent:
        return '"Windows"'
    if "Mac" in user_agent:
        return '"macOS"'
    return '"Linux"'


def build_profile(settings: Settings) -> StealthProfile:
    """Build the stealth profile for one session from configuration.

    With ``STEALTH_GENERATE_HEADERS`` the user agent and header set come
    from BrowserForge so they stay statistically consistent with each
    other; otherwise the configured fixed desktop Chrome identity is used.
    """
    user_agent = settings.STEALTH_USER_AGENT
    headers = dict(DEFAULT_HEADERS)
    headers["Accept-Language"] = f"{settings.STEALTH_LOCALE},{settings.STEALTH_LOCALE.split('-')[0]};q=0.9"

    if settings.STEALTH_GENERATE_HEADERS:
        generated = HeaderGenerator().generate(browser="chrome", os=("windows", "macos"))
        user_agent = generated.get("User-Agent") or generated.get("user-agent") or user_agent
        headers = {
            k: v for k, v in generated.items() if k.lower() not in _MANAGED_HEADERS
        }
        logger.debug("Generated stealth headers via BrowserForge: %s", user_agent)
    else:
        headers["Sec-Ch-Ua-Platform"] = _platform_hint(user_agent)

    return StealthProfile(
        user_agent=user_agent,
        locale=settings.STEALTH_LOCALE,
        timezone_id=settings.STEALTH_TIMEZONE,
        geolocation=Geolocation(
            latitude=settings.STEALTH_LATITUDE,
            longitude=settings.STEALTH_LONGITUDE,
            accuracy=settings.STEALTH_GEO_ACCURACY,
        ),
        viewport=Viewport(
            width=settings.STEALTH_VIEWPORT_WIDTH,
            height=settings.STEALTH_VIEWPORT_HEIGHT,
        ),
        extra_headers=headers,
    )


# ---------------------------------------------------------------------------
# Init script: runs in every frame before any page script
# ---------------------------------------------------------------------------


def build_stealth_script(profile: StealthProfile) -> str:
    """Build the automation-marker suppression script for a profile."""
    language = profile.locale
    base_language = profile.locale.split("-")[0]
    return f"""
// navigator.webdriver is the first thing bot detectors read
try {{ delete Object.getPrototypeOf(navigator).webdriver; }} catch (e) {{}}
Object.defineProperty(navigator, 'webdriver', {{ get: () => undefined }});

Object.defineProperty(navigator, 'languages', {{ get: () => ['{language}', '{base_language}'] }});

// Platform consistent with the user agent
const ua = navigator.userAgent;
if (ua.includes('Win')) {{
    Object.defineProperty(navigator, 'platform', {{ get: () => 'Win32' }});
}} else if (ua.includes('Mac')) {{
    Object.defineProperty(navigator, 'platform', {{ get: () => 'MacIntel' }});
}}

// window.chrome without the automation-only runtime object
window.chrome = {{
    app: {{}},
    loadTimes: function() {{
        return {{
            connectionInfo: 'h2',
            finishDocumentLoadTime: Date.now() / 1000,
            finishLoadTime: Date.now() / 1000,
            firstPaintAfterLoadTime: 0,
            firstPaintTime: Date.now() / 1000,
            navigationType: 'Other',
            npnNegotiatedProtocol: 'h2',
            requestTime: (Date.now() - 1000) / 1000,
            startLoadTime: (Date.now() - 1000) / 1000,
            wasAlternateProtocolAvailable: false,
            wasFetchedViaSpdy: true,
            wasNpnNegotiated: true,
        }};
    }},
    csi: function() {{
        return {{ pageT: Date.now(), startE: Date.now() - 1000, onloadT: Date.now(), tran: 15 }};
    }},
}};

// Headless Chromium reports zero plugins
const makePlugin = (name, filename) => {{
    const plugin = Object.create(Plugin.prototype);
    Object.defineProperties(plugin, {{
        name: {{ value: name, enumerable: true }},
        description: {{ value: 'Portable Document Format', enumerable: true }},
        filename: {{ value: filename, enumerable: true }},
        length: {{ value: 1, enumerable: true }},
    }});
    return plugin;
}};
const plugins = [
    makePlugin('PDF Viewer', 'internal-pdf-viewer'),
    makePlugin('Chrome PDF Viewer', 'internal-pdf-viewer'),
    makePlugin('Chromium PDF Viewer', 'internal-pdf-viewer'),
];
Object.defineProperty(navigator, 'plugins', {{
    get: () => {{
        const arr = Object.create(PluginArray.prototype);
        plugins.forEach((p, i) => {{ arr[i] = p; }});
        Object.defineProperty(arr, 'length', {{ value: plugins.length }});
        arr.item = (i) => plugins[i];
        arr.namedItem = (name) => plugins.find(p => p.name === name);
        arr.refresh = () => {{}};
        return arr;
    }},
}});

// Leftover driver globals
['domAutomation', 'domAutomationController', '_selenium', '__webdriver_script_fn',
 '__driver_evaluate', '__webdriver_evaluate', 'cdc_adoQpoasnfa76pfcZLmcfl_Array',
 'cdc_adoQpoasnfa76pfcZLmcfl_Promise', 'cdc_adoQpoasnfa76pfcZLmcfl_Symbol'
].forEach(p => {{ try {{ delete window[p]; }} catch (e) {{}} }});

// Notification permission query answers like a real profile
try {{
    const originalQuery = window.Permissions?.prototype?.query;
    if (originalQuery) {{
        window.Permissions.prototype.query = function(p) {{
            if (p?.name === 'notifications') return Promise.resolve({{ state: Notification.permission }});
            return originalQuery.call(this, p);
        }};
    }}
}} catch (e) {{}}

Object.defineProperty(document, 'hidden', {{ get: () => false }});
Object.defineProperty(document, 'visibilityState', {{ get: () => 'visible' }});
"""
