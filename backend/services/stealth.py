"""
Browser fingerprint disguise for scraping sessions.

Each proxy identity gets one StealthProfile when it joins the pool; every
browser context opened through that identity uses the same profile so the
identity looks like one consistent visitor.
"""
import json
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .sync_config import StealthConfig

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.2478.80",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
]

# (vendor, renderer) pairs reported by real GPUs
WEBGL_PROFILES = [
    ("Google Inc. (Intel)", "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce GTX 1650 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Apple Inc.", "Apple M1"),
]

LOCALES = [
    ("en-GB", "Europe/London"),
    ("en-US", "America/New_York"),
    ("fr-FR", "Europe/Paris"),
]

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


@dataclass(frozen=True)
class StealthProfile:
    user_agent: str
    viewport: Dict[str, int]
    device_scale_factor: float
    locale: str
    timezone_id: str
    webgl_vendor: str
    webgl_renderer: str
    hide_webdriver: bool = True
    mock_chrome: bool = True
    mock_device_metrics: bool = True
    custom_webgl: bool = True
    hardware_concurrency: int = 8
    languages: List[str] = field(default_factory=lambda: ["en-GB", "en"])

    def context_options(self) -> dict:
        """Keyword arguments for Browser.new_context()."""
        options = {
            "user_agent": self.user_agent,
            "locale": self.locale,
            "timezone_id": self.timezone_id,
        }
        if self.mock_device_metrics:
            options["viewport"] = dict(self.viewport)
            options["device_scale_factor"] = self.device_scale_factor
        return options

    def init_script(self) -> str:
        """JavaScript injected before any page script runs."""
        parts = []
        if self.hide_webdriver:
            parts.append(
                "Object.defineProperty(Object.getPrototypeOf(navigator), 'webdriver', "
                "{get: () => undefined, configurable: true});"
            )
        if self.mock_chrome:
            parts.append(
                "if (!window.chrome) { window.chrome = {runtime: {}, loadTimes: function() {}, csi: function() {}}; }"
            )
        if self.mock_device_metrics:
            parts.append(
                f"Object.defineProperty(navigator, 'hardwareConcurrency', {{get: () => {self.hardware_concurrency}}});"
                f"Object.defineProperty(navigator, 'languages', {{get: () => {json.dumps(self.languages)}}});"
                "Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});"
            )
        if self.custom_webgl:
            parts.append(
                "(function() {"
                f"const vendor = {json.dumps(self.webgl_vendor)};"
                f"const renderer = {json.dumps(self.webgl_renderer)};"
                "for (const ctx of [WebGLRenderingContext, window.WebGL2RenderingContext]) {"
                "  if (!ctx) continue;"
                "  const getParameter = ctx.prototype.getParameter;"
                "  ctx.prototype.getParameter = function(param) {"
                "    if (param === 37445) return vendor;"
                "    if (param === 37446) return renderer;"
                "    return getParameter.call(this, param);"
                "  };"
                "}"
                "})();"
            )
        return "\n".join(parts)


def build_stealth_profile(config: StealthConfig, rng: Optional[random.Random] = None) -> Optional[StealthProfile]:
    """
    Draw a random, internally consistent fingerprint.

    Returns None when stealth is disabled; sessions then use plain
    Playwright defaults.
    """
    if not config.enabled:
        return None

    rng = rng or random.Random()
    vendor, renderer = rng.choice(WEBGL_PROFILES)
    locale, timezone_id = rng.choice(LOCALES)
    return StealthProfile(
        user_agent=rng.choice(USER_AGENTS),
        viewport=dict(rng.choice(VIEWPORTS)),
        device_scale_factor=rng.choice([1.0, 1.25, 1.5, 2.0]),
        locale=locale,
        timezone_id=timezone_id,
        webgl_vendor=vendor,
        webgl_renderer=renderer,
        hide_webdriver=config.hide_webdriver,
        mock_chrome=config.mock_chrome,
        mock_device_metrics=config.mock_device_metrics,
        custom_webgl=config.custom_webgl,
        hardware_concurrency=rng.choice([4, 8, 12, 16]),
        languages=[locale, locale.split("-")[0]],
    )
