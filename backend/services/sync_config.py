"""
Calendar sync configuration.

One explicit SyncConfig object is built at startup and handed to the
orchestrator and the proxy pool. Options use the dotted names below; values
are layered defaults < CALENDAR_SYNC_* environment variables < system_config
rows (config_key = dotted option name).
"""
import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StealthConfig:
    """Fingerprint disguise applied to every scraping session."""
    enabled: bool = True
    hide_webdriver: bool = True
    mock_chrome: bool = True
    mock_device_metrics: bool = True
    custom_webgl: bool = True


@dataclass(frozen=True)
class ProxyConfig:
    rotation_interval_minutes: int = 30
    min_success_rate: float = 0.70
    residential_only: bool = True
    success_window: int = 10     # outcomes kept for the rolling success rate
    min_samples: int = 1         # outcomes needed before eviction applies
    ban_cooldown_minutes: int = 60   # evicted proxy endpoints rejoin after this


@dataclass(frozen=True)
class RequestDelay:
    min_ms: int = 1000
    max_ms: int = 5000


@dataclass(frozen=True)
class ScrapingConfig:
    max_concurrency: int = 3
    request_delay: RequestDelay = field(default_factory=RequestDelay)
    max_months: int = 12
    default_sync_frequency_minutes: int = 360


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    timeout_ms: int = 30000
    acquire_retries: int = 3


@dataclass(frozen=True)
class SyncConfig:
    stealth: StealthConfig = field(default_factory=StealthConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    scraping: ScrapingConfig = field(default_factory=ScrapingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    enabled: bool = True
    scheduler_interval_minutes: int = 15

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], base: Optional["SyncConfig"] = None) -> "SyncConfig":
        """
        Build a config from dotted option names.

        Args:
            values: e.g. {'proxy.minSuccessRate': '0.8', 'scraping.maxConcurrency': 5}
            base: Config to start from (defaults when None)

        Returns:
            New SyncConfig; unknown keys are ignored

        Raises:
            ValueError: a value cannot be coerced or is out of range
        """
        config = base or cls()
        stealth, proxy, scraping, retry = config.stealth, config.proxy, config.scraping, config.retry
        delay = scraping.request_delay
        top = {}

        for key, raw in values.items():
            if raw is None or key not in OPTIONS:
                continue
            section, attr, kind = OPTIONS[key]
            value = _coerce(key, raw, kind)
            if section == "stealth":
                stealth = replace(stealth, **{attr: value})
            elif section == "proxy":
                proxy = replace(proxy, **{attr: value})
            elif section == "delay":
                delay = replace(delay, **{attr: value})
            elif section == "scraping":
                scraping = replace(scraping, **{attr: value})
            elif section == "retry":
                retry = replace(retry, **{attr: value})
            else:
                top[attr] = value

        result = replace(
            config,
            stealth=stealth,
            proxy=proxy,
            scraping=replace(scraping, request_delay=delay),
            retry=retry,
            **top,
        )
        result.validate()
        return result

    def validate(self):
        """Raise ValueError on out-of-range settings."""
        if self.scraping.max_concurrency < 1:
            raise ValueError("scraping.maxConcurrency must be >= 1")
        delay = self.scraping.request_delay
        if delay.min_ms < 0 or delay.max_ms < delay.min_ms:
            raise ValueError("scraping.requestDelay needs 0 <= min <= max")
        if not 0.0 <= self.proxy.min_success_rate <= 1.0:
            raise ValueError("proxy.minSuccessRate must be between 0 and 1")
        if self.proxy.rotation_interval_minutes <= 0:
            raise ValueError("proxy.rotationInterval must be positive")
        if self.proxy.success_window < 1 or self.proxy.min_samples < 1:
            raise ValueError("proxy.successWindow and proxy.minSamples must be >= 1")
        if self.proxy.ban_cooldown_minutes < 0:
            raise ValueError("proxy.banCooldown must be >= 0")
        if self.retry.max_retries < 1 or self.retry.acquire_retries < 1:
            raise ValueError("retry attempts must be >= 1")
        if self.retry.timeout_ms <= 0:
            raise ValueError("retry.timeoutMs must be positive")
        if self.scraping.max_months < 1:
            raise ValueError("scraping.maxMonths must be >= 1")


# dotted option -> (section, attribute, type)
OPTIONS: Dict[str, tuple] = {
    "calendar_sync.enabled": ("top", "enabled", bool),
    "scheduler.intervalMinutes": ("top", "scheduler_interval_minutes", int),
    "stealth.enabled": ("stealth", "enabled", bool),
    "stealth.hideWebDriver": ("stealth", "hide_webdriver", bool),
    "stealth.mockChrome": ("stealth", "mock_chrome", bool),
    "stealth.mockDeviceMetrics": ("stealth", "mock_device_metrics", bool),
    "stealth.customWebGL": ("stealth", "custom_webgl", bool),
    "proxy.rotationInterval": ("proxy", "rotation_interval_minutes", int),
    "proxy.minSuccessRate": ("proxy", "min_success_rate", float),
    "proxy.residentialOnly": ("proxy", "residential_only", bool),
    "proxy.successWindow": ("proxy", "success_window", int),
    "proxy.minSamples": ("proxy", "min_samples", int),
    "proxy.banCooldown": ("proxy", "ban_cooldown_minutes", int),
    "scraping.maxConcurrency": ("scraping", "max_concurrency", int),
    "scraping.requestDelay.min": ("delay", "min_ms", int),
    "scraping.requestDelay.max": ("delay", "max_ms", int),
    "scraping.maxMonths": ("scraping", "max_months", int),
    "scraping.defaultSyncFrequency": ("scraping", "default_sync_frequency_minutes", int),
    "retry.maxRetries": ("retry", "max_retries", int),
    "retry.timeoutMs": ("retry", "timeout_ms", int),
    "retry.acquireRetries": ("retry", "acquire_retries", int),
}


def _coerce(key: str, raw: Any, kind: type):
    if kind is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("true", "1", "yes", "enabled", "on"):
            return True
        if text in ("false", "0", "no", "disabled", "off"):
            return False
        raise ValueError(f"{key}: expected a boolean, got {raw!r}")
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{key}: expected {kind.__name__}, got {raw!r}")


def env_var_name(option: str) -> str:
    """'proxy.minSuccessRate' -> 'CALENDAR_SYNC_PROXY_MIN_SUCCESS_RATE'"""
    if option.startswith("calendar_sync."):
        option = option[len("calendar_sync."):]
    snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", option.replace(".", "_"))
    return "CALENDAR_SYNC_" + snake.upper()


def options_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    environ = os.environ if environ is None else environ
    found = {}
    for option in OPTIONS:
        name = env_var_name(option)
        if name in environ:
            found[option] = environ[name]
    return found


def options_from_db(db: Session) -> Dict[str, str]:
    """Read dotted options stored in system_config."""
    from models import SystemConfig

    rows = (
        db.query(SystemConfig)
        .filter(SystemConfig.config_key.in_(list(OPTIONS)))
        .all()
    )
    return {row.config_key: row.config_value for row in rows if row.config_value not in (None, "")}


def load_sync_config(db: Optional[Session] = None, environ: Optional[Mapping[str, str]] = None) -> SyncConfig:
    """
    Build the effective SyncConfig.

    Args:
        db: Optional session; when given, system_config rows override env
        environ: Environment mapping (os.environ by default)
    """
    config = SyncConfig.from_mapping(options_from_env(environ))
    if db is not None:
        try:
            config = SyncConfig.from_mapping(options_from_db(db), base=config)
        except Exception as e:
            logger.error(f"Error reading sync config from system_config, using env/defaults: {e}")
    return config
