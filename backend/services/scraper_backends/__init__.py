"""
Calendar adapters for the supported booking platforms.

Adapters are registered per platform tag; adding a marketplace means adding
a module with its CalendarLayout and one entry in ADAPTER_FACTORIES.
"""
from typing import Callable, Dict, Optional

from ..clock import Clock, SYSTEM_CLOCK
from ..sync_config import ScrapingConfig
from .airbnb import create_airbnb_adapter
from .base import (
    AvailabilityRow,
    CalendarAdapter,
    FetchResult,
    Platform,
    ScraperError,
    StructuralParseError,
    TransientScrapeError,
    UnsupportedPlatformError,
    detect_challenge,
)
from .booking import create_booking_adapter
from .browser import BrowserManager
from .calendar import CalendarScraper, InvalidListingUrl
from .hometogo import create_hometogo_adapter
from .vrbo import create_vrbo_adapter

AdapterFactory = Callable[[object, ScrapingConfig, Clock], CalendarAdapter]

ADAPTER_FACTORIES: Dict[Platform, AdapterFactory] = {
    Platform.AIRBNB: create_airbnb_adapter,
    Platform.BOOKING: create_booking_adapter,
    Platform.VRBO: create_vrbo_adapter,
    Platform.HOMETOGO: create_hometogo_adapter,
}


def build_adapters(
    browser,
    scraping: ScrapingConfig,
    clock: Clock = SYSTEM_CLOCK,
    platforms: Optional[Dict[Platform, AdapterFactory]] = None,
) -> Dict[str, CalendarAdapter]:
    """Instantiate one adapter per platform, keyed by platform tag."""
    factories = platforms or ADAPTER_FACTORIES
    return {platform.value: factory(browser, scraping, clock) for platform, factory in factories.items()}


__all__ = [
    'ADAPTER_FACTORIES',
    'AvailabilityRow',
    'BrowserManager',
    'CalendarAdapter',
    'CalendarScraper',
    'FetchResult',
    'InvalidListingUrl',
    'Platform',
    'ScraperError',
    'StructuralParseError',
    'TransientScrapeError',
    'UnsupportedPlatformError',
    'build_adapters',
    'detect_challenge',
]
