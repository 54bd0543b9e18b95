"""
Shared types and helpers for the platform calendar adapters.

Every adapter exposes one capability:

    await adapter.fetch_availability(session, property_url) -> FetchResult

Adapters are looked up by platform tag in the registry (see __init__.py);
they share helpers from this module rather than a base class.
"""
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from ..proxy_pool import SessionLease


class Platform(str, Enum):
    """Supported booking platforms."""
    AIRBNB = 'airbnb'
    BOOKING = 'booking'
    VRBO = 'vrbo'
    HOMETOGO = 'hometogo'


class ScraperError(Exception):
    """Base class for adapter failures."""
    pass


class TransientScrapeError(ScraperError):
    """Navigation / network hiccup - worth retrying."""
    pass


class StructuralParseError(ScraperError):
    """The page no longer matches the adapter's expected layout."""
    pass


class UnsupportedPlatformError(ScraperError):
    """No adapter is registered for the property's platform."""
    pass


@dataclass
class AvailabilityRow:
    """Availability for a single date."""
    date: date
    is_available: bool
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    minimum_stay: Optional[int] = None


@dataclass
class FetchResult:
    """Result from one calendar fetch."""
    rows: List[AvailabilityRow] = field(default_factory=list)
    captcha_encountered: bool = False
    challenge_reason: Optional[str] = None
    months_scraped: int = 0


class CalendarAdapter(Protocol):
    platform: Platform

    async def fetch_availability(self, session: SessionLease, property_url: str) -> FetchResult:
        ...


# Anti-bot challenge markers seen in page HTML
CHALLENGE_SIGNALS = [
    'captcha',
    'unusual traffic',
    'access denied',
    'please verify',
    'too many requests',
    'are you a robot',
    'verify you are human',
    'security check',
    'checking your browser',
    'cf-browser-verification',
    'cf-challenge',
    'challenge-platform',
    'px-captcha',
]

CHALLENGE_SELECTORS = ', '.join([
    'iframe[src*="challenges.cloudflare.com"]',
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    '.cf-browser-verification',
    '#challenge-running',
    '#px-captcha',
])


def detect_challenge(page_content: str) -> tuple[bool, Optional[str]]:
    """
    Check if page content shows an anti-bot challenge.

    Args:
        page_content: HTML content of the page

    Returns:
        Tuple of (is_challenged, matched signal)
    """
    content_lower = (page_content or '').lower()
    for signal in CHALLENGE_SIGNALS:
        if signal in content_lower:
            return True, signal
    return False, None


CURRENCY_SYMBOLS = {
    '£': 'GBP',
    '€': 'EUR',
    '$': 'USD',
    'CHF': 'CHF',
    'GBP': 'GBP',
    'EUR': 'EUR',
    'USD': 'USD',
}


def parse_price(price_text: Optional[str]) -> tuple[Optional[Decimal], Optional[str]]:
    """Parse '£150', 'EUR 1,234.50' or '€ 89' into (amount, currency)."""
    if not price_text:
        return None, None

    currency = None
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in price_text:
            currency = code
            break

    cleaned = re.sub(r'[^\d.,]', '', price_text)
    match = re.search(r'\d[\d,]*(?:\.\d{1,2})?', cleaned)
    if not match:
        return None, currency
    try:
        return Decimal(match.group().replace(',', '')), currency
    except InvalidOperation:
        return None, currency


def parse_minimum_stay(text: Optional[str]) -> Optional[int]:
    """'2 night minimum', 'Min. stay 3 nights' -> int"""
    if not text:
        return None
    text = str(text).strip()
    if text.isdigit():
        return int(text)
    match = re.search(r'(\d+)\s*-?\s*night', text.lower())
    if not match:
        match = re.search(r'min[^\d]*(\d+)', text.lower())
    return int(match.group(1)) if match else None


def parse_iso_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return None


def clean_rows(rows: Iterable[AvailabilityRow]) -> List[AvailabilityRow]:
    """De-duplicate by date (last wins) and sort chronologically."""
    by_date = {}
    for row in rows:
        by_date[row.date] = row
    return [by_date[d] for d in sorted(by_date)]


def rows_from_cells(cells: list, default_currency: Optional[str] = None) -> List[AvailabilityRow]:
    """
    Convert raw day cells pulled from the page into rows.

    Each cell is a dict with 'date' (ISO string) and 'available' (bool),
    optionally 'price' (text) and 'minStay' (text or int).

    Raises:
        StructuralParseError: cells are not a list of dicts, or none has a parseable date
    """
    if not isinstance(cells, list):
        raise StructuralParseError(f"Calendar extraction returned {type(cells).__name__}, expected list")

    rows = []
    for cell in cells:
        if not isinstance(cell, dict):
            raise StructuralParseError("Calendar cell is not an object")
        day = parse_iso_date(cell.get('date'))
        if day is None:
            continue
        price, currency = parse_price(cell.get('price'))
        min_stay = cell.get('minStay')
        if not isinstance(min_stay, int):
            min_stay = parse_minimum_stay(min_stay)
        rows.append(AvailabilityRow(
            date=day,
            is_available=bool(cell.get('available')),
            price=price,
            currency=currency or (default_currency if price is not None else None),
            minimum_stay=min_stay,
        ))

    if cells and not rows:
        raise StructuralParseError("No calendar cell carried a recognisable date")
    return rows
