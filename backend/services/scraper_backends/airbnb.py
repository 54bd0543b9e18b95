"""
Airbnb listing calendar.

The inline availability calendar on /rooms/<id> pages shows two months;
blocked days carry data-is-day-blocked="true" and the minimum stay is part
of the day's aria-label ("... 2 night minimum stay").
"""
from urllib.parse import urlsplit

from .base import Platform
from .calendar import CalendarLayout, CalendarScraper

LAYOUT = CalendarLayout(
    calendar_selector='[data-testid="inline-availability-calendar"]',
    next_month_selectors=(
        'button[aria-label="Move forward to switch to the next month."]',
        '[data-testid="inline-availability-calendar"] button[aria-label*="next month" i]',
    ),
    extract_script="""
        () => Array.from(document.querySelectorAll('[data-testid^="calendar-day-"]')).map(el => {
            const m = (el.getAttribute('data-testid') || '').match(/(\\d{2})\\/(\\d{2})\\/(\\d{4})/);
            if (!m) return null;
            const label = el.getAttribute('aria-label') || '';
            const minStay = label.match(/(\\d+)\\s*night minimum/i);
            return {
                date: `${m[3]}-${m[1]}-${m[2]}`,
                available: el.getAttribute('data-is-day-blocked') !== 'true',
                minStay: minStay ? parseInt(minStay[1], 10) : null,
                price: null,
            };
        }).filter(Boolean)
    """,
)


def is_airbnb_url(url: str) -> bool:
    parts = urlsplit(url or '')
    return 'airbnb.' in parts.netloc and '/rooms/' in parts.path


def create_airbnb_adapter(browser, scraping, clock) -> CalendarScraper:
    return CalendarScraper(Platform.AIRBNB, LAYOUT, is_airbnb_url, browser, scraping, clock)
