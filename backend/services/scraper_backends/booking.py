"""
Booking.com property calendar.

The date picker on /hotel/ pages lists every day as a span with data-date;
unavailable days are aria-disabled and some markets show a nightly price
under the day number.
"""
from urllib.parse import urlsplit

from .base import Platform
from .calendar import CalendarLayout, CalendarScraper

LAYOUT = CalendarLayout(
    calendar_selector='[data-testid="searchbox-datepicker-calendar"]',
    open_calendar_selectors=(
        '[data-testid="date-display-field-start"]',
        '[data-testid="searchbox-dates-container"]',
    ),
    next_month_selectors=(
        '[data-testid="searchbox-datepicker-calendar"] button[aria-label="Next month"]',
        'button[aria-label="Next month"]',
    ),
    extract_script="""
        () => Array.from(document.querySelectorAll(
            '[data-testid="searchbox-datepicker-calendar"] span[data-date]'
        )).map(el => {
            const price = el.querySelector('[data-testid="calendar-price"]');
            return {
                date: el.getAttribute('data-date'),
                available: el.getAttribute('aria-disabled') !== 'true',
                price: price ? price.textContent : null,
                minStay: el.getAttribute('data-min-los') || null,
            };
        })
    """,
)


def is_booking_url(url: str) -> bool:
    parts = urlsplit(url or '')
    return 'booking.com' in parts.netloc and '/hotel/' in parts.path


def create_booking_adapter(browser, scraping, clock) -> CalendarScraper:
    return CalendarScraper(Platform.BOOKING, LAYOUT, is_booking_url, browser, scraping, clock)
