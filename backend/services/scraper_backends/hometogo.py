"""
HomeToGo offer calendar (react-day-picker).

Days outside the month are skipped; availability comes from the
DayPicker-Day--available / --checkIn classes, overridden by the tooltip hint
and data-available when present.
"""
from urllib.parse import urlsplit

from .base import Platform
from .calendar import CalendarLayout, CalendarScraper

LAYOUT = CalendarLayout(
    calendar_selector='.DayPicker-Month',
    open_calendar_selectors=(
        '[data-testid="availability-button"]',
        'a[href="#availability"]',
        'button[aria-label="Availability"]',
    ),
    next_month_selectors=(
        '.DayPicker-NavButton--next:not(.DayPicker-NavButton--interactionDisabled)',
        'span[role="button"][aria-label="Next Month"]',
    ),
    extract_script="""
        () => Array.from(document.querySelectorAll('.DayPicker-Day:not(.DayPicker-Day--outside)')).map(el => {
            const m = (el.getAttribute('aria-label') || '').match(/(\\d{2})\\/(\\d{2})\\/(\\d{4})/);
            if (!m) return null;
            const cls = el.classList;
            let available = !cls.contains('DayPicker-Day--disabled') && !cls.contains('DayPicker-Day--past')
                && (cls.contains('DayPicker-Day--available') || cls.contains('DayPicker-Day--checkIn'));
            const hint = (el.querySelector('.datepicker-tooltip') || {getAttribute: () => null}).getAttribute('data-hint');
            if (hint && hint.includes('Available')) available = true;
            if (hint && (hint.includes('Fully booked') || hint.includes('Not available'))) available = false;
            const flag = el.getAttribute('data-available');
            if (flag === 'true') available = true;
            if (flag === 'false') available = false;
            const price = el.querySelector('.DayPicker-Day-price');
            return {
                date: `${m[3]}-${m[1]}-${m[2]}`,
                available: available,
                price: price ? price.textContent : null,
                minStay: hint && /min/i.test(hint) ? hint : null,
            };
        }).filter(Boolean)
    """,
)


def is_hometogo_url(url: str) -> bool:
    return 'hometogo.' in urlsplit(url or '').netloc


def create_hometogo_adapter(browser, scraping, clock) -> CalendarScraper:
    return CalendarScraper(Platform.HOMETOGO, LAYOUT, is_hometogo_url, browser, scraping, clock)
