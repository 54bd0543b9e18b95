"""
Vrbo listing calendar (Expedia UITK date picker).

Day buttons carry data-day and an aria-label such as
"Jun 12, 2024, available" or "Jun 13, 2024, unavailable".
"""
from urllib.parse import urlsplit

from .base import Platform
from .calendar import CalendarLayout, CalendarScraper

LAYOUT = CalendarLayout(
    calendar_selector='[data-stid="date-picker-month"]',
    open_calendar_selectors=(
        'button[data-stid="open-date-picker"]',
        '[data-stid="uitk-date-selector-input1-default"]',
    ),
    next_month_selectors=(
        'button[data-stid="date-picker-paging"]:last-of-type',
        'button[aria-label="Next month"]',
    ),
    extract_script="""
        () => Array.from(document.querySelectorAll('[data-stid="date-picker-month"] button[data-day]')).map(el => {
            const label = el.getAttribute('aria-label') || '';
            const parsed = new Date(label.split(',').slice(0, 2).join(','));
            if (isNaN(parsed)) return null;
            const iso = `${parsed.getFullYear()}-${String(parsed.getMonth() + 1).padStart(2, '0')}-${String(parsed.getDate()).padStart(2, '0')}`;
            const price = el.querySelector('.uitk-date-number + span, .uitk-day-price');
            return {
                date: iso,
                available: !/unavailable|not available/i.test(label) && !el.disabled,
                price: price ? price.textContent : null,
                minStay: (label.match(/(\\d+)\\s*night min/i) || [])[1] || null,
            };
        }).filter(Boolean)
    """,
)


def is_vrbo_url(url: str) -> bool:
    return 'vrbo.com' in urlsplit(url or '').netloc


def create_vrbo_adapter(browser, scraping, clock) -> CalendarScraper:
    return CalendarScraper(Platform.VRBO, LAYOUT, is_vrbo_url, browser, scraping, clock)
