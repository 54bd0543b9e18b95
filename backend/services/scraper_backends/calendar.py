"""
Month-by-month calendar walker used by every platform adapter.

A platform is described by a CalendarLayout (selectors + extraction script)
and a URL check; CalendarScraper does the navigation, pacing, challenge
detection and structural validation the same way for all of them.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..clock import Clock, SYSTEM_CLOCK
from ..proxy_pool import SessionLease
from ..sync_config import ScrapingConfig
from .base import (
    CHALLENGE_SELECTORS,
    AvailabilityRow,
    FetchResult,
    Platform,
    StructuralParseError,
    TransientScrapeError,
    clean_rows,
    detect_challenge,
    rows_from_cells,
)
from .browser import human_like_scroll, human_pause

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 60000
CALENDAR_TIMEOUT_MS = 15000
MAX_EMPTY_MONTHS = 3
# human_like_scroll: 3 steps of at most 0.8s
SCROLL_BUDGET_MS = 3 * 800


def max_month_clicks(scraping: ScrapingConfig) -> int:
    """Next-month clicks one walk may make, counting empty or repeated views."""
    return scraping.max_months - 1 + MAX_EMPTY_MONTHS


def fetch_budget_ms(scraping: ScrapingConfig, step_timeout_ms: int) -> int:
    """
    Upper bound for one fetch_availability call.

    Every randomized pause drawn at request_delay.max (one before navigation,
    one before opening the calendar, one per month click), the scroll, the
    navigation and calendar waits, plus step_timeout_ms for page evaluations.

    Args:
        scraping: Pacing and month limits
        step_timeout_ms: Timeout of a single network step (retry.timeoutMs)
    """
    pauses = 2 + max_month_clicks(scraping)
    return (
        pauses * scraping.request_delay.max_ms
        + SCROLL_BUDGET_MS
        + NAVIGATION_TIMEOUT_MS
        + CALENDAR_TIMEOUT_MS
        + step_timeout_ms
    )


class InvalidListingUrl(StructuralParseError):
    """The property URL is not a listing page of the adapter's platform."""
    pass


@dataclass(frozen=True)
class CalendarLayout:
    calendar_selector: str
    next_month_selectors: Tuple[str, ...]
    extract_script: str                        # JS arrow fn -> [{date, available, price?, minStay?}]
    open_calendar_selectors: Tuple[str, ...] = ()
    default_currency: Optional[str] = None


class CalendarScraper:
    """
    Calendar adapter for one platform.

    Args:
        platform: Platform tag written into Availability.source
        layout: Selectors and extraction script for the platform
        url_check: Returns True when the URL is a listing of this platform
        browser: Object with an `open_page(session)` async context manager
        scraping: Pacing and month limits
        clock: Time source for the randomized pauses
    """

    def __init__(
        self,
        platform: Platform,
        layout: CalendarLayout,
        url_check: Callable[[str], bool],
        browser,
        scraping: ScrapingConfig,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.platform = platform
        self.layout = layout
        self.url_check = url_check
        self.browser = browser
        self.scraping = scraping
        self.clock = clock

    async def fetch_availability(self, session: SessionLease, property_url: str) -> FetchResult:
        """
        Scrape the listing calendar.

        Returns:
            FetchResult with rows, or captcha_encountered=True and no rows
            when an anti-bot challenge was shown

        Raises:
            TransientScrapeError: navigation failed (retry is sensible)
            StructuralParseError: the page layout is not what we expect
        """
        if not self.url_check(property_url):
            raise InvalidListingUrl(f"Not a {self.platform.value} listing URL: {property_url}")

        await human_pause(self.clock, self.scraping.request_delay)

        async with self.browser.open_page(session) as page:
            try:
                await page.goto(property_url, wait_until='domcontentloaded', timeout=NAVIGATION_TIMEOUT_MS)
            except Exception as e:
                raise TransientScrapeError(f"Navigation to {property_url} failed: {e}") from e

            challenge = await self._check_challenge(page)
            if challenge:
                return challenge

            await human_like_scroll(page, self.clock)
            await self._open_calendar(page)

            try:
                await page.wait_for_selector(self.layout.calendar_selector, timeout=CALENDAR_TIMEOUT_MS)
            except Exception as e:
                # Challenges sometimes render after the first paint
                challenge = await self._check_challenge(page)
                if challenge:
                    return challenge
                raise StructuralParseError(
                    f"{self.platform.value}: calendar '{self.layout.calendar_selector}' not found"
                ) from e

            rows, months = await self._walk_months(page)

        logger.info(f"{self.platform.value}: {len(rows)} days over {months} month(s) from {property_url}")
        return FetchResult(rows=rows, months_scraped=months)

    async def _check_challenge(self, page) -> Optional[FetchResult]:
        content = await page.content()
        challenged, reason = detect_challenge(content)
        if not challenged and await page.query_selector(CHALLENGE_SELECTORS):
            challenged, reason = True, 'challenge element'
        if challenged:
            logger.warning(f"{self.platform.value}: anti-bot challenge detected ({reason})")
            return FetchResult(captcha_encountered=True, challenge_reason=reason)
        return None

    async def _open_calendar(self, page):
        for selector in self.layout.open_calendar_selectors:
            element = await page.query_selector(selector)
            if element:
                await human_pause(self.clock, self.scraping.request_delay)
                await element.click()
                return

    async def _extract_month(self, page) -> List[AvailabilityRow]:
        cells = await page.evaluate(self.layout.extract_script)
        return rows_from_cells(cells, self.layout.default_currency)

    async def _click_next_month(self, page) -> bool:
        for selector in self.layout.next_month_selectors:
            button = await page.query_selector(selector)
            if button is None:
                continue
            if await button.is_disabled():
                return False
            await button.click()
            return True
        return False

    async def _walk_months(self, page) -> Tuple[List[AvailabilityRow], int]:
        first = await self._extract_month(page)
        if not first:
            raise StructuralParseError(f"{self.platform.value}: calendar rendered without day cells")

        all_rows = list(first)
        seen_months = {_month_key(first)}
        empty_streak = 0
        clicks_left = max_month_clicks(self.scraping)

        while (
            len(seen_months) < self.scraping.max_months
            and empty_streak < MAX_EMPTY_MONTHS
            and clicks_left > 0
        ):
            await human_pause(self.clock, self.scraping.request_delay)
            if not await self._click_next_month(page):
                logger.debug(f"{self.platform.value}: no further month available")
                break
            clicks_left -= 1

            month_rows = await self._extract_month(page)
            if not month_rows:
                empty_streak += 1
                continue

            key = _month_key(month_rows)
            if key in seen_months:
                empty_streak += 1
                continue

            seen_months.add(key)
            all_rows.extend(month_rows)
            empty_streak = 0

        return clean_rows(all_rows), len(seen_months)


def _month_key(rows: List[AvailabilityRow]) -> str:
    # Views showing two months at once are keyed by their latest month
    latest = max(row.date for row in rows)
    return f"{latest.year}-{latest.month:02d}"
