"""
Playwright browser handling shared by all calendar adapters.

One Chromium instance per process; every sync attempt gets its own browser
context carrying the leased identity's proxy and stealth profile.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import async_playwright, Browser, Page

from ..clock import Clock, SYSTEM_CLOCK
from ..proxy_pool import SessionLease
from ..stealth import LAUNCH_ARGS
from ..sync_config import RequestDelay

logger = logging.getLogger(__name__)


class BrowserManager:
    """
    Local Playwright Chromium.

    Features:
    - Per-identity proxy and fingerprint on each context
    - Stealth init script injected before page scripts
    - Lazy start, restart if the browser disconnected
    """

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        """Ensure browser is running, start if needed."""
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=LAUNCH_ARGS,
                )
        return self._browser

    @asynccontextmanager
    async def open_page(self, session: SessionLease) -> AsyncIterator[Page]:
        """Open a page in a fresh context bound to the leased identity."""
        browser = await self._ensure_browser()

        options = {}
        if session.stealth:
            options.update(session.stealth.context_options())
        if session.proxy:
            options['proxy'] = session.proxy

        context = await browser.new_context(**options)
        page = None
        try:
            if session.stealth:
                await context.add_init_script(session.stealth.init_script())
            page = await context.new_page()
            yield page
        finally:
            if page:
                await page.close()
            await context.close()

    async def close(self):
        """Clean up browser resources."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None


async def human_pause(clock: Clock, delay: RequestDelay):
    """Sleep a uniformly random time within the configured request delay bounds."""
    await clock.sleep(clock.uniform(delay.min_ms, delay.max_ms) / 1000)


async def human_like_scroll(page: Page, clock: Clock = SYSTEM_CLOCK, steps: int = 3):
    """Simulate human-like scrolling behavior."""
    for _ in range(steps):
        await page.mouse.wheel(0, int(clock.uniform(300, 600)))
        await clock.sleep(clock.uniform(0.3, 0.8))
