"""
Time source for the sync engine.

Backoff waits, scraper pacing and sync timestamps all go through a Clock so
tests can swap in a fake one and run without real sleeps.
"""
import asyncio
import random
from datetime import datetime, timezone


class Clock:
    """Wall clock, asyncio sleeps and random jitter."""

    def now(self) -> datetime:
        """Current time as naive UTC (matches the DateTime columns)."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)

    def uniform(self, low: float, high: float) -> float:
        return random.uniform(low, high)


SYSTEM_CLOCK = Clock()
