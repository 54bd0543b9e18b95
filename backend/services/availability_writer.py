"""
Merge scraped calendar rows into the availability table.

Upserts keyed on (property_id, date); dates the platform did not return are
never touched. Every write stamps last_updated strictly later than anything
previously written for the property.
"""
import logging
from datetime import timedelta
from typing import Iterable

from .clock import Clock, SYSTEM_CLOCK
from .scraper_backends.base import AvailabilityRow, clean_rows

logger = logging.getLogger(__name__)

TIMESTAMP_STEP = timedelta(microseconds=1)


class AvailabilityWriter:
    def __init__(self, store, clock: Clock = SYSTEM_CLOCK):
        self.store = store
        self.clock = clock

    def write(self, property_id: int, source: str, rows: Iterable[AvailabilityRow]) -> int:
        """
        Upsert rows for one property.

        Args:
            property_id: Property the rows belong to
            source: Platform tag that produced the rows
            rows: Extracted rows (duplicates by date collapse, last wins)

        Returns:
            Number of distinct dates written
        """
        rows = clean_rows(rows)
        if not rows:
            return 0

        stamp = self.clock.now()
        previous = self.store.latest_availability_update(property_id)
        if previous is not None and stamp <= previous:
            stamp = previous + TIMESTAMP_STEP

        written = self.store.upsert_availability(property_id, source, rows, stamp)
        logger.info(
            f"Property {property_id}: wrote {written} availability row(s) from {source} "
            f"({rows[0].date} to {rows[-1].date})"
        )
        return written
