"""Integration tests for the idempotent availability writer."""
from datetime import date
from decimal import Decimal

from services.availability_writer import AvailabilityWriter
from services.scraper_backends.base import AvailabilityRow

from fakes import make_rows


def stored(store, property_id):
    return {
        row.date: (row.is_available, row.source, row.price, row.currency, row.minimum_stay)
        for row in store.get_availability(property_id)
    }


class TestAvailabilityWriter:
    def test_writes_one_row_per_date(self, store, clock, add_property):
        prop_id = add_property()
        writer = AvailabilityWriter(store, clock)

        written = writer.write(prop_id, "airbnb", make_rows(date(2026, 3, 1), 10))

        assert written == 10
        rows = store.get_availability(prop_id)
        assert len(rows) == 10
        assert all(row.source == "airbnb" for row in rows)
        assert rows[0].price == Decimal("120.00")

    def test_same_rows_twice_is_idempotent(self, store, clock, add_property):
        prop_id = add_property()
        writer = AvailabilityWriter(store, clock)
        rows = make_rows(date(2026, 3, 1), 5)

        writer.write(prop_id, "airbnb", rows)
        first = stored(store, prop_id)
        writer.write(prop_id, "airbnb", rows)

        assert stored(store, prop_id) == first
        assert len(store.get_availability(prop_id)) == 5

    def test_last_updated_strictly_increases_with_frozen_clock(self, store, clock, add_property):
        prop_id = add_property()
        writer = AvailabilityWriter(store, clock)
        rows = make_rows(date(2026, 3, 1), 3)

        writer.write(prop_id, "airbnb", rows)
        before = {row.date: row.last_updated for row in store.get_availability(prop_id)}
        writer.write(prop_id, "airbnb", rows)
        after = {row.date: row.last_updated for row in store.get_availability(prop_id)}

        assert all(after[d] > before[d] for d in before)

    def test_shorter_window_keeps_previous_dates(self, store, clock, add_property):
        prop_id = add_property()
        writer = AvailabilityWriter(store, clock)

        writer.write(prop_id, "airbnb", make_rows(date(2026, 3, 1), 10))
        writer.write(prop_id, "airbnb", make_rows(date(2026, 3, 1), 4, available=False))

        rows = stored(store, prop_id)
        assert len(rows) == 10
        assert rows[date(2026, 3, 2)][0] is False
        assert rows[date(2026, 3, 9)][0] is True

    def test_source_follows_the_platform_that_wrote_the_row(self, store, clock, add_property):
        prop_id = add_property()
        writer = AvailabilityWriter(store, clock)

        writer.write(prop_id, "airbnb", make_rows(date(2026, 3, 1), 6))
        writer.write(prop_id, "booking", make_rows(date(2026, 3, 5), 4, price="140.00"))

        rows = stored(store, prop_id)
        assert len(rows) == 8
        assert rows[date(2026, 3, 4)][1] == "airbnb"
        assert rows[date(2026, 3, 5)][1] == "booking"
        assert rows[date(2026, 3, 8)][2] == Decimal("140.00")

    def test_duplicate_dates_in_one_batch_collapse(self, store, clock, add_property):
        prop_id = add_property()
        writer = AvailabilityWriter(store, clock)
        rows = [
            AvailabilityRow(date=date(2026, 3, 1), is_available=True),
            AvailabilityRow(date=date(2026, 3, 1), is_available=False),
        ]

        assert writer.write(prop_id, "vrbo", rows) == 1
        assert stored(store, prop_id)[date(2026, 3, 1)][0] is False

    def test_empty_batch_writes_nothing(self, store, clock, add_property):
        prop_id = add_property()
        assert AvailabilityWriter(store, clock).write(prop_id, "airbnb", []) == 0
        assert store.get_availability(prop_id) == []

    def test_other_properties_untouched(self, store, clock, add_property):
        a = add_property()
        b = add_property(name="Mountain Lodge")
        writer = AvailabilityWriter(store, clock)

        writer.write(a, "airbnb", make_rows(date(2026, 3, 1), 3))
        writer.write(b, "airbnb", make_rows(date(2026, 3, 1), 2))

        assert len(store.get_availability(a)) == 3
        assert len(store.get_availability(b)) == 2
