"""
Unit tests for storage layer.

Tests schema creation, interval lifecycle, slab schedules, meter readings
and billing cycles.
"""

import os
import tempfile
from datetime import date, datetime
from decimal import Decimal

import pytest

from energy_ledger.config.loader import load_tariff_config
from energy_ledger.storage.db import get_connection
from energy_ledger.storage.models import ClosedInterval, OpenInterval, TariffSlab
from energy_ledger.storage.repository import (
    EnergyRepository,
    IntervalStateError,
    initialize_schema,
)


@pytest.fixture
def repository():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        initialize_schema(db_path)
        yield EnergyRepository(db_path)


@pytest.fixture
def device(repository):
    home = repository.add_home("Test Home")
    room = repository.add_room(home.id, "Kitchen")
    return repository.add_device(room.id, "Kettle", 1000)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify all tables are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                rows = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                ).fetchall()
                tables = {row[0] for row in rows}
            finally:
                conn.close()

            assert {
                "home", "room", "device", "usage_interval",
                "tariff_slab", "meter_reading", "billing_cycle",
            } <= tables

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestTopology:
    """Test homes, rooms and devices."""

    def test_devices_are_listed_per_home(self, repository):
        home = repository.add_home("Mine")
        other = repository.add_home("Theirs")
        room = repository.add_room(home.id, "Hall")
        other_room = repository.add_room(other.id, "Hall")
        repository.add_device(room.id, "Fan", 75)
        repository.add_device(room.id, "TV", 80)
        repository.add_device(other_room.id, "AC", 1500)

        names = [d.name for d in repository.list_devices_for_home(home.id)]
        assert names == ["Fan", "TV"]

    def test_unknown_home_and_device(self, repository):
        assert repository.get_home(42) is None
        assert repository.get_device(42) is None

    def test_set_device_state(self, repository, device):
        repository.set_device_state(device.id, True)
        assert repository.get_device(device.id).is_on is True


class TestUsageIntervals:
    """Test the open/close lifecycle of usage intervals."""

    def test_open_then_close(self, repository, device):
        repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 10))
        closed = repository.close_open_interval(device.id, datetime(2024, 1, 1, 11, 30))

        assert isinstance(closed, ClosedInterval)
        assert closed.duration_seconds == 5400
        assert closed.energy_consumed_kwh == pytest.approx(1.5)
        assert repository.get_open_interval(device.id) is None

    def test_second_open_interval_is_rejected(self, repository, device):
        repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 10))

        with pytest.raises(IntervalStateError):
            repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 11))

    def test_reopen_after_close(self, repository, device):
        repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 10))
        repository.close_open_interval(device.id, datetime(2024, 1, 1, 11))
        reopened = repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 12))

        assert repository.get_open_interval(device.id) == reopened

    def test_close_without_open_interval(self, repository, device):
        assert repository.close_open_interval(device.id, datetime(2024, 1, 1, 10)) is None

    def test_open_interval_keeps_session_wattage(self, repository, device):
        repository.open_interval(device.id, 600, datetime(2024, 1, 1, 10))
        closed = repository.close_open_interval(device.id, datetime(2024, 1, 1, 11))

        assert closed.energy_consumed_kwh == pytest.approx(0.6)

    def test_list_intervals_filters_closed_by_start(self, repository, device):
        repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 8))
        repository.close_open_interval(device.id, datetime(2024, 1, 1, 9))
        repository.open_interval(device.id, 1000, datetime(2024, 1, 2, 8))
        repository.close_open_interval(device.id, datetime(2024, 1, 2, 9))

        intervals = repository.list_intervals(device.id, datetime(2024, 1, 2))
        assert [i.started_at for i in intervals] == [datetime(2024, 1, 2, 8)]

    def test_list_intervals_includes_open_interval_started_earlier(self, repository, device):
        repository.open_interval(device.id, 1000, datetime(2024, 1, 1, 22))

        intervals = repository.list_intervals(device.id, datetime(2024, 1, 2))
        assert len(intervals) == 1
        assert isinstance(intervals[0], OpenInterval)
        assert intervals[0].wattage == 1000


class TestTariffSlabs:
    """Test slab schedule persistence."""

    def test_slabs_round_trip(self, repository):
        config = load_tariff_config()
        count = repository.replace_slabs(config.slabs)

        assert count == 6
        assert repository.list_active_slabs() == config.active_slabs

    def test_replace_discards_previous_schedule(self, repository):
        repository.replace_slabs(load_tariff_config().slabs)
        repository.replace_slabs([TariffSlab(Decimal("0"), None, Decimal("5"))])

        slabs = repository.list_active_slabs()
        assert len(slabs) == 1
        assert slabs[0].rate_per_unit == Decimal("5")

    def test_inactive_slabs_are_hidden(self, repository):
        repository.replace_slabs([
            TariffSlab(Decimal("0"), Decimal("100"), Decimal("2.5")),
            TariffSlab(Decimal("101"), None, Decimal("4"), active=False),
        ])
        assert [s.min_units for s in repository.list_active_slabs()] == [Decimal("0")]

    def test_empty_store(self, repository):
        assert repository.list_active_slabs() == []


class TestMeterReadings:
    """Test meter reading storage."""

    def test_last_reading_is_most_recent(self, repository, device):
        home_id = 1
        repository.add_meter_reading(home_id, 120.0, datetime(2024, 1, 10), 2.5)
        repository.add_meter_reading(home_id, 100.0, datetime(2024, 1, 1))

        last = repository.last_reading(home_id)
        assert last.value == 120.0
        assert last.variance_percentage == 2.5
        assert len(repository.list_meter_readings(home_id)) == 2

    def test_no_readings(self, repository, device):
        assert repository.last_reading(1) is None


class TestBillingCycles:
    """Test billing cycle lifecycle."""

    def test_get_or_create_uses_cycle_length(self, repository):
        home = repository.add_home("Test Home")
        cycle = repository.get_or_create_active_cycle(home.id, date(2024, 1, 1))

        assert cycle.start_date == date(2024, 1, 1)
        assert cycle.end_date == date(2024, 3, 1)
        assert repository.get_or_create_active_cycle(home.id, date(2024, 1, 5)).id == cycle.id

    def test_new_cycle_deactivates_previous(self, repository):
        home = repository.add_home("Test Home")
        first = repository.create_cycle(home.id, date(2024, 1, 1), date(2024, 3, 1))
        second = repository.create_cycle(home.id, date(2024, 3, 1), date(2024, 4, 30))

        assert repository.active_cycle(home.id).id == second.id
        history = repository.list_cycles(home.id)
        assert [c.id for c in history] == [second.id, first.id]
        assert history[1].is_active is False

    def test_update_cycle_estimate(self, repository):
        home = repository.add_home("Test Home")
        cycle = repository.create_cycle(home.id, date(2024, 1, 1), date(2024, 3, 1))
        repository.update_cycle_estimate(cycle.id, 250.0, 625.0)

        stored = repository.active_cycle(home.id)
        assert stored.total_units == 250.0
        assert stored.estimated_bill == 625.0
