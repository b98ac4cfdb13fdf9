"""
Repository pattern for data access.

SQLite-backed stores for household topology, usage intervals, tariff slabs,
meter readings and billing cycles.
"""

import logging
import sqlite3
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    BillingCycle,
    ClosedInterval,
    Device,
    Home,
    MeterReading,
    OpenInterval,
    Room,
    TariffSlab,
    UsageInterval,
)
from energy_ledger.core.usage import close_interval

logger = logging.getLogger(__name__)

DEFAULT_CYCLE_DAYS = 60

SCHEMA = """
CREATE TABLE IF NOT EXISTS home (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS room (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    home_id INTEGER NOT NULL REFERENCES home(id) ON DELETE CASCADE,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS device (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id INTEGER NOT NULL REFERENCES room(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    wattage REAL NOT NULL DEFAULT 0,
    is_on INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS usage_interval (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id INTEGER NOT NULL REFERENCES device(id) ON DELETE CASCADE,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    wattage REAL,
    duration_seconds INTEGER NOT NULL DEFAULT 0,
    energy_consumed_kwh REAL NOT NULL DEFAULT 0
);

-- At most one open interval per device
CREATE UNIQUE INDEX IF NOT EXISTS idx_usage_interval_open
    ON usage_interval(device_id) WHERE ended_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_usage_interval_device
    ON usage_interval(device_id, started_at);

CREATE TABLE IF NOT EXISTS tariff_slab (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    min_units TEXT NOT NULL,
    max_units TEXT,
    rate_per_unit TEXT NOT NULL,
    fixed_charge TEXT NOT NULL DEFAULT '0',
    subsidy_percentage TEXT NOT NULL DEFAULT '0',
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS meter_reading (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    home_id INTEGER NOT NULL REFERENCES home(id) ON DELETE CASCADE,
    value REAL NOT NULL,
    timestamp TEXT NOT NULL,
    variance_percentage REAL
);

CREATE TABLE IF NOT EXISTS billing_cycle (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    home_id INTEGER NOT NULL REFERENCES home(id) ON DELETE CASCADE,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    total_units REAL NOT NULL DEFAULT 0,
    estimated_bill REAL NOT NULL DEFAULT 0,
    actual_bill REAL,
    is_active INTEGER NOT NULL DEFAULT 1
);
"""


class IntervalStateError(Exception):
    """Raised when an interval operation would break the one-open-session rule."""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


def _row_to_interval(row: sqlite3.Row) -> UsageInterval:
    if row["ended_at"] is None:
        return OpenInterval(
            id=row["id"],
            device_id=row["device_id"],
            started_at=datetime.fromisoformat(row["started_at"]),
            wattage=row["wattage"],
        )
    return ClosedInterval(
        id=row["id"],
        device_id=row["device_id"],
        started_at=datetime.fromisoformat(row["started_at"]),
        ended_at=datetime.fromisoformat(row["ended_at"]),
        duration_seconds=row["duration_seconds"],
        energy_consumed_kwh=row["energy_consumed_kwh"],
    )


def _row_to_slab(row: sqlite3.Row) -> TariffSlab:
    return TariffSlab(
        min_units=Decimal(row["min_units"]),
        max_units=Decimal(row["max_units"]) if row["max_units"] is not None else None,
        rate_per_unit=Decimal(row["rate_per_unit"]),
        fixed_charge=Decimal(row["fixed_charge"]),
        subsidy_percentage=Decimal(row["subsidy_percentage"]),
        active=bool(row["active"]),
    )


def _row_to_cycle(row: sqlite3.Row) -> BillingCycle:
    return BillingCycle(
        id=row["id"],
        home_id=row["home_id"],
        start_date=date.fromisoformat(row["start_date"]),
        end_date=date.fromisoformat(row["end_date"]),
        total_units=row["total_units"],
        estimated_bill=row["estimated_bill"],
        actual_bill=row["actual_bill"],
        is_active=bool(row["is_active"]),
    )


def _row_to_reading(row: sqlite3.Row) -> MeterReading:
    return MeterReading(
        id=row["id"],
        home_id=row["home_id"],
        value=row["value"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        variance_percentage=row["variance_percentage"],
    )


def _row_to_device(row: sqlite3.Row) -> Device:
    return Device(
        id=row["id"],
        room_id=row["room_id"],
        name=row["name"],
        wattage=row["wattage"],
        is_on=bool(row["is_on"]),
    )


class EnergyRepository:
    """Repository for homes, devices, usage intervals and billing data.

    Every method opens its own connection, so an instance is safe to share.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # Topology

    def add_home(self, name: str) -> Home:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("INSERT INTO home (name) VALUES (?)", (name,))
            conn.commit()
            return Home(id=cursor.lastrowid, name=name)
        finally:
            conn.close()

    def get_home(self, home_id: int) -> Optional[Home]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT id, name FROM home WHERE id = ?", (home_id,)).fetchone()
            return Home(id=row["id"], name=row["name"]) if row else None
        finally:
            conn.close()

    def add_room(self, home_id: int, name: str) -> Room:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "INSERT INTO room (home_id, name) VALUES (?, ?)", (home_id, name)
            )
            conn.commit()
            return Room(id=cursor.lastrowid, home_id=home_id, name=name)
        finally:
            conn.close()

    def add_device(self, room_id: int, name: str, wattage: float) -> Device:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "INSERT INTO device (room_id, name, wattage, is_on) VALUES (?, ?, ?, 0)",
                (room_id, name, wattage),
            )
            conn.commit()
            return Device(id=cursor.lastrowid, room_id=room_id, name=name, wattage=wattage)
        finally:
            conn.close()

    def get_device(self, device_id: int) -> Optional[Device]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, room_id, name, wattage, is_on FROM device WHERE id = ?",
                (device_id,),
            ).fetchone()
            return _row_to_device(row) if row else None
        finally:
            conn.close()

    def list_devices_for_home(self, home_id: int) -> List[Device]:
        """All devices in every room of the home, ordered by room then id."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT d.id, d.room_id, d.name, d.wattage, d.is_on
                FROM device d JOIN room r ON r.id = d.room_id
                WHERE r.home_id = ?
                ORDER BY r.id, d.id
            """, (home_id,)).fetchall()
            return [_row_to_device(row) for row in rows]
        finally:
            conn.close()

    def set_device_state(self, device_id: int, is_on: bool) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE device SET is_on = ? WHERE id = ?", (1 if is_on else 0, device_id)
            )
            conn.commit()
        finally:
            conn.close()

    # Usage intervals

    def list_intervals(self, device_id: int, since: datetime) -> List[UsageInterval]:
        """Closed intervals started at or after ``since`` plus any open interval.

        The open interval is returned whatever its start, since a session
        that began before ``since`` still runs inside the window.
        """
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, device_id, started_at, ended_at, wattage,
                       duration_seconds, energy_consumed_kwh
                FROM usage_interval
                WHERE device_id = ? AND (ended_at IS NULL OR started_at >= ?)
                ORDER BY started_at, id
            """, (device_id, since.isoformat())).fetchall()
            return [_row_to_interval(row) for row in rows]
        finally:
            conn.close()

    def get_open_interval(self, device_id: int) -> Optional[OpenInterval]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT id, device_id, started_at, ended_at, wattage,
                       duration_seconds, energy_consumed_kwh
                FROM usage_interval
                WHERE device_id = ? AND ended_at IS NULL
            """, (device_id,)).fetchone()
            return _row_to_interval(row) if row else None
        finally:
            conn.close()

    def open_interval(self, device_id: int, wattage: float, timestamp: datetime) -> OpenInterval:
        """Start a usage session for a device.

        Raises:
            IntervalStateError: If the device already has an open session
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "INSERT INTO usage_interval (device_id, started_at, wattage) VALUES (?, ?, ?)",
                (device_id, timestamp.isoformat(), wattage),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE" in str(e):
                raise IntervalStateError(
                    f"Device {device_id} already has an open usage interval"
                ) from e
            raise
        finally:
            conn.close()
        return OpenInterval(
            id=cursor.lastrowid, device_id=device_id, started_at=timestamp, wattage=wattage
        )

    def close_open_interval(self, device_id: int, timestamp: datetime) -> Optional[ClosedInterval]:
        """Close the device's open session, fixing its duration and energy.

        Returns:
            The closed interval, or None if the device had no open session
        """
        running = self.get_open_interval(device_id)
        if running is None:
            logger.info("Device %s has no open interval to close", device_id)
            return None

        wattage = running.wattage
        if wattage is None:
            device = self.get_device(device_id)
            wattage = device.wattage if device else 0.0
        closed = close_interval(running, timestamp, wattage)

        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                UPDATE usage_interval
                SET ended_at = ?, duration_seconds = ?, energy_consumed_kwh = ?
                WHERE id = ? AND ended_at IS NULL
            """, (
                closed.ended_at.isoformat(),
                closed.duration_seconds,
                closed.energy_consumed_kwh,
                closed.id,
            ))
            conn.commit()
        finally:
            conn.close()
        return closed

    # Tariff slabs

    def list_active_slabs(self) -> List[TariffSlab]:
        """Active slabs sorted by ``min_units`` ascending."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT min_units, max_units, rate_per_unit, fixed_charge,
                       subsidy_percentage, active
                FROM tariff_slab WHERE active = 1
            """).fetchall()
            slabs = [_row_to_slab(row) for row in rows]
            return sorted(slabs, key=lambda s: s.min_units)
        finally:
            conn.close()

    def replace_slabs(self, slabs: Sequence[TariffSlab]) -> int:
        """Atomically replace the whole slab schedule.

        Returns:
            Number of slabs stored
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute("DELETE FROM tariff_slab")
            for slab in slabs:
                conn.execute("""
                    INSERT INTO tariff_slab
                    (min_units, max_units, rate_per_unit, fixed_charge,
                     subsidy_percentage, active)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    str(slab.min_units),
                    str(slab.max_units) if slab.max_units is not None else None,
                    str(slab.rate_per_unit),
                    str(slab.fixed_charge),
                    str(slab.subsidy_percentage),
                    1 if slab.active else 0,
                ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return len(slabs)

    # Meter readings

    def add_meter_reading(
        self,
        home_id: int,
        value: float,
        timestamp: datetime,
        variance_percentage: Optional[float] = None,
    ) -> MeterReading:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO meter_reading (home_id, value, timestamp, variance_percentage)
                VALUES (?, ?, ?, ?)
            """, (home_id, value, timestamp.isoformat(), variance_percentage))
            conn.commit()
            return MeterReading(
                id=cursor.lastrowid,
                home_id=home_id,
                value=value,
                timestamp=timestamp,
                variance_percentage=variance_percentage,
            )
        finally:
            conn.close()

    def last_reading(self, home_id: int) -> Optional[MeterReading]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT id, home_id, value, timestamp, variance_percentage
                FROM meter_reading WHERE home_id = ?
                ORDER BY timestamp DESC, id DESC LIMIT 1
            """, (home_id,)).fetchone()
            return _row_to_reading(row) if row else None
        finally:
            conn.close()

    def list_meter_readings(self, home_id: int) -> List[MeterReading]:
        """Readings for a home, newest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, home_id, value, timestamp, variance_percentage
                FROM meter_reading WHERE home_id = ?
                ORDER BY timestamp DESC, id DESC
            """, (home_id,)).fetchall()
            return [_row_to_reading(row) for row in rows]
        finally:
            conn.close()

    # Billing cycles

    def active_cycle(self, home_id: int) -> Optional[BillingCycle]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT id, home_id, start_date, end_date, total_units,
                       estimated_bill, actual_bill, is_active
                FROM billing_cycle WHERE home_id = ? AND is_active = 1
                ORDER BY start_date DESC, id DESC LIMIT 1
            """, (home_id,)).fetchone()
            return _row_to_cycle(row) if row else None
        finally:
            conn.close()

    def create_cycle(self, home_id: int, start_date: date, end_date: date) -> BillingCycle:
        """Open a new active cycle, deactivating any previous one."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute(
                "UPDATE billing_cycle SET is_active = 0 WHERE home_id = ? AND is_active = 1",
                (home_id,),
            )
            cursor = conn.execute("""
                INSERT INTO billing_cycle (home_id, start_date, end_date, is_active)
                VALUES (?, ?, ?, 1)
            """, (home_id, start_date.isoformat(), end_date.isoformat()))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return BillingCycle(
            id=cursor.lastrowid, home_id=home_id, start_date=start_date, end_date=end_date
        )

    def get_or_create_active_cycle(
        self,
        home_id: int,
        today: date,
        cycle_days: int = DEFAULT_CYCLE_DAYS,
    ) -> BillingCycle:
        """Return the active cycle, creating a ``cycle_days`` one from today if absent."""
        cycle = self.active_cycle(home_id)
        if cycle is not None:
            return cycle
        cycle = self.create_cycle(home_id, today, today + timedelta(days=cycle_days))
        logger.info(
            "Created billing cycle %s to %s for home %s",
            cycle.start_date, cycle.end_date, home_id,
        )
        return cycle

    def update_cycle_estimate(self, cycle_id: int, total_units: float, estimated_bill: float) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "UPDATE billing_cycle SET total_units = ?, estimated_bill = ? WHERE id = ?",
                (total_units, estimated_bill, cycle_id),
            )
            conn.commit()
        finally:
            conn.close()

    def list_cycles(self, home_id: int) -> List[BillingCycle]:
        """Billing history for a home, newest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, home_id, start_date, end_date, total_units,
                       estimated_bill, actual_bill, is_active
                FROM billing_cycle WHERE home_id = ?
                ORDER BY start_date DESC, id DESC
            """, (home_id,)).fetchall()
            return [_row_to_cycle(row) for row in rows]
        finally:
            conn.close()


def get_repository(db_path: str = DEFAULT_DB_PATH) -> EnergyRepository:
    """Get a repository instance for the given database.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of EnergyRepository
    """
    return EnergyRepository(db_path)
