"""
Data models for storage layer.

Defines household topology, usage intervals, tariff slabs and billing records.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class Home:
    """A household whose consumption is tracked."""
    id: int
    name: str


@dataclass(frozen=True)
class Room:
    """A room inside a home."""
    id: int
    home_id: int
    name: str


@dataclass(frozen=True)
class Device:
    """An appliance with a rated power draw in Watts."""
    id: int
    room_id: int
    name: str
    wattage: float
    is_on: bool = False


@dataclass(frozen=True)
class OpenInterval:
    """A power-on session that has not ended yet.

    The wattage is the device's rated draw at the moment the session opened,
    so a later change to the device does not rewrite a running session.
    """
    id: int
    device_id: int
    started_at: datetime
    wattage: Optional[float] = None


@dataclass(frozen=True)
class ClosedInterval:
    """A finished power-on session with its energy fixed at close time."""
    id: int
    device_id: int
    started_at: datetime
    ended_at: datetime
    duration_seconds: int
    energy_consumed_kwh: float


UsageInterval = Union[OpenInterval, ClosedInterval]


@dataclass(frozen=True)
class TariffSlab:
    """One tier of the unit-rate schedule.

    Bounds are inclusive; ``max_units`` of None marks the unbounded top slab.
    """
    min_units: Decimal
    max_units: Optional[Decimal]
    rate_per_unit: Decimal
    fixed_charge: Decimal = Decimal("0")
    subsidy_percentage: Decimal = Decimal("0")
    active: bool = True

    @property
    def label(self) -> str:
        if self.max_units is None:
            return f"{self.min_units}+ units"
        return f"{self.min_units}-{self.max_units} units"


@dataclass(frozen=True)
class MeterReading:
    """A manual reading of the physical meter."""
    id: int
    home_id: int
    value: float
    timestamp: datetime
    variance_percentage: Optional[float] = None


@dataclass(frozen=True)
class BillingCycle:
    """A billing period for a home (60 days unless configured otherwise)."""
    id: int
    home_id: int
    start_date: date
    end_date: date
    total_units: float = 0.0
    estimated_bill: float = 0.0
    actual_bill: Optional[float] = None
    is_active: bool = True
