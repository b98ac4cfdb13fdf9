"""
Home-level consumption aggregation.

Sums per-device energy across every room of a home and resolves the standard
query windows (today, current cycle, since last meter reading).
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Dict, List, Mapping, Optional, Sequence

from .usage import accumulated_energy, coerce_wattage, latest_open_interval, open_interval_energy
from energy_ledger.storage.models import (
    BillingCycle,
    ClosedInterval,
    Device,
    MeterReading,
    UsageInterval,
)


@dataclass(frozen=True)
class ActiveDeviceUsage:
    """Live contribution of a device that is currently on."""
    device_id: int
    name: str
    wattage: float
    started_at: datetime
    duration_hours: float
    energy_kwh: float


@dataclass
class HomeEnergy:
    """Energy used by a whole home inside one window."""
    window_start: datetime
    window_end: datetime
    completed_kwh: float = 0.0
    active_kwh: float = 0.0
    per_device_kwh: Dict[int, float] = field(default_factory=dict)
    active_devices: List[ActiveDeviceUsage] = field(default_factory=list)

    @property
    def total_kwh(self) -> float:
        return self.completed_kwh + self.active_kwh


def local_naive(moment: datetime) -> datetime:
    """Convert an aware timestamp to naive local time.

    Stored intervals, readings and cycles are naive local times, so every
    timestamp entering a query is normalised the same way. Naive values are
    returned unchanged.
    """
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def today_start(now: datetime) -> datetime:
    """Local midnight of the day containing ``now``."""
    return datetime.combine(local_naive(now).date(), time.min)


def cycle_start(cycle: BillingCycle) -> datetime:
    """Start of the billing cycle as a timestamp."""
    return datetime.combine(cycle.start_date, time.min)


def since_last_reading_start(
    last_reading: Optional[MeterReading],
    cycle: Optional[BillingCycle],
    now: datetime,
) -> datetime:
    """Window start for "since last reading": the reading, else the cycle, else now."""
    if last_reading is not None:
        return last_reading.timestamp
    if cycle is not None:
        return cycle_start(cycle)
    return now


def days_remaining(cycle: BillingCycle, now: datetime) -> int:
    """Whole days left in the cycle, rounded up; negative once it has ended."""
    end = datetime.combine(cycle.end_date, time.min)
    seconds = (end - now).total_seconds()
    days, rest = divmod(seconds, 86400)
    return int(days) + (1 if rest > 0 else 0)


def live_load_watts(devices: Sequence[Device]) -> float:
    """Instantaneous draw of every device that is on."""
    return sum(coerce_wattage(d.wattage) for d in devices if d.is_on)


def home_energy(
    devices: Sequence[Device],
    intervals_by_device: Mapping[int, Sequence[UsageInterval]],
    window_start: datetime,
    window_end: datetime,
) -> HomeEnergy:
    """Aggregate energy over all devices of a home.

    ``window_end`` must be a single pinned instant shared by every device so
    the totals are consistent with each other.
    """
    result = HomeEnergy(window_start=window_start, window_end=window_end)

    for device in devices:
        intervals = list(intervals_by_device.get(device.id, ()))
        closed = [i for i in intervals if isinstance(i, ClosedInterval)]
        device_total = accumulated_energy(device.wattage, intervals, window_start, window_end)
        completed = accumulated_energy(device.wattage, closed, window_start, window_end)
        result.completed_kwh += completed
        result.per_device_kwh[device.id] = device_total

        running = latest_open_interval(intervals)
        if running is None:
            continue
        live = open_interval_energy(running, device.wattage, window_start, window_end)
        result.active_kwh += live
        effective_start = max(running.started_at, window_start)
        hours = max((window_end - effective_start).total_seconds(), 0) / 3600
        result.active_devices.append(ActiveDeviceUsage(
            device_id=device.id,
            name=device.name,
            wattage=running.wattage if running.wattage is not None else coerce_wattage(device.wattage),
            started_at=running.started_at,
            duration_hours=hours,
            energy_kwh=live,
        ))

    return result
