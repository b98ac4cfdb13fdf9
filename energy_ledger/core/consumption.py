"""
Consumption service.

Ties the stores to the usage reconstructor and the billing calculator:
device toggling, dashboard summaries, cycle bill projection, meter readings
and top consumers. Every pass reads the clock once and threads that instant
through the whole aggregation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from .aggregation import (
    ActiveDeviceUsage,
    HomeEnergy,
    cycle_start,
    days_remaining,
    home_energy,
    live_load_watts,
    local_naive,
    since_last_reading_start,
    today_start,
)
from .billing import BillProjection, compute_bill, round_money
from .usage import SECONDS_PER_HOUR
from energy_ledger.storage.models import (
    BillingCycle,
    ClosedInterval,
    Device,
    MeterReading,
)
from energy_ledger.storage.repository import DEFAULT_CYCLE_DAYS, EnergyRepository

logger = logging.getLogger(__name__)


class HomeNotFoundError(LookupError):
    """Raised when a home id does not exist."""


class DeviceNotFoundError(LookupError):
    """Raised when a device id does not exist."""


@dataclass
class ConsumptionSummary:
    """Dashboard view of a home's consumption at one instant."""
    home_id: int
    as_of: datetime
    live_load_watts: float
    active_device_count: int
    today_kwh: float
    cycle_kwh: float
    since_last_reading_kwh: float
    current_estimated_reading: float
    cycle: BillingCycle
    days_remaining: int
    last_reading: Optional[MeterReading] = None
    active_devices: List[ActiveDeviceUsage] = field(default_factory=list)


@dataclass(frozen=True)
class ConsumerShare:
    """One device's share of the cycle's consumption and bill."""
    device_id: int
    name: str
    wattage: float
    is_on: bool
    total_kwh: float
    total_hours: float
    percentage: int
    estimated_cost: Decimal


def _whole_percent(fraction: float) -> int:
    """Percentage rounded half-up to a whole number."""
    return int((Decimal(str(fraction)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _require_home(repository: EnergyRepository, home_id: int) -> None:
    if repository.get_home(home_id) is None:
        raise HomeNotFoundError(f"Home not found: {home_id}")


def toggle_device(
    repository: EnergyRepository,
    device_id: int,
    is_on: bool,
    now: Optional[datetime] = None,
) -> Device:
    """Switch a device on or off, opening or closing its usage interval.

    Switching a device to the state it is already in changes nothing.

    Raises:
        DeviceNotFoundError: If the device does not exist
        IntervalStateError: If switching on a device that already has an open
            session; the device state is left unchanged
    """
    now = local_naive(now or datetime.now())
    device = repository.get_device(device_id)
    if device is None:
        raise DeviceNotFoundError(f"Device not found: {device_id}")

    if device.is_on == is_on:
        logger.info("Device %s already %s", device_id, "on" if is_on else "off")
        return device

    if is_on:
        repository.open_interval(device_id, device.wattage, now)
        repository.set_device_state(device_id, True)
        logger.info("Device %s (%s) turned on at %s", device_id, device.name, now.isoformat())
    else:
        closed = repository.close_open_interval(device_id, now)
        repository.set_device_state(device_id, False)
        if closed is not None:
            logger.info(
                "Device %s (%s) turned off; %.2fh, %.4f kWh",
                device_id, device.name,
                closed.duration_seconds / SECONDS_PER_HOUR, closed.energy_consumed_kwh,
            )
    return repository.get_device(device_id)


def home_consumption(
    repository: EnergyRepository,
    home_id: int,
    window_start: datetime,
    now: datetime,
    devices: Optional[List[Device]] = None,
) -> HomeEnergy:
    """Energy used by every device of a home between ``window_start`` and ``now``."""
    window_start, now = local_naive(window_start), local_naive(now)
    if devices is None:
        devices = repository.list_devices_for_home(home_id)
    intervals = {d.id: repository.list_intervals(d.id, window_start) for d in devices}
    return home_energy(devices, intervals, window_start, now)


def consumption_summary(
    repository: EnergyRepository,
    home_id: int,
    now: Optional[datetime] = None,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> ConsumptionSummary:
    """Build the dashboard summary for a home.

    Creates the home's billing cycle if none is active.

    Raises:
        HomeNotFoundError: If the home does not exist
    """
    now = local_naive(now or datetime.now())
    _require_home(repository, home_id)

    devices = repository.list_devices_for_home(home_id)
    cycle = repository.get_or_create_active_cycle(home_id, now.date(), cycle_days)
    last_reading = repository.last_reading(home_id)

    since_reading = home_consumption(
        repository, home_id, since_last_reading_start(last_reading, cycle, now), now, devices
    )
    today = home_consumption(repository, home_id, today_start(now), now, devices)
    in_cycle = home_consumption(repository, home_id, cycle_start(cycle), now, devices)

    last_value = last_reading.value if last_reading else 0.0
    return ConsumptionSummary(
        home_id=home_id,
        as_of=now,
        live_load_watts=live_load_watts(devices),
        active_device_count=sum(1 for d in devices if d.is_on),
        today_kwh=today.total_kwh,
        cycle_kwh=in_cycle.total_kwh,
        since_last_reading_kwh=since_reading.total_kwh,
        current_estimated_reading=last_value + since_reading.total_kwh,
        cycle=cycle,
        days_remaining=days_remaining(cycle, now),
        last_reading=last_reading,
        active_devices=since_reading.active_devices,
    )


def project_cycle_bill(
    repository: EnergyRepository,
    home_id: int,
    now: Optional[datetime] = None,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> BillProjection:
    """Project the bill for the active cycle and record the estimate on it.

    Raises:
        HomeNotFoundError: If the home does not exist
    """
    now = local_naive(now or datetime.now())
    _require_home(repository, home_id)

    cycle = repository.get_or_create_active_cycle(home_id, now.date(), cycle_days)
    usage = home_consumption(repository, home_id, cycle_start(cycle), now)
    projection = compute_bill(usage.total_kwh, repository.list_active_slabs())

    repository.update_cycle_estimate(cycle.id, usage.total_kwh, float(projection.net_bill))
    return projection


def submit_meter_reading(
    repository: EnergyRepository,
    home_id: int,
    value: float,
    now: Optional[datetime] = None,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> MeterReading:
    """Record a manual meter reading with its variance against the cycle estimate.

    Raises:
        HomeNotFoundError: If the home does not exist
        ValueError: If the reading is negative
    """
    now = local_naive(now or datetime.now())
    if value < 0:
        raise ValueError("Meter reading must be >= 0")
    _require_home(repository, home_id)

    cycle = repository.get_or_create_active_cycle(home_id, now.date(), cycle_days)
    cycle_kwh = home_consumption(repository, home_id, cycle_start(cycle), now).total_kwh
    variance = ((value - cycle_kwh) / cycle_kwh) * 100 if cycle_kwh > 0 else 0.0

    return repository.add_meter_reading(home_id, value, now, variance)


def top_consumers(
    repository: EnergyRepository,
    home_id: int,
    now: Optional[datetime] = None,
    limit: int = 10,
    cycle_days: int = DEFAULT_CYCLE_DAYS,
) -> List[ConsumerShare]:
    """Devices ranked by cycle consumption, each with its share of the bill.

    Devices with no usage are left out unless they are currently on.

    Raises:
        HomeNotFoundError: If the home does not exist
    """
    now = local_naive(now or datetime.now())
    _require_home(repository, home_id)

    cycle = repository.get_or_create_active_cycle(home_id, now.date(), cycle_days)
    window_start = cycle_start(cycle)
    devices = repository.list_devices_for_home(home_id)
    intervals = {d.id: repository.list_intervals(d.id, window_start) for d in devices}
    usage = home_energy(devices, intervals, window_start, now)

    seconds: Dict[int, float] = {}
    for device in devices:
        total = 0.0
        for interval in intervals[device.id]:
            if isinstance(interval, ClosedInterval) and window_start <= interval.started_at < now:
                total += interval.duration_seconds
        seconds[device.id] = total
    for active in usage.active_devices:
        seconds[active.device_id] += active.duration_hours * SECONDS_PER_HOUR

    ranked = sorted(
        (d for d in devices if usage.per_device_kwh.get(d.id, 0.0) > 0 or d.is_on),
        key=lambda d: usage.per_device_kwh.get(d.id, 0.0),
        reverse=True,
    )[:limit]

    bill = compute_bill(usage.total_kwh, repository.list_active_slabs())
    total_kwh = usage.total_kwh

    shares = []
    for device in ranked:
        kwh = usage.per_device_kwh.get(device.id, 0.0)
        fraction = kwh / total_kwh if total_kwh > 0 else 0.0
        shares.append(ConsumerShare(
            device_id=device.id,
            name=device.name,
            wattage=device.wattage,
            is_on=device.is_on,
            total_kwh=kwh,
            total_hours=seconds[device.id] / SECONDS_PER_HOUR,
            percentage=_whole_percent(fraction),
            estimated_cost=round_money(bill.net_bill * Decimal(str(fraction))),
        ))
    return shares
