"""
Usage reconstruction from on/off events.

Converts a device's power-on sessions into energy totals over a query window.
Closed sessions contribute the energy fixed when they were closed; the open
session, if any, is prorated live up to the end of the window.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional

from energy_ledger.storage.models import ClosedInterval, OpenInterval, UsageInterval

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600
WATTS_PER_KILOWATT = 1000


def coerce_wattage(wattage) -> float:
    """Return wattage as a non-negative float, treating bad input as zero."""
    if isinstance(wattage, bool):
        return 0.0
    try:
        value = float(wattage)
    except (TypeError, ValueError):
        logger.warning("Malformed wattage %r treated as 0", wattage)
        return 0.0
    if math.isnan(value) or math.isinf(value) or value < 0:
        logger.warning("Malformed wattage %r treated as 0", wattage)
        return 0.0
    return value


def energy_kwh(wattage: float, seconds: float) -> float:
    """Energy in kWh drawn at ``wattage`` Watts for ``seconds`` seconds."""
    if seconds <= 0:
        return 0.0
    return coerce_wattage(wattage) / WATTS_PER_KILOWATT * (seconds / SECONDS_PER_HOUR)


def close_interval(
    open_interval: OpenInterval,
    ended_at: datetime,
    wattage: float,
) -> ClosedInterval:
    """Close an open session and fix its duration and energy.

    A session that appears to end before it started (clock skew) is closed
    with zero duration instead of failing.

    Args:
        open_interval: The running session
        ended_at: Power-off timestamp
        wattage: Draw in Watts for the whole session

    Returns:
        The closed interval with duration and energy filled in
    """
    elapsed = (ended_at - open_interval.started_at).total_seconds()
    if elapsed < 0:
        logger.warning(
            "Clock anomaly on device %s: interval %s ends at %s before it started at %s; "
            "recording zero duration",
            open_interval.device_id,
            open_interval.id,
            ended_at.isoformat(),
            open_interval.started_at.isoformat(),
        )
        elapsed = 0
    duration_seconds = int(math.floor(elapsed))

    return ClosedInterval(
        id=open_interval.id,
        device_id=open_interval.device_id,
        started_at=open_interval.started_at,
        ended_at=ended_at,
        duration_seconds=duration_seconds,
        energy_consumed_kwh=energy_kwh(wattage, duration_seconds),
    )


def open_interval_energy(
    interval: OpenInterval,
    wattage: float,
    window_start: datetime,
    window_end: datetime,
) -> float:
    """Live energy of a running session clipped to the window."""
    effective_start = max(interval.started_at, window_start)
    seconds = (window_end - effective_start).total_seconds()
    session_wattage = interval.wattage if interval.wattage is not None else wattage
    return energy_kwh(session_wattage, seconds)


def latest_open_interval(intervals: Iterable[UsageInterval]) -> Optional[OpenInterval]:
    """Pick the running session from a device's intervals.

    A device should never have more than one; if it does, the most recent
    wins so the session is not counted twice.
    """
    open_intervals: List[OpenInterval] = [i for i in intervals if isinstance(i, OpenInterval)]
    if not open_intervals:
        return None
    if len(open_intervals) > 1:
        logger.warning(
            "Device %s has %d open intervals; using the most recent",
            open_intervals[0].device_id,
            len(open_intervals),
        )
    return max(open_intervals, key=lambda i: (i.started_at, i.id))


def accumulated_energy(
    wattage: float,
    intervals: Iterable[UsageInterval],
    window_start: datetime,
    window_end: Optional[datetime] = None,
) -> float:
    """Total energy a device used inside ``[window_start, window_end)``.

    Closed sessions are attributed to the window they started in. The open
    session is recomputed against ``window_end`` every call, so results are
    only repeatable when ``window_end`` is passed explicitly.

    Args:
        wattage: Device's rated draw in Watts, used when the open session
            carries no wattage of its own
        intervals: The device's sessions
        window_start: Inclusive start of the query window
        window_end: Exclusive end of the query window, defaults to now

    Returns:
        Energy in kWh, never negative
    """
    if window_end is None:
        window_end = datetime.now()
    intervals = list(intervals)

    total = 0.0
    for interval in intervals:
        if isinstance(interval, ClosedInterval):
            if window_start <= interval.started_at < window_end:
                total += max(interval.energy_consumed_kwh or 0.0, 0.0)

    running = latest_open_interval(intervals)
    if running is not None:
        total += open_interval_energy(running, wattage, window_start, window_end)

    return total
