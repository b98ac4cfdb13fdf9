"""
Slab tariff billing.

Converts a quantity of energy units into a tiered bill with subsidies, a fixed
charge and a warning about the next, more expensive slab.
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, Overflow, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from energy_ledger.storage.models import TariffSlab

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Working precision grows with operand magnitude, up to MAX_PRECISION digits.
BASE_PRECISION = 28
MAX_PRECISION = 1000


class BillDiagnostic(Enum):
    """Reasons a projection was degraded instead of computed normally."""
    NO_TARIFF_DATA = "no_tariff_data"
    INVALID_UNITS = "invalid_units"


@dataclass(frozen=True)
class BillBreakdownEntry:
    """Cost attributed to a single slab, at full precision."""
    slab: str
    units: Decimal
    rate: Decimal
    gross_cost: Decimal
    subsidy: Decimal
    net_cost: Decimal
    fixed_charge: Decimal


@dataclass(frozen=True)
class NextSlabWarning:
    """Units left before consumption crosses into a dearer slab."""
    units_to_next_slab: Decimal
    next_slab_rate: Decimal
    current_rate: Decimal


@dataclass(frozen=True)
class BillProjection:
    """Projected bill for a quantity of units."""
    total_units: Decimal
    net_bill: Decimal
    fixed_charge: Decimal
    total_subsidy: Decimal
    breakdown: Tuple[BillBreakdownEntry, ...] = ()
    next_slab_warning: Optional[NextSlabWarning] = None
    current_slab: Optional[str] = None
    diagnostics: Tuple[BillDiagnostic, ...] = field(default_factory=tuple)

    @property
    def has_tariff_data(self) -> bool:
        return BillDiagnostic.NO_TARIFF_DATA not in self.diagnostics


def _precision_for(*amounts: Decimal) -> int:
    magnitude = max((max(a.adjusted(), 0) for a in amounts), default=0)
    return min(BASE_PRECISION + 2 * magnitude, MAX_PRECISION)


def round_money(amount: Decimal) -> Decimal:
    """Round half-up to the cent."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _precision_for(amount))
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def coerce_units(total_units) -> Optional[Decimal]:
    """Convert input to a non-negative Decimal, or None when it is unusable."""
    if isinstance(total_units, bool) or total_units is None:
        return None
    if isinstance(total_units, float) and (math.isnan(total_units) or math.isinf(total_units)):
        return None
    try:
        units = total_units if isinstance(total_units, Decimal) else Decimal(str(total_units))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not units.is_finite() or units < 0:
        return None
    return units


def _slab_floor(slab: TariffSlab) -> Decimal:
    # Units above the floor belong to the slab: 0-100 and 101-200 both hold 100.
    return max(slab.min_units - 1, ZERO)


def _slab_reached(total_units: Decimal, slab: TariffSlab) -> bool:
    return total_units >= slab.min_units or total_units > _slab_floor(slab)


def _slab_capacity(slab: TariffSlab) -> Optional[Decimal]:
    if slab.max_units is None:
        return None
    return max(slab.max_units - _slab_floor(slab), ZERO)


def _rate_label(slab: TariffSlab) -> str:
    return f"{slab.label} @ {round_money(slab.rate_per_unit)}/unit"


def _ordered(slabs: Sequence[TariffSlab]) -> List[TariffSlab]:
    return sorted(slabs, key=lambda s: s.min_units)


def current_slab(total_units, slabs: Sequence[TariffSlab]) -> Optional[TariffSlab]:
    """Highest slab the consumption has reached, or the first slab.

    Returns None when there are no slabs.
    """
    ordered = _ordered(slabs)
    if not ordered:
        return None
    units = coerce_units(total_units) or ZERO
    for slab in reversed(ordered):
        if _slab_reached(units, slab):
            return slab
    return ordered[0]


def next_slab_warning(total_units: Decimal, slabs: Sequence[TariffSlab]) -> Optional[NextSlabWarning]:
    """Warning about the first slab not yet reached, if any."""
    ordered = _ordered(slabs)
    for index, slab in enumerate(ordered):
        if not _slab_reached(total_units, slab):
            below = ordered[index - 1] if index > 0 else ordered[0]
            return NextSlabWarning(
                units_to_next_slab=slab.min_units - total_units,
                next_slab_rate=slab.rate_per_unit,
                current_rate=below.rate_per_unit,
            )
    return None


def _zero_projection(
    slabs: Sequence[TariffSlab],
    diagnostics: Tuple[BillDiagnostic, ...],
) -> BillProjection:
    slab = current_slab(ZERO, slabs)
    return BillProjection(
        total_units=ZERO,
        net_bill=round_money(ZERO),
        fixed_charge=ZERO,
        total_subsidy=round_money(ZERO),
        breakdown=(),
        next_slab_warning=None,
        current_slab=_rate_label(slab) if slab else None,
        diagnostics=diagnostics,
    )


def compute_bill(total_units, slabs: Sequence[TariffSlab]) -> BillProjection:
    """Project the bill for ``total_units`` under the given slabs.

    Bad input never raises: malformed units produce a zero bill flagged
    INVALID_UNITS, and an empty slab list produces a zero bill flagged
    NO_TARIFF_DATA. Callers must check ``diagnostics``.

    Args:
        total_units: Energy in units (kWh)
        slabs: Active tariff slabs, non-overlapping

    Returns:
        BillProjection with per-slab breakdown, rounded to the cent only at
        the net bill and total subsidy
    """
    units = coerce_units(total_units)
    diagnostics: Tuple[BillDiagnostic, ...] = ()
    if units is None:
        logger.warning("Malformed unit quantity %r treated as 0", total_units)
        diagnostics += (BillDiagnostic.INVALID_UNITS,)
    if not slabs:
        logger.warning("No active tariff slabs; returning an empty bill")
        diagnostics += (BillDiagnostic.NO_TARIFF_DATA,)
    if diagnostics:
        return _zero_projection(slabs, diagnostics)

    ordered = _ordered(slabs)
    operands = [units] + [s.rate_per_unit for s in ordered] + [s.fixed_charge for s in ordered]
    try:
        with localcontext() as ctx:
            ctx.prec = _precision_for(*operands)
            return _project(units, ordered)
    except (InvalidOperation, Overflow):
        logger.warning("Unit quantity %r is too large to bill", total_units)
        return _zero_projection(slabs, (BillDiagnostic.INVALID_UNITS,))


def _project(units: Decimal, ordered: List[TariffSlab]) -> BillProjection:
    remaining = units
    net_total = ZERO
    subsidy_total = ZERO
    breakdown: List[BillBreakdownEntry] = []

    for slab in ordered:
        if remaining <= 0:
            break
        if not _slab_reached(units, slab):
            continue

        capacity = _slab_capacity(slab)
        units_in_slab = remaining if capacity is None else min(remaining, capacity)
        if units_in_slab <= 0:
            continue

        gross = units_in_slab * slab.rate_per_unit
        subsidy = gross * slab.subsidy_percentage / HUNDRED
        net = gross - subsidy

        breakdown.append(BillBreakdownEntry(
            slab=slab.label,
            units=units_in_slab,
            rate=slab.rate_per_unit,
            gross_cost=gross,
            subsidy=subsidy,
            net_cost=net,
            fixed_charge=slab.fixed_charge,
        ))
        net_total += net
        subsidy_total += subsidy
        remaining -= units_in_slab

    fixed_charge = max(
        (slab.fixed_charge for slab in ordered if _slab_reached(units, slab)),
        default=ZERO,
    )
    slab_now = current_slab(units, ordered)

    return BillProjection(
        total_units=units,
        net_bill=round_money(net_total + fixed_charge),
        fixed_charge=fixed_charge,
        total_subsidy=round_money(subsidy_total),
        breakdown=tuple(breakdown),
        next_slab_warning=next_slab_warning(units, ordered),
        current_slab=_rate_label(slab_now) if slab_now else None,
        diagnostics=(),
    )
