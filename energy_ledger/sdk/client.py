"""
In-process ledger client.

Exposes the energy and bill queries as JSON-ready dictionaries, the shape a
network service would return. Both calls are read-only.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core.aggregation import local_naive
from ..core.billing import BillProjection, compute_bill, round_money
from ..core.consumption import HomeNotFoundError, home_consumption
from ..storage.repository import EnergyRepository


def _money(amount: Decimal) -> float:
    return float(round_money(amount))


def projection_to_dict(projection: BillProjection) -> Dict[str, Any]:
    """Render a projection with camelCase keys and cent-rounded amounts."""
    warning = projection.next_slab_warning
    return {
        "totalUnits": float(projection.total_units),
        "estimatedBill": _money(projection.net_bill),
        "fixedCharges": _money(projection.fixed_charge),
        "totalSubsidy": _money(projection.total_subsidy),
        "slab": projection.current_slab,
        "slabBreakdown": [
            {
                "slab": entry.slab,
                "units": float(entry.units),
                "rate": float(entry.rate),
                "cost": _money(entry.gross_cost),
                "subsidy": _money(entry.subsidy),
                "netCost": _money(entry.net_cost),
                "fixedCharge": _money(entry.fixed_charge),
            }
            for entry in projection.breakdown
        ],
        "nextSlabWarning": None if warning is None else {
            "unitsToNextSlab": float(warning.units_to_next_slab),
            "nextSlabRate": float(warning.next_slab_rate),
            "currentRate": float(warning.current_rate),
        },
        "diagnostics": [d.value for d in projection.diagnostics],
    }


class LedgerClient:
    """Read-only client over an EnergyRepository."""

    def __init__(self, repository: EnergyRepository):
        self.repository = repository

    def energy(
        self,
        home_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Total kWh a home used in the window.

        Raises:
            HomeNotFoundError: If the home does not exist
        """
        window_start = local_naive(window_start)
        window_end = local_naive(window_end or datetime.now())
        if self.repository.get_home(home_id) is None:
            raise HomeNotFoundError(f"Home not found: {home_id}")
        usage = home_consumption(self.repository, home_id, window_start, window_end)
        return {
            "homeId": home_id,
            "windowStart": window_start.isoformat(),
            "windowEnd": window_end.isoformat(),
            "totalKwh": round(usage.total_kwh, 4),
        }

    def bill(self, total_units) -> Dict[str, Any]:
        """Bill projection for a unit quantity under the active slabs."""
        return projection_to_dict(compute_bill(total_units, self.repository.list_active_slabs()))
