"""
Core modules for Energy Ledger.

This package contains usage reconstruction, home-level aggregation,
slab tariff billing, and the consumption service tying them to the stores.
"""
