"""
SDK for Energy Ledger.

Provides programmatic access to energy and bill queries.
"""

from .client import LedgerClient, projection_to_dict

__all__ = ["LedgerClient", "projection_to_dict"]
