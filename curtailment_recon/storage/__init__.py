"""Persistence layer for the reconciliation core."""

from .store import SettlementStore, Totals

__all__ = ["SettlementStore", "Totals"]
