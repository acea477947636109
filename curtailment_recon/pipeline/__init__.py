"""Reconciliation orchestration."""

from .reconciliation import (
    DateLockRegistry,
    DateReport,
    RangeReport,
    ReconciliationOrchestrator,
)

__all__ = [
    "DateLockRegistry",
    "DateReport",
    "RangeReport",
    "ReconciliationOrchestrator",
]
