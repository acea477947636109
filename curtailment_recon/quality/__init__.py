"""Data quality: period grid completeness and cross-tier consistency."""

from .consistency import ConsistencyAuditor, Discrepancy, within_tolerance
from .periods import GridReport, PeriodGridValidator

__all__ = [
    "ConsistencyAuditor",
    "Discrepancy",
    "within_tolerance",
    "GridReport",
    "PeriodGridValidator",
]
