"""SQLAlchemy 2.0 ORM models for the reconciliation core.

Re-exports Base and all model classes for convenient imports:
  - 2 record tables: CurtailmentRecord, BitcoinCalculation
  - 3 curtailment tiers: DailySummary, MonthlySummary, YearlySummary
  - 3 bitcoin tiers: BitcoinDailySummary, BitcoinMonthlySummary,
    BitcoinYearlySummary
  - 1 ledger table: ReconciliationRun
"""

from .base import Base
from .bitcoin_calculations import BitcoinCalculation
from .curtailment_records import CurtailmentRecord
from .reconciliation_runs import ReconciliationRun
from .summaries import (
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
    DailySummary,
    MonthlySummary,
    YearlySummary,
)

__all__ = [
    "Base",
    "CurtailmentRecord",
    "BitcoinCalculation",
    "DailySummary",
    "MonthlySummary",
    "YearlySummary",
    "BitcoinDailySummary",
    "BitcoinMonthlySummary",
    "BitcoinYearlySummary",
    "ReconciliationRun",
]
