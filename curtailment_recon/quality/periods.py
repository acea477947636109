"""Settlement period grid validation.

A settlement date is complete only when all 48 half-hour periods hold
records. Partial coverage is never treated as good enough, however the
missing periods are distributed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.core.utils.periods import ALL_PERIODS, is_valid_period

logger = get_logger("quality.periods")


@dataclass(frozen=True)
class GridReport:
    """Period coverage of one settlement date."""

    settlement_date: date
    present: tuple[int, ...] = field(default_factory=tuple)
    missing: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_complete(self) -> bool:
        return not self.missing

    @property
    def coverage(self) -> float:
        """Fraction of the 48-period grid present (0.0 - 1.0)."""
        return len(self.present) / len(ALL_PERIODS)


class PeriodGridValidator:
    """Compare the periods present for a date against the fixed grid."""

    def validate(self, settlement_date: date, present: Iterable[int]) -> GridReport:
        """Build the grid report for *settlement_date*.

        Args:
            settlement_date: Date being checked.
            present: Period numbers currently holding records.

        Returns:
            GridReport with ascending present and missing periods.

        Raises:
            ValueError: If a present period is off the 1..48 grid.
        """
        present_set = set(present)
        off_grid = sorted(p for p in present_set if not is_valid_period(p))
        if off_grid:
            raise ValueError(f"Periods off the settlement grid: {off_grid}")

        report = GridReport(
            settlement_date=settlement_date,
            present=tuple(sorted(present_set)),
            missing=tuple(p for p in ALL_PERIODS if p not in present_set),
        )
        logger.info(
            "grid_validated",
            date=str(settlement_date),
            present=len(report.present),
            missing=len(report.missing),
            complete=report.is_complete,
        )
        return report
