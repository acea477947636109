"""Cross-tier consistency audit.

Verifies that every tier equals the sum of the tier below it:

    curtailment_records       vs daily_summaries            (per date)
    daily_summaries           vs monthly_summaries          (per YYYY-MM)
    monthly_summaries         vs yearly_summaries           (per YYYY)

and the same chain for the per-model bitcoin tiers. A comparison passes when
the difference is within the looser of the relative and absolute tolerance.
A missing aggregate row counts as zero. The auditor only reads; correcting
a discrepancy is a separate, explicit recompute.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any

from curtailment_recon.core.config import settings
from curtailment_recon.core.enums import Measure, Tier
from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.core.utils.periods import iter_dates, month_key, year_key
from curtailment_recon.storage import SettlementStore, Totals

logger = get_logger("quality.consistency")


def within_tolerance(
    expected: float,
    actual: float,
    rel_tol: float | None = None,
    abs_tol: float | None = None,
) -> bool:
    """Return True if *actual* matches *expected* under the looser tolerance."""
    rel_tol = settings.tolerance_relative if rel_tol is None else rel_tol
    abs_tol = settings.tolerance_absolute if abs_tol is None else abs_tol
    delta = abs(actual - expected)
    return delta <= max(abs_tol, rel_tol * max(abs(expected), abs(actual)))


@dataclass(frozen=True)
class Discrepancy:
    """An aggregate that does not equal the sum of its constituents.

    Attributes:
        level: Tier holding the aggregate under test.
        key: Tier key (ISO date, ``YYYY-MM`` or ``YYYY``).
        measure: Compared column.
        expected: Sum of the tier below.
        actual: Stored aggregate value (0.0 when the row is missing).
        miner_model: Set for bitcoin measures.
    """

    level: Tier
    key: str
    measure: Measure
    expected: float
    actual: float
    miner_model: str | None = None

    @property
    def delta(self) -> float:
        return self.actual - self.expected

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        data["measure"] = self.measure.value
        data["delta"] = self.delta
        return data


class ConsistencyAuditor:
    """Compare each tier against the sum of the tier below.

    Args:
        store: Persistence layer (read-only use).
        rel_tol: Relative tolerance; defaults to settings.
        abs_tol: Absolute tolerance; defaults to settings.
        btc_abs_tol: Absolute tolerance for bitcoin measures; defaults to
            settings.
    """

    def __init__(
        self,
        store: SettlementStore,
        rel_tol: float | None = None,
        abs_tol: float | None = None,
        btc_abs_tol: float | None = None,
    ) -> None:
        self.store = store
        self.rel_tol = settings.tolerance_relative if rel_tol is None else rel_tol
        self.abs_tol = settings.tolerance_absolute if abs_tol is None else abs_tol
        self.btc_abs_tol = (
            settings.tolerance_absolute_bitcoin if btc_abs_tol is None else btc_abs_tol
        )

    # ------------------------------------------------------------------
    # Comparison helpers
    # ------------------------------------------------------------------
    def _compare_totals(
        self, level: Tier, key: str, expected: Totals, row: Any
    ) -> list[Discrepancy]:
        found: list[Discrepancy] = []
        pairs = (
            (Measure.VOLUME, expected.volume, row.total_volume if row else 0.0),
            (Measure.PAYMENT, expected.payment, row.total_payment if row else 0.0),
        )
        for measure, exp, act in pairs:
            if not within_tolerance(exp, act, self.rel_tol, self.abs_tol):
                found.append(Discrepancy(level, key, measure, exp, act))
        return found

    def _compare_bitcoin(
        self,
        level: Tier,
        key: str,
        expected: dict[str, float],
        actual: dict[str, float],
    ) -> list[Discrepancy]:
        found: list[Discrepancy] = []
        for model in sorted(set(expected) | set(actual)):
            exp = expected.get(model, 0.0)
            act = actual.get(model, 0.0)
            if not within_tolerance(exp, act, self.rel_tol, self.btc_abs_tol):
                found.append(
                    Discrepancy(level, key, Measure.BITCOIN, exp, act, miner_model=model)
                )
        return found

    # ------------------------------------------------------------------
    # Per-tier audits
    # ------------------------------------------------------------------
    def audit_date(self, settlement_date: date) -> list[Discrepancy]:
        """Records vs daily tier for one date."""
        key = settlement_date.isoformat()
        return self._compare_totals(
            Tier.DAILY,
            key,
            self.store.sum_records(settlement_date),
            self.store.get_daily(settlement_date),
        ) + self._compare_bitcoin(
            Tier.DAILY,
            key,
            self.store.sum_calculations(settlement_date),
            self.store.get_bitcoin_daily(settlement_date),
        )

    def audit_month(self, year_month: str) -> list[Discrepancy]:
        """Daily tier vs monthly tier for ``YYYY-MM``."""
        return self._compare_totals(
            Tier.MONTHLY,
            year_month,
            self.store.sum_daily(year_month),
            self.store.get_monthly(year_month),
        ) + self._compare_bitcoin(
            Tier.MONTHLY,
            year_month,
            self.store.sum_bitcoin_daily(year_month),
            self.store.get_bitcoin_monthly(year_month),
        )

    def audit_year(self, year: str) -> list[Discrepancy]:
        """Monthly tier vs yearly tier for ``YYYY``."""
        return self._compare_totals(
            Tier.YEARLY,
            year,
            self.store.sum_monthly(year),
            self.store.get_yearly(year),
        ) + self._compare_bitcoin(
            Tier.YEARLY,
            year,
            self.store.sum_bitcoin_monthly(year),
            self.store.get_bitcoin_yearly(year),
        )

    # ------------------------------------------------------------------
    # Range audit
    # ------------------------------------------------------------------
    def audit_range(
        self,
        start: date,
        end: date,
        tiers: Iterable[Tier] | None = None,
    ) -> list[Discrepancy]:
        """Audit every date, month and year touched by ``start..end``.

        Args:
            start: First date (inclusive).
            end: Last date (inclusive).
            tiers: Levels to audit; all three by default.

        Returns:
            Discrepancies ordered daily, then monthly, then yearly.
        """
        if end < start:
            raise ValueError(f"end {end} precedes start {start}")
        levels = set(Tier) if tiers is None else {Tier(t) for t in tiers}
        dates = list(iter_dates(start, end))

        found: list[Discrepancy] = []
        if Tier.DAILY in levels:
            for d in dates:
                found.extend(self.audit_date(d))
        if Tier.MONTHLY in levels:
            for ym in sorted({month_key(d) for d in dates}):
                found.extend(self.audit_month(ym))
        if Tier.YEARLY in levels:
            for y in sorted({year_key(d) for d in dates}):
                found.extend(self.audit_year(y))

        log = logger.warning if found else logger.info
        log(
            "audit_completed",
            start=str(start),
            end=str(end),
            tiers=sorted(t.value for t in levels),
            discrepancies=len(found),
        )
        return found
