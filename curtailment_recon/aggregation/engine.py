"""Aggregation engine -- recompute-from-source tier maintenance.

Each tier is derived wholesale from the tier directly below it and written
by key-based upsert that overwrites every measure column:

    daily_summaries(D)          = sum(curtailment_records where date = D)
    bitcoin_daily_summaries(D)  = sum(historical_bitcoin_calculations, D) per model
    monthly(YYYY-MM)            = sum(daily rows in the month)
    yearly(YYYY)                = sum(monthly rows in the year)

Nothing is ever incremented, so re-running any step after a partial failure
converges to the correct totals. A key whose source rows disappeared is
rewritten as zero rather than left stale; this includes miner models that
no longer have rows below them.

The read-sum and the upsert of one key run without yielding to the event
loop, so concurrent dates sharing a month or year cannot interleave them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.core.utils.periods import month_key, year_key
from curtailment_recon.storage import SettlementStore, Totals

logger = get_logger("aggregation.engine")


def _with_stale_models(
    fresh: dict[str, float], existing: Iterable[str]
) -> dict[str, float]:
    """Zero-fill models present in the tier but absent from its source."""
    merged = {model: 0.0 for model in existing}
    merged.update(fresh)
    return merged


@dataclass
class CascadeResult:
    """Keys rewritten by one cascade."""

    dates: list[date] = field(default_factory=list)
    months: list[str] = field(default_factory=list)
    years: list[str] = field(default_factory=list)


class AggregationEngine:
    """Maintain the curtailment and bitcoin summary tiers.

    Args:
        store: Persistence layer.
    """

    def __init__(self, store: SettlementStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Individual tiers
    # ------------------------------------------------------------------
    def recompute_daily(self, settlement_date: date) -> Totals:
        """Rewrite the daily curtailment and bitcoin rows of a date."""
        totals = self.store.sum_records(settlement_date)
        self.store.upsert_daily(settlement_date, totals)

        bitcoin = _with_stale_models(
            self.store.sum_calculations(settlement_date),
            self.store.get_bitcoin_daily(settlement_date),
        )
        if bitcoin:
            self.store.upsert_bitcoin_daily(settlement_date, bitcoin)

        logger.debug(
            "daily_recomputed",
            date=str(settlement_date),
            volume=totals.volume,
            payment=totals.payment,
            records=totals.rows,
        )
        return totals

    def recompute_monthly(self, year_month: str) -> Totals:
        """Rewrite the monthly rows of ``YYYY-MM`` from the daily tier."""
        totals = self.store.sum_daily(year_month)
        self.store.upsert_monthly(year_month, totals)

        bitcoin = _with_stale_models(
            self.store.sum_bitcoin_daily(year_month),
            self.store.get_bitcoin_monthly(year_month),
        )
        if bitcoin:
            self.store.upsert_bitcoin_monthly(year_month, bitcoin)

        logger.debug(
            "monthly_recomputed",
            year_month=year_month,
            volume=totals.volume,
            payment=totals.payment,
            days=totals.rows,
        )
        return totals

    def recompute_yearly(self, year: str) -> Totals:
        """Rewrite the yearly rows of ``YYYY`` from the monthly tier."""
        totals = self.store.sum_monthly(year)
        self.store.upsert_yearly(year, totals)

        bitcoin = _with_stale_models(
            self.store.sum_bitcoin_monthly(year),
            self.store.get_bitcoin_yearly(year),
        )
        if bitcoin:
            self.store.upsert_bitcoin_yearly(year, bitcoin)

        logger.debug(
            "yearly_recomputed",
            year=year,
            volume=totals.volume,
            payment=totals.payment,
            months=totals.rows,
        )
        return totals

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------
    def cascade(self, dates: Iterable[date]) -> CascadeResult:
        """Recompute the daily rows of *dates*, then their months and years.

        Every daily key is written before any monthly key, and every monthly
        key before any yearly key.
        """
        result = CascadeResult(dates=sorted(set(dates)))
        for d in result.dates:
            self.recompute_daily(d)

        result.months = sorted({month_key(d) for d in result.dates})
        for ym in result.months:
            self.recompute_monthly(ym)

        result.years = sorted({year_key(d) for d in result.dates})
        for y in result.years:
            self.recompute_yearly(y)

        logger.info(
            "aggregates_recomputed",
            dates=len(result.dates),
            months=result.months,
            years=result.years,
        )
        return result
