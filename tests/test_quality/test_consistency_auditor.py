"""Tests for ConsistencyAuditor and the tolerance rule."""

from __future__ import annotations

from datetime import date

import pytest

from curtailment_recon.aggregation import AggregationEngine
from curtailment_recon.core.enums import Measure, Tier
from curtailment_recon.quality import ConsistencyAuditor, within_tolerance
from curtailment_recon.storage import Totals
from support import make_record


class TestWithinTolerance:
    def test_relative_bound_for_large_values(self):
        assert within_tolerance(1_000_000.0, 1_000_000.5, 1e-6, 0.01)
        assert not within_tolerance(1_000_000.0, 1_000_002.0, 1e-6, 0.01)

    def test_absolute_bound_for_small_values(self):
        assert within_tolerance(10.0, 10.005, 1e-6, 0.01)
        assert not within_tolerance(10.0, 10.02, 1e-6, 0.01)

    def test_exact(self):
        assert within_tolerance(-3.5, -3.5, 0.0, 0.0)


class TestKnownTotals:
    """Three days summing to a month, three months summing to a year."""

    def _build(self, store):
        days = {date(2025, 1, 10): -100.0, date(2025, 1, 11): -250.5, date(2025, 1, 12): -49.5}
        for d, volume in days.items():
            store.upsert_daily(d, Totals(volume, volume * 40))
        months = {"2025-01": -400.0, "2025-02": -1200.0, "2025-03": -400.0}
        for ym, volume in months.items():
            store.upsert_monthly(ym, Totals(volume, volume * 40))
        store.upsert_yearly("2025", Totals(-2000.0, -80000.0))

    def test_no_discrepancies(self, store):
        self._build(store)
        auditor = ConsistencyAuditor(store)

        assert auditor.audit_month("2025-01") == []
        assert auditor.audit_year("2025") == []

    def test_tampered_month_reported(self, store):
        self._build(store)
        store.upsert_monthly("2025-01", Totals(-410.0, -16000.0))
        auditor = ConsistencyAuditor(store)

        month = auditor.audit_month("2025-01")
        assert [(d.level, d.key, d.measure) for d in month] == [
            (Tier.MONTHLY, "2025-01", Measure.VOLUME)
        ]
        assert month[0].expected == pytest.approx(-400.0)
        assert month[0].actual == pytest.approx(-410.0)
        assert month[0].delta == pytest.approx(-10.0)
        # the year now disagrees with its months too
        assert len(auditor.audit_year("2025")) == 1


class TestAuditRange:
    def _seed_and_aggregate(self, store, days):
        for d in days:
            store.replace_period_records(d, 1, [make_record(d, 1, "A", -12.5)])
            store.replace_calculations(
                d,
                "S9",
                [
                    {
                        "settlement_date": d,
                        "settlement_period": 1,
                        "farm_id": "A",
                        "miner_model": "S9",
                        "bitcoin_mined": 0.001,
                        "difficulty": 1e14,
                    }
                ],
            )
        AggregationEngine(store).cascade(days)

    def test_consistent_after_cascade(self, store):
        days = [date(2025, 1, 31), date(2025, 2, 1), date(2025, 2, 2)]
        self._seed_and_aggregate(store, days)

        assert ConsistencyAuditor(store).audit_range(days[0], days[-1]) == []

    def test_missing_daily_row_counts_as_zero(self, store):
        d = date(2025, 3, 28)
        store.replace_period_records(d, 1, [make_record(d, 1, "A", -12.5)])

        found = ConsistencyAuditor(store).audit_range(d, d, tiers=[Tier.DAILY])

        assert {x.measure for x in found} == {Measure.VOLUME, Measure.PAYMENT}
        assert all(x.actual == 0.0 for x in found)

    def test_auditor_never_writes(self, store):
        d = date(2025, 3, 28)
        store.replace_period_records(d, 1, [make_record(d, 1, "A", -12.5)])

        ConsistencyAuditor(store).audit_range(d, d)

        assert store.get_daily(d) is None
        assert store.get_monthly("2025-03") is None

    def test_bitcoin_mismatch_reported_per_model(self, store):
        days = [date(2025, 2, 1)]
        self._seed_and_aggregate(store, days)
        store.upsert_bitcoin_monthly("2025-02", {"S9": 0.5})

        found = ConsistencyAuditor(store).audit_range(
            days[0], days[0], tiers=[Tier.MONTHLY]
        )

        [d] = found
        assert (d.level, d.measure, d.miner_model) == (Tier.MONTHLY, Measure.BITCOIN, "S9")
        assert d.to_dict()["level"] == "MONTHLY"
        assert d.to_dict()["delta"] == pytest.approx(0.499)

    def test_bitcoin_absolute_tolerance_is_configurable(self, store):
        days = [date(2025, 2, 1)]
        self._seed_and_aggregate(store, days)
        stored = store.get_bitcoin_monthly("2025-02")["S9"]
        # below the volume/payment bound, yet a real bitcoin mismatch
        store.upsert_bitcoin_monthly("2025-02", {"S9": stored + 0.005})

        strict = ConsistencyAuditor(store)
        loose = ConsistencyAuditor(store, btc_abs_tol=0.01)

        assert strict.btc_abs_tol == 0.0
        assert [d.miner_model for d in strict.audit_month("2025-02")] == ["S9"]
        assert loose.audit_month("2025-02") == []

    def test_tier_filter(self, store):
        d = date(2025, 3, 28)
        store.upsert_yearly("2025", Totals(-5.0, -5.0))

        auditor = ConsistencyAuditor(store)
        assert auditor.audit_range(d, d, tiers=[Tier.DAILY, Tier.MONTHLY]) == []
        assert len(auditor.audit_range(d, d, tiers=["YEARLY"])) == 2

    def test_reversed_range_rejected(self, store):
        with pytest.raises(ValueError):
            ConsistencyAuditor(store).audit_range(date(2025, 2, 1), date(2025, 1, 1))
