"""Tests for AggregationEngine recompute-from-source behaviour."""

from __future__ import annotations

from datetime import date

import pytest

from curtailment_recon.aggregation import AggregationEngine
from curtailment_recon.storage import Totals
from support import make_record

DAY = date(2025, 3, 28)


def _seed(store, d, volume, periods=(1, 2), farms=("A", "B")):
    for p in periods:
        store.replace_period_records(
            d, p, [make_record(d, p, farm, volume) for farm in farms]
        )


def _calc(d, model, btc):
    return [
        {
            "settlement_date": d,
            "settlement_period": 1,
            "farm_id": "A",
            "miner_model": model,
            "bitcoin_mined": btc,
            "difficulty": 1e14,
        }
    ]


class TestDaily:
    def test_daily_equals_sum_of_records(self, store):
        _seed(store, DAY, -10.0)
        totals = AggregationEngine(store).recompute_daily(DAY)

        row = store.get_daily(DAY)
        assert row.total_volume == pytest.approx(-40.0)
        assert row.total_payment == pytest.approx(-2000.0)
        assert totals.rows == 4

    def test_recompute_is_idempotent(self, store):
        _seed(store, DAY, -10.0)
        engine = AggregationEngine(store)

        engine.recompute_daily(DAY)
        first = store.get_daily(DAY)
        engine.recompute_daily(DAY)
        second = store.get_daily(DAY)

        assert (first.total_volume, first.total_payment) == (
            second.total_volume,
            second.total_payment,
        )

    def test_reflects_removed_records(self, store):
        _seed(store, DAY, -10.0)
        engine = AggregationEngine(store)
        engine.recompute_daily(DAY)

        store.replace_period_records(DAY, 2, [])
        engine.recompute_daily(DAY)

        assert store.get_daily(DAY).total_volume == pytest.approx(-20.0)

    def test_bitcoin_daily_per_model(self, store):
        store.replace_calculations(DAY, "S9", _calc(DAY, "S9", 0.25))
        store.replace_calculations(DAY, "M20S", _calc(DAY, "M20S", 0.5))

        AggregationEngine(store).recompute_daily(DAY)

        assert store.get_bitcoin_daily(DAY) == {
            "S9": pytest.approx(0.25),
            "M20S": pytest.approx(0.5),
        }

    def test_stale_model_zeroed(self, store):
        store.upsert_bitcoin_daily(DAY, {"S9": 0.7})
        AggregationEngine(store).recompute_daily(DAY)
        assert store.get_bitcoin_daily(DAY) == {"S9": 0.0}


class TestCascade:
    def test_month_and_year_follow_days(self, store):
        days = [date(2025, 3, 1), date(2025, 3, 15), date(2025, 4, 2)]
        for i, d in enumerate(days, start=1):
            _seed(store, d, -1.0 * i, periods=(1,), farms=("A",))

        result = AggregationEngine(store).cascade(days)

        assert result.months == ["2025-03", "2025-04"]
        assert result.years == ["2025"]
        assert store.get_monthly("2025-03").total_volume == pytest.approx(-3.0)
        assert store.get_monthly("2025-04").total_volume == pytest.approx(-3.0)
        assert store.get_yearly("2025").total_volume == pytest.approx(-6.0)

    def test_payment_sign_preserved_in_every_tier(self, store):
        _seed(store, DAY, -10.0)
        AggregationEngine(store).cascade([DAY])

        assert store.get_daily(DAY).total_payment < 0
        assert store.get_monthly("2025-03").total_payment < 0
        assert store.get_yearly("2025").total_payment < 0

    def test_monthly_overwrites_not_increments(self, store):
        store.upsert_monthly("2025-03", Totals(-999.0, -999.0))
        _seed(store, DAY, -10.0)
        engine = AggregationEngine(store)

        engine.cascade([DAY])
        engine.cascade([DAY])

        assert store.get_monthly("2025-03").total_volume == pytest.approx(-40.0)
        assert store.get_yearly("2025").total_volume == pytest.approx(-40.0)

    def test_bitcoin_cascade(self, store):
        store.replace_calculations(date(2025, 1, 5), "S9", _calc(date(2025, 1, 5), "S9", 0.1))
        store.replace_calculations(date(2025, 2, 5), "S9", _calc(date(2025, 2, 5), "S9", 0.2))

        AggregationEngine(store).cascade([date(2025, 1, 5), date(2025, 2, 5)])

        assert store.get_bitcoin_monthly("2025-02") == {"S9": pytest.approx(0.2)}
        assert store.get_bitcoin_yearly("2025") == {"S9": pytest.approx(0.3)}
