"""Tests for the derived bitcoin metric.

Hand-checked reference: 100 MWh on S19J Pro at difficulty 1e14 after the
2024 halving gives 32786 devices and 32786 * 5625 / 2**32 BTC.
"""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from curtailment_recon.connectors.base import TransientSourceError
from curtailment_recon.core.exceptions import MissingParameterError, UnknownMinerModelError
from curtailment_recon.mining import (
    DerivedMetricCalculator,
    DifficultyCache,
    block_reward,
    calculate_bitcoin,
    device_count,
    get_miner_model,
    network_hashrate_th,
)
from support import REFERENCE_DIFFICULTY, FakeDifficultySource, make_record

DAY = date(2025, 3, 28)
S19 = get_miner_model("S19J_PRO")


# ---------------------------------------------------------------------------
# Formula
# ---------------------------------------------------------------------------
class TestFormula:
    def test_device_count_fixture(self):
        assert device_count(100, 3050) == 32786

    def test_device_count_ignores_sign(self):
        assert device_count(-100, 3050) == 32786

    def test_network_hashrate(self):
        assert network_hashrate_th(1e14) == pytest.approx(715_827_882.6667, rel=1e-9)

    def test_reference_value_post_halving(self):
        btc = calculate_bitcoin(100, S19, REFERENCE_DIFFICULTY, date(2025, 3, 28))
        assert btc == pytest.approx(0.042938918, rel=1e-3)
        assert btc == pytest.approx(32786 * 5625 / 2**32, rel=1e-9)

    def test_reference_value_pre_halving_doubles(self):
        before = calculate_bitcoin(100, S19, REFERENCE_DIFFICULTY, date(2024, 4, 19))
        after = calculate_bitcoin(100, S19, REFERENCE_DIFFICULTY, date(2024, 4, 20))
        assert before == pytest.approx(2 * after)

    def test_zero_volume(self):
        assert calculate_bitcoin(0.0, S19, REFERENCE_DIFFICULTY, DAY) == 0.0

    def test_non_positive_difficulty(self):
        with pytest.raises(ValueError):
            calculate_bitcoin(10.0, S19, 0.0, DAY)

    def test_deterministic(self):
        a = calculate_bitcoin(-37.25, get_miner_model("M20S"), 1.1e14, DAY)
        b = calculate_bitcoin(-37.25, get_miner_model("M20S"), 1.1e14, DAY)
        assert a == b


class TestMinerModels:
    def test_models(self):
        s9 = get_miner_model("s9")
        assert (s9.hashrate_th, s9.power_watts) == (13.5, 1323.0)
        m20s = get_miner_model("M20S")
        assert (m20s.hashrate_th, m20s.power_watts) == (68.0, 3360.0)

    def test_unknown_model(self):
        with pytest.raises(UnknownMinerModelError):
            get_miner_model("S21")

    @pytest.mark.parametrize(
        "on, reward",
        [
            (date(2019, 6, 1), 12.5),
            (date(2020, 5, 11), 6.25),
            (date(2024, 4, 19), 6.25),
            (date(2024, 4, 20), 3.125),
            (date(2026, 1, 1), 3.125),
        ],
    )
    def test_block_reward(self, on, reward):
        assert block_reward(on) == reward


# ---------------------------------------------------------------------------
# Difficulty cache
# ---------------------------------------------------------------------------
class TestDifficultyCache:
    @pytest.mark.asyncio
    async def test_concurrent_lookups_fetch_once(self):
        source = FakeDifficultySource(2e14)
        cache = DifficultyCache(source)

        values = await asyncio.gather(*(cache.get(DAY) for _ in range(5)))

        assert values == [2e14] * 5
        assert source.calls == [DAY]
        assert dict(cache.values) == {DAY: 2e14}

    @pytest.mark.asyncio
    async def test_values_are_read_only(self):
        cache = DifficultyCache(FakeDifficultySource())
        await cache.get(DAY)
        with pytest.raises(TypeError):
            cache.values[DAY] = 1.0

    @pytest.mark.asyncio
    async def test_missing_parameter_not_cached(self):
        source = FakeDifficultySource(None)
        cache = DifficultyCache(source)

        for _ in range(2):
            with pytest.raises(MissingParameterError):
                await cache.get(DAY)

        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_locks_released_after_lookups(self):
        days = [date(2025, 3, d) for d in range(1, 11)]
        cache = DifficultyCache(FakeDifficultySource())
        failing = DifficultyCache(FakeDifficultySource(None))

        await asyncio.gather(*(cache.get(d) for d in days for _ in range(3)))
        with pytest.raises(MissingParameterError):
            await failing.get(DAY)

        assert len(cache.values) == 10
        assert cache.in_flight == 0
        assert failing.in_flight == 0

    @pytest.mark.asyncio
    async def test_connector_error_becomes_missing_parameter(self):
        class Unreachable:
            async def fetch_difficulty(self, settlement_date):
                raise TransientSourceError("HTTP 503")

        with pytest.raises(MissingParameterError, match="503"):
            await DifficultyCache(Unreachable()).get(DAY)


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------
class TestDerivedMetricCalculator:
    def _seed(self, store):
        store.replace_period_records(
            DAY,
            1,
            [make_record(DAY, 1, "A", -100.0), make_record(DAY, 1, "B", 0.0)],
        )
        store.replace_period_records(DAY, 2, [make_record(DAY, 2, "A", -50.0)])

    @pytest.mark.asyncio
    async def test_rows_per_model(self, store):
        self._seed(store)
        calculator = DerivedMetricCalculator(
            store, DifficultyCache(FakeDifficultySource()), ["S19J_PRO", "S9"]
        )

        result = await calculator.recompute(DAY)

        assert result.difficulty == REFERENCE_DIFFICULTY
        # zero-volume record B produces no row
        assert result.rows_by_model == {"S19J_PRO": 2, "S9": 2}
        rows = store.load_calculations(DAY, "S19J_PRO")
        assert [(r.settlement_period, r.farm_id) for r in rows] == [(1, "A"), (2, "A")]
        assert rows[0].bitcoin_mined == pytest.approx(0.042938918, rel=1e-3)
        assert all(r.difficulty == REFERENCE_DIFFICULTY for r in rows)

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, store):
        self._seed(store)
        calculator = DerivedMetricCalculator(
            store, DifficultyCache(FakeDifficultySource()), ["S19J_PRO"]
        )

        await calculator.recompute(DAY)
        first = store.sum_calculations(DAY)
        await calculator.recompute(DAY)

        assert store.sum_calculations(DAY) == first
        assert len(store.load_calculations(DAY)) == 2

    @pytest.mark.asyncio
    async def test_missing_difficulty_writes_nothing(self, store):
        self._seed(store)
        calculator = DerivedMetricCalculator(
            store, DifficultyCache(FakeDifficultySource(None)), ["S9"]
        )

        with pytest.raises(MissingParameterError):
            await calculator.recompute(DAY)

        assert store.load_calculations(DAY) == []

    @pytest.mark.asyncio
    async def test_no_records_clears_without_difficulty(self, store):
        store.replace_calculations(
            DAY,
            "S9",
            [
                {
                    "settlement_date": DAY,
                    "settlement_period": 1,
                    "farm_id": "A",
                    "miner_model": "S9",
                    "bitcoin_mined": 0.5,
                    "difficulty": 1e14,
                }
            ],
        )
        source = FakeDifficultySource()
        calculator = DerivedMetricCalculator(store, DifficultyCache(source), ["S9"])

        result = await calculator.recompute(DAY)

        assert source.calls == []
        assert result.difficulty is None
        assert store.load_calculations(DAY) == []

    def test_unknown_configured_model(self, store):
        with pytest.raises(UnknownMinerModelError):
            DerivedMetricCalculator(store, DifficultyCache(FakeDifficultySource()), ["X1"])
