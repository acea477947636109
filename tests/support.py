"""Shared test helpers: record factory and in-process upstream sources.

Importable from any test module (``tests`` is on the pytest pythonpath).
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from datetime import date
from typing import Any

from curtailment_recon.connectors.base import TransientSourceError
from curtailment_recon.connectors.elexon import build_record
from curtailment_recon.core.exceptions import MissingParameterError

# Difficulty with a round network hashrate for hand-checked expectations
REFERENCE_DIFFICULTY = 1e14


def make_record(
    settlement_date: date,
    period: int,
    farm_id: str,
    volume: float,
    price: float = 50.0,
    lead_party: str = "Test Wind Ltd",
) -> dict[str, Any]:
    """Build a valid curtailment record dict the way the connector does."""
    entry = {
        "id": farm_id,
        "volume": volume,
        "originalPrice": price,
        "finalPrice": price,
        "soFlag": True,
        "cadlFlag": False,
    }
    return build_record(settlement_date, period, entry, lead_party)


# ---------------------------------------------------------------------------
# Fake upstream sources
# ---------------------------------------------------------------------------
class FakeSettlementSource:
    """SettlementSource serving canned records per (date, period).

    Args:
        data: Records keyed by (date, period).
        failing: Periods that raise TransientSourceError.
        gate: When set, every fetch waits for this event first.
    """

    def __init__(
        self,
        data: dict[tuple[date, int], list[dict[str, Any]]] | None = None,
        failing: Collection[int] = (),
        gate: asyncio.Event | None = None,
    ) -> None:
        self.data = data or {}
        self.failing = set(failing)
        self.gate = gate
        self.started = asyncio.Event()
        self.calls: list[tuple[date, int]] = []

    async def fetch_period(
        self,
        settlement_date: date,
        period: int,
        farm_ids: Collection[str] | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append((settlement_date, period))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if period in self.failing:
            raise TransientSourceError(f"HTTP 503 for period {period}")
        records = self.data.get((settlement_date, period), [])
        if farm_ids is not None:
            records = [r for r in records if r["farm_id"] in farm_ids]
        return [dict(r) for r in records]


class FakeDifficultySource:
    """DifficultySource returning a fixed value, or failing when *value* is None."""

    def __init__(self, value: float | None = REFERENCE_DIFFICULTY) -> None:
        self.value = value
        self.calls: list[date] = []

    async def fetch_difficulty(self, settlement_date: date) -> float:
        self.calls.append(settlement_date)
        await asyncio.sleep(0)
        if self.value is None:
            raise MissingParameterError(settlement_date, "no adjustment")
        return self.value


def full_day(
    settlement_date: date,
    periods: Collection[int] = range(1, 49),
    farms: tuple[str, ...] = ("T_SGRWO-1", "T_MOWEO-1"),
    volume: float = -10.0,
    price: float = 50.0,
) -> dict[tuple[date, int], list[dict[str, Any]]]:
    """Canned source data: every farm curtailed by *volume* in every period."""
    return {
        (settlement_date, p): [
            make_record(settlement_date, p, farm, volume, price) for farm in farms
        ]
        for p in periods
    }


