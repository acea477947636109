"""Derived metric calculator -- potential bitcoin from curtailed energy.

For every curtailment record of a date and every configured miner model the
calculator estimates how much bitcoin the curtailed energy could have mined
during its settlement period:

    device_count   = floor(|volume_mwh| * 1000 / (power_watts / 1000))
    network_th     = difficulty * 2**32 / 600 / 1e12
    share          = device_count * hashrate_th / network_th
    bitcoin_mined  = share * block_reward(date) * 3

The network difficulty is resolved once per date through a run-scoped
``DifficultyCache`` injected by the orchestrator. A date whose difficulty
cannot be resolved fails this stage only; no default is substituted.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Any

from curtailment_recon.connectors.base import ConnectorError
from curtailment_recon.connectors.contracts import DifficultySource
from curtailment_recon.core.config import settings
from curtailment_recon.core.exceptions import MissingParameterError
from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.mining.miners import MinerModel, block_reward, get_miner_model
from curtailment_recon.storage import SettlementStore

logger = get_logger("mining.calculator")

BLOCK_INTERVAL_SECONDS = 600
BLOCKS_PER_PERIOD = 3


# ---------------------------------------------------------------------------
# Pure formula
# ---------------------------------------------------------------------------
def device_count(volume_mwh: float, power_watts: float) -> int:
    """Number of devices the curtailed energy could run for one period."""
    return math.floor(abs(volume_mwh) * 1000 / (power_watts / 1000))


def network_hashrate_th(difficulty: float) -> float:
    """Implied network hashrate in TH/s for a difficulty."""
    return difficulty * 2**32 / BLOCK_INTERVAL_SECONDS / 1e12


def calculate_bitcoin(
    volume_mwh: float,
    model: MinerModel,
    difficulty: float,
    on: date,
) -> float:
    """Bitcoin a fleet of *model* devices could mine in one settlement period.

    Args:
        volume_mwh: Curtailed energy; the sign is ignored.
        model: Miner model constants.
        difficulty: Network difficulty in force on *on*.
        on: Settlement date, selects the block reward.

    Returns:
        Bitcoin mined, ``0.0`` for zero volume.

    Raises:
        ValueError: If difficulty is not positive.
    """
    if difficulty <= 0:
        raise ValueError(f"Difficulty must be positive, got {difficulty}")
    devices = device_count(volume_mwh, model.power_watts)
    if devices == 0:
        return 0.0
    share = devices * model.hashrate_th / network_hashrate_th(difficulty)
    return share * block_reward(on) * BLOCKS_PER_PERIOD


# ---------------------------------------------------------------------------
# Run-scoped difficulty cache
# ---------------------------------------------------------------------------
class DifficultyCache:
    """Resolve the difficulty of each date at most once per run.

    A populated entry is never replaced. Failed lookups are not cached, so a
    later run retries them. Create one instance per orchestration run.
    """

    def __init__(self, source: DifficultySource) -> None:
        self._source = source
        self._values: dict[date, float] = {}
        self._locks: dict[date, asyncio.Lock] = {}
        self._users: dict[date, int] = {}

    @property
    def values(self) -> Mapping[date, float]:
        return MappingProxyType(self._values)

    @property
    def in_flight(self) -> int:
        """Dates with a lookup currently in progress."""
        return len(self._locks)

    async def get(self, settlement_date: date) -> float:
        """Return the difficulty for *settlement_date*.

        Raises:
            MissingParameterError: If the source cannot supply a value.
        """
        if settlement_date in self._values:
            return self._values[settlement_date]

        lock = self._locks.setdefault(settlement_date, asyncio.Lock())
        self._users[settlement_date] = self._users.get(settlement_date, 0) + 1
        try:
            async with lock:
                if settlement_date in self._values:
                    return self._values[settlement_date]
                return await self._fetch(settlement_date)
        finally:
            self._users[settlement_date] -= 1
            if not self._users[settlement_date]:
                del self._users[settlement_date]
                del self._locks[settlement_date]

    async def _fetch(self, settlement_date: date) -> float:
        try:
            value = float(await self._source.fetch_difficulty(settlement_date))
        except MissingParameterError:
            raise
        except ConnectorError as exc:
            raise MissingParameterError(settlement_date, str(exc)) from exc
        if value <= 0:
            raise MissingParameterError(
                settlement_date, f"non-positive difficulty {value}"
            )
        self._values[settlement_date] = value
        logger.info("difficulty_cached", date=str(settlement_date), difficulty=value)
        return value


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------
@dataclass
class DerivedResult:
    """Outcome of recomputing one date's derived rows."""

    settlement_date: date
    difficulty: float | None = None
    rows_by_model: dict[str, int] = field(default_factory=dict)
    bitcoin_by_model: dict[str, float] = field(default_factory=dict)


class DerivedMetricCalculator:
    """Recompute ``historical_bitcoin_calculations`` for a date.

    Args:
        store: Persistence layer.
        difficulty_cache: Run-scoped difficulty cache.
        miner_models: Model names; defaults to ``settings.miner_model_list``.
    """

    def __init__(
        self,
        store: SettlementStore,
        difficulty_cache: DifficultyCache,
        miner_models: Sequence[str] | None = None,
    ) -> None:
        self.store = store
        self.difficulty_cache = difficulty_cache
        names = settings.miner_model_list if miner_models is None else miner_models
        self.models = [get_miner_model(name) for name in names]

    async def recompute(self, settlement_date: date) -> DerivedResult:
        """Replace every derived row of *settlement_date* for each model.

        Raises:
            MissingParameterError: If the date has records but no difficulty.
            PersistenceError: If a replace fails.
        """
        result = DerivedResult(settlement_date=settlement_date)
        records = [r for r in self.store.load_records(settlement_date) if r.volume]

        if not records:
            for model in self.models:
                self.store.replace_calculations(settlement_date, model.name, [])
                result.rows_by_model[model.name] = 0
                result.bitcoin_by_model[model.name] = 0.0
            logger.info("derived_cleared", date=str(settlement_date))
            return result

        difficulty = await self.difficulty_cache.get(settlement_date)
        result.difficulty = difficulty
        calculated_at = datetime.now(timezone.utc)

        for model in self.models:
            rows: list[dict[str, Any]] = []
            for record in records:
                rows.append(
                    {
                        "settlement_date": settlement_date,
                        "settlement_period": record.settlement_period,
                        "farm_id": record.farm_id,
                        "miner_model": model.name,
                        "bitcoin_mined": calculate_bitcoin(
                            record.volume, model, difficulty, settlement_date
                        ),
                        "difficulty": difficulty,
                        "calculated_at": calculated_at,
                    }
                )
            self.store.replace_calculations(settlement_date, model.name, rows)
            result.rows_by_model[model.name] = len(rows)
            result.bitcoin_by_model[model.name] = sum(r["bitcoin_mined"] for r in rows)

        logger.info(
            "derived_recomputed",
            date=str(settlement_date),
            difficulty=difficulty,
            rows=sum(result.rows_by_model.values()),
        )
        return result
