"""Miner model constants and the block reward schedule."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from curtailment_recon.core.exceptions import UnknownMinerModelError


@dataclass(frozen=True)
class MinerModel:
    """A fixed-power mining device.

    Attributes:
        name: Model identifier stored with each calculation row.
        hashrate_th: Rated throughput in TH/s.
        power_watts: Power draw in watts.
    """

    name: str
    hashrate_th: float
    power_watts: float


MINER_MODELS: dict[str, MinerModel] = {
    "S19J_PRO": MinerModel("S19J_PRO", hashrate_th=100.0, power_watts=3050.0),
    "S9": MinerModel("S9", hashrate_th=13.5, power_watts=1323.0),
    "M20S": MinerModel("M20S", hashrate_th=68.0, power_watts=3360.0),
}

# (first date the subsidy applies, BTC per block), newest first
_HALVINGS: tuple[tuple[date, float], ...] = (
    (date(2024, 4, 20), 3.125),
    (date(2020, 5, 11), 6.25),
    (date(2016, 7, 9), 12.5),
    (date(2012, 11, 28), 25.0),
)
_GENESIS_REWARD = 50.0


def get_miner_model(name: str) -> MinerModel:
    """Look up a miner model by name (case-insensitive).

    Raises:
        UnknownMinerModelError: If the model is not supported.
    """
    try:
        return MINER_MODELS[name.upper()]
    except KeyError as exc:
        raise UnknownMinerModelError(
            f"Unknown miner model {name!r}; supported: {', '.join(MINER_MODELS)}"
        ) from exc


def block_reward(on: date) -> float:
    """Block subsidy in BTC in force on a date.

    >>> block_reward(date(2024, 4, 19)), block_reward(date(2024, 4, 20))
    (6.25, 3.125)
    """
    for start, reward in _HALVINGS:
        if on >= start:
            return reward
    return _GENESIS_REWARD
