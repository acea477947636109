"""Derived metric stage: potential bitcoin mined from curtailed energy."""

from .calculator import (
    DerivedMetricCalculator,
    DerivedResult,
    DifficultyCache,
    calculate_bitcoin,
    device_count,
    network_hashrate_th,
)
from .miners import MINER_MODELS, MinerModel, block_reward, get_miner_model

__all__ = [
    "DerivedMetricCalculator",
    "DerivedResult",
    "DifficultyCache",
    "calculate_bitcoin",
    "device_count",
    "network_hashrate_th",
    "MINER_MODELS",
    "MinerModel",
    "block_reward",
    "get_miner_model",
]
