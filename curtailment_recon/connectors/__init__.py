"""Upstream source connectors package.

Re-exports the BaseConnector class, exception hierarchy, source contracts
and the concrete connectors:

    ElexonConnector      settlement bid/offer stacks (curtailment records)
    DifficultyConnector  historical network difficulty (global parameter)
"""

from .base import (
    BaseConnector,
    ConnectorError,
    DataParsingError,
    TransientSourceError,
)
from .bmu_mapping import BmuMapping, load_bmu_mapping
from .contracts import DifficultySource, SettlementSource
from .difficulty import DifficultyConnector
from .elexon import ElexonConnector

__all__ = [
    # Base
    "BaseConnector",
    "ConnectorError",
    "DataParsingError",
    "TransientSourceError",
    # Contracts
    "SettlementSource",
    "DifficultySource",
    # Reference data
    "BmuMapping",
    "load_bmu_mapping",
    # Connectors
    "ElexonConnector",
    "DifficultyConnector",
]
