"""Source contracts the reconciliation core depends on.

These describe what ingestion and the derived-metric stage need from their
upstream sources without committing to a specific backend. The Elexon and
difficulty connectors satisfy them; tests substitute in-process fakes.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import date
from typing import Any, Protocol


class SettlementSource(Protocol):
    """Query curtailment entries for one settlement period.

    Returns an empty list when the period legitimately has no data, and
    raises ``TransientSourceError`` when the source could not be reached.
    """

    async def fetch_period(
        self,
        settlement_date: date,
        period: int,
        farm_ids: Collection[str] | None = None,
    ) -> list[dict[str, Any]]: ...


class DifficultySource(Protocol):
    """Query the network difficulty in force on a date."""

    async def fetch_difficulty(self, settlement_date: date) -> float: ...


__all__ = ["SettlementSource", "DifficultySource"]
