"""Network difficulty connector -- historical difficulty adjustments.

Queries the mempool.space mining API for the full difficulty adjustment
history and resolves the difficulty in force on a settlement date: the
latest adjustment whose timestamp falls at or before the end of that date
(UTC).

Rows arrive as ``[timestamp, height, difficulty, ratio]`` lists; objects
with ``time``/``timestamp`` and ``difficulty`` keys are accepted too. The
adjustment history is append-only, so it is fetched once per connector
instance.
"""

from __future__ import annotations

import asyncio
import bisect
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from curtailment_recon.connectors.base import BaseConnector, DataParsingError
from curtailment_recon.core.config import settings
from curtailment_recon.core.exceptions import MissingParameterError


def _parse_adjustment(row: Any) -> tuple[int, float]:
    if isinstance(row, (list, tuple)) and len(row) >= 3:
        ts, difficulty = row[0], row[2]
    elif isinstance(row, dict):
        ts = row.get("time", row.get("timestamp"))
        difficulty = row.get("difficulty")
    else:
        raise DataParsingError(f"Unrecognised difficulty adjustment row: {row!r}")
    try:
        return int(ts), float(difficulty)
    except (TypeError, ValueError) as exc:
        raise DataParsingError(f"Invalid difficulty adjustment row: {row!r}") from exc


class DifficultyConnector(BaseConnector):
    """Connector for historical network difficulty.

    Usage::

        async with DifficultyConnector() as conn:
            difficulty = await conn.fetch_difficulty(date(2025, 3, 28))
    """

    SOURCE_NAME: str = "DIFFICULTY"
    ADJUSTMENTS_PATH: str = "/v1/mining/difficulty-adjustments/all"

    def __init__(self, base_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(base_url or settings.difficulty_base_url, **kwargs)
        self._history: list[tuple[int, float]] | None = None
        self._history_lock = asyncio.Lock()

    async def fetch_adjustments(self) -> list[tuple[int, float]]:
        """Return (unix timestamp, difficulty) pairs sorted by timestamp.

        Raises:
            TransientSourceError: If the source could not be reached.
            DataParsingError: If the payload is malformed.
        """
        async with self._history_lock:
            if self._history is not None:
                return self._history

            response = await self._request("GET", self.ADJUSTMENTS_PATH)
            try:
                rows: Any = [] if response is None else response.json()
            except ValueError as exc:
                raise DataParsingError(
                    f"{self.SOURCE_NAME}: non-JSON body for {self.ADJUSTMENTS_PATH}"
                ) from exc
            if not isinstance(rows, list):
                raise DataParsingError(
                    f"{self.SOURCE_NAME}: expected a list of adjustments"
                )
            history = sorted(_parse_adjustment(row) for row in rows)
            self.log.info("difficulty_history_fetched", adjustments=len(history))
            self._history = history
            return history

    async def fetch_difficulty(self, settlement_date: date) -> float:
        """Return the difficulty in force at the end of *settlement_date*.

        Raises:
            MissingParameterError: If no adjustment precedes the date.
            TransientSourceError: If the source could not be reached.
        """
        history = await self.fetch_adjustments()
        end_of_day = datetime.combine(
            settlement_date + timedelta(days=1), time.min, tzinfo=timezone.utc
        )
        cutoff = int(end_of_day.timestamp())
        idx = bisect.bisect_left([ts for ts, _ in history], cutoff)
        if idx == 0:
            raise MissingParameterError(
                settlement_date, "no difficulty adjustment at or before date"
            )
        difficulty = history[idx - 1][1]
        self.log.debug(
            "difficulty_resolved", date=str(settlement_date), difficulty=difficulty
        )
        return difficulty
