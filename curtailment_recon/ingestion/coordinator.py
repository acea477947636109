"""Ingestion coordinator -- fetch and replace records period by period.

For each target settlement period the coordinator issues one fetch against
the settlement source and classifies the outcome:

    INGESTED  records returned and written (replacing the period's scope)
    NO_DATA   legitimately empty period; scope cleared, not retried
    FAILED    source unreachable after the connector's retries, or the
              payload was unusable; recorded and processing continues

Retry, fixed inter-attempt delay and minimum call spacing live in the
connector (``BaseConnector._request``); periods are fetched sequentially so
the spacing holds across the whole date. A ``PersistenceError`` is fatal
for the date and propagates to the caller.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from datetime import date

from curtailment_recon.connectors.base import ConnectorError
from curtailment_recon.connectors.contracts import SettlementSource
from curtailment_recon.core.enums import SlotOutcome
from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.core.utils.periods import validate_periods
from curtailment_recon.storage import SettlementStore

logger = get_logger("ingestion.coordinator")


@dataclass(frozen=True)
class SlotResult:
    """Outcome of one settlement period fetch."""

    period: int
    outcome: SlotOutcome
    records: int = 0
    error: str | None = None


@dataclass
class IngestionResult:
    """Per-period outcomes for one date.

    Attributes:
        settlement_date: Date ingested.
        slots: One SlotResult per requested period, ascending.
    """

    settlement_date: date
    slots: list[SlotResult] = field(default_factory=list)

    def _periods(self, outcome: SlotOutcome) -> list[int]:
        return [s.period for s in self.slots if s.outcome is outcome]

    @property
    def ingested_periods(self) -> list[int]:
        return self._periods(SlotOutcome.INGESTED)

    @property
    def empty_periods(self) -> list[int]:
        return self._periods(SlotOutcome.NO_DATA)

    @property
    def failed_periods(self) -> list[int]:
        return self._periods(SlotOutcome.FAILED)

    @property
    def records_written(self) -> int:
        return sum(s.records for s in self.slots)


class IngestionCoordinator:
    """Fetch settlement periods from a source and persist them.

    Args:
        source: Any object satisfying ``SettlementSource``.
        store: Persistence layer.
    """

    def __init__(self, source: SettlementSource, store: SettlementStore) -> None:
        self.source = source
        self.store = store

    async def ingest(
        self,
        settlement_date: date,
        periods: Iterable[int],
        farm_ids: Collection[str] | None = None,
    ) -> IngestionResult:
        """Fetch and replace each period of *periods* for *settlement_date*.

        Args:
            settlement_date: Date to ingest.
            periods: Target periods (missing periods or an override set).
            farm_ids: Optional resource filter; narrows both the fetch and
                the replaced scope to these farms.

        Returns:
            IngestionResult with one SlotResult per period.

        Raises:
            ValueError: If a period is off the 1..48 grid.
            PersistenceError: If a write fails.
        """
        result = IngestionResult(settlement_date=settlement_date)
        for period in validate_periods(periods):
            result.slots.append(
                await self._ingest_period(settlement_date, period, farm_ids)
            )

        logger.info(
            "date_ingested",
            date=str(settlement_date),
            ingested=len(result.ingested_periods),
            no_data=len(result.empty_periods),
            failed=result.failed_periods,
            records=result.records_written,
        )
        return result

    async def _ingest_period(
        self,
        settlement_date: date,
        period: int,
        farm_ids: Collection[str] | None,
    ) -> SlotResult:
        try:
            records = await self.source.fetch_period(settlement_date, period, farm_ids)
        except ConnectorError as exc:
            logger.warning(
                "slot_failed", date=str(settlement_date), period=period, error=str(exc)
            )
            return SlotResult(period, SlotOutcome.FAILED, error=str(exc))

        if not records:
            # the period stays absent from the grid, even if it held rows before
            self.store.replace_period_records(settlement_date, period, [], farm_ids)
            logger.debug("slot_no_data", date=str(settlement_date), period=period)
            return SlotResult(period, SlotOutcome.NO_DATA)

        try:
            written = self.store.replace_period_records(
                settlement_date, period, records, farm_ids
            )
        except ValueError as exc:
            logger.warning(
                "slot_rejected", date=str(settlement_date), period=period, error=str(exc)
            )
            return SlotResult(period, SlotOutcome.FAILED, error=str(exc))

        return SlotResult(period, SlotOutcome.INGESTED, records=written)
