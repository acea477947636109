"""Reconciliation orchestrator -- per-date state machine.

Sequences the core stages for one settlement date:

    PENDING -> VALIDATING -> BACKFILLING -> RECOMPUTING_DERIVED
            -> RECOMPUTING_AGGREGATES -> AUDITING -> DONE | PARTIAL_FAILURE

The action selects which stages run:

    validate        VALIDATING
    backfill        VALIDATING, BACKFILLING
    recompute       RECOMPUTING_DERIVED, RECOMPUTING_AGGREGATES
    audit           AUDITING
    full-reconcile  every stage in order

BACKFILLING is skipped when the grid is complete and no period override is
given. A failed period, an unresolved difficulty, a storage failure or a
discrepancy ends the date in PARTIAL_FAILURE; a ``validate`` run also ends
there when periods are missing. Everything else ends in DONE.

Only one orchestration per date is in flight at a time: ``DateLockRegistry``
guards the event loop and the store's date lock guards other processes.
Range runs process dates independently with bounded concurrency; a date's
failure is recorded and never aborts its siblings. Cancellation is checked
before each date starts and leaves finished dates untouched.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable, Collection, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from curtailment_recon.aggregation import AggregationEngine
from curtailment_recon.connectors.contracts import DifficultySource, SettlementSource
from curtailment_recon.core.config import settings
from curtailment_recon.core.enums import ReconcileAction, ReconcileState
from curtailment_recon.core.exceptions import (
    DateLockedError,
    MissingParameterError,
    PersistenceError,
)
from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.core.utils.periods import iter_dates, validate_periods
from curtailment_recon.ingestion import IngestionCoordinator
from curtailment_recon.mining import DerivedMetricCalculator, DifficultyCache
from curtailment_recon.quality import ConsistencyAuditor, Discrepancy, PeriodGridValidator
from curtailment_recon.storage import SettlementStore

logger = get_logger("pipeline.reconciliation")

_STAGES: dict[ReconcileAction, tuple[ReconcileState, ...]] = {
    ReconcileAction.VALIDATE: (ReconcileState.VALIDATING,),
    ReconcileAction.BACKFILL: (ReconcileState.VALIDATING, ReconcileState.BACKFILLING),
    ReconcileAction.RECOMPUTE: (
        ReconcileState.RECOMPUTING_DERIVED,
        ReconcileState.RECOMPUTING_AGGREGATES,
    ),
    ReconcileAction.AUDIT: (ReconcileState.AUDITING,),
    ReconcileAction.FULL_RECONCILE: (
        ReconcileState.VALIDATING,
        ReconcileState.BACKFILLING,
        ReconcileState.RECOMPUTING_DERIVED,
        ReconcileState.RECOMPUTING_AGGREGATES,
        ReconcileState.AUDITING,
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@dataclass
class DateReport:
    """Structured outcome of one date's orchestration.

    Attributes:
        settlement_date: Date processed.
        action: Action requested.
        run_id: Identifier shared by every date of one run.
        state: Current (finally terminal) state.
        states: Every state entered, in order.
        missing_periods: Periods still absent after the run.
        failed_periods: Periods whose fetch failed after retries.
        discrepancies: Audit findings.
        difficulty: Difficulty used by the derived stage, if it ran.
        error: Date-level failure message, if any.
    """

    settlement_date: date
    action: ReconcileAction
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ReconcileState = ReconcileState.PENDING
    states: list[ReconcileState] = field(
        default_factory=lambda: [ReconcileState.PENDING]
    )
    missing_periods: list[int] = field(default_factory=list)
    failed_periods: list[int] = field(default_factory=list)
    discrepancies: list[Discrepancy] = field(default_factory=list)
    difficulty: float | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def is_done(self) -> bool:
        return self.state is ReconcileState.DONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "date": self.settlement_date.isoformat(),
            "action": self.action.value,
            "state": self.state.value,
            "states": [s.value for s in self.states],
            "missing_periods": self.missing_periods,
            "failed_periods": self.failed_periods,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "difficulty": self.difficulty,
            "error": self.error,
        }


@dataclass
class RangeReport:
    """Outcome of a multi-date run."""

    run_id: str
    action: ReconcileAction
    reports: list[DateReport] = field(default_factory=list)
    errors: dict[date, str] = field(default_factory=dict)
    skipped: list[date] = field(default_factory=list)
    cancelled: bool = False

    @property
    def done_dates(self) -> list[date]:
        return [r.settlement_date for r in self.reports if r.is_done]

    @property
    def failed_dates(self) -> list[date]:
        partial = [r.settlement_date for r in self.reports if not r.is_done]
        return sorted(partial + list(self.errors))

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "action": self.action.value,
            "cancelled": self.cancelled,
            "dates": [r.to_dict() for r in self.reports],
            "errors": {d.isoformat(): msg for d, msg in sorted(self.errors.items())},
            "skipped": [d.isoformat() for d in self.skipped],
        }


# ---------------------------------------------------------------------------
# Single writer per date
# ---------------------------------------------------------------------------
class DateLockRegistry:
    """One asyncio.Lock per settlement date.

    Orchestrators built without an explicit registry share the module-level
    default, so a date has a single writer across the whole event loop. A
    date's lock is dropped once nobody holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[date, asyncio.Lock] = {}
        self._users: dict[date, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, settlement_date: date) -> bool:
        lock = self._locks.get(settlement_date)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self, settlement_date: date, block: bool = True
    ) -> AsyncIterator[None]:
        """Hold the date's lock for the duration of the block.

        Raises:
            DateLockedError: If *block* is False and the date is in flight.
        """
        lock = self._locks.setdefault(settlement_date, asyncio.Lock())
        if not block and lock.locked():
            raise DateLockedError(settlement_date)
        self._users[settlement_date] = self._users.get(settlement_date, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[settlement_date] -= 1
            if not self._users[settlement_date]:
                del self._users[settlement_date]
                del self._locks[settlement_date]


_default_locks = DateLockRegistry()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class ReconciliationOrchestrator:
    """Drive the reconciliation state machine for dates and date ranges.

    Args:
        store: Persistence layer.
        settlement_source: Upstream curtailment source.
        difficulty_source: Network difficulty source.
        miner_models: Models for the derived stage; defaults to settings.
        locks: Per-date lock registry; the shared module default when omitted.
        max_concurrency: Dates processed in parallel by ``run_range``.
        rel_tol: Audit relative tolerance; defaults to settings.
        abs_tol: Audit absolute tolerance; defaults to settings.
        on_transition: Optional callback invoked with (date, state) on entry
            to every state.
        lock_poll_interval: Seconds between attempts on a date locked by
            another process; defaults to settings.
    """

    def __init__(
        self,
        store: SettlementStore,
        settlement_source: SettlementSource,
        difficulty_source: DifficultySource,
        *,
        miner_models: Collection[str] | None = None,
        locks: DateLockRegistry | None = None,
        max_concurrency: int | None = None,
        rel_tol: float | None = None,
        abs_tol: float | None = None,
        on_transition: Callable[[date, ReconcileState], None] | None = None,
        lock_poll_interval: float | None = None,
    ) -> None:
        self.store = store
        self.difficulty_source = difficulty_source
        self.miner_models = list(miner_models) if miner_models is not None else None
        self.locks = _default_locks if locks is None else locks
        self.max_concurrency = max_concurrency or settings.max_concurrent_dates
        self.on_transition = on_transition
        self.lock_poll_interval = (
            settings.date_lock_poll_seconds
            if lock_poll_interval is None
            else lock_poll_interval
        )

        self.validator = PeriodGridValidator()
        self.ingestion = IngestionCoordinator(settlement_source, store)
        self.aggregation = AggregationEngine(store)
        self.auditor = ConsistencyAuditor(store, rel_tol=rel_tol, abs_tol=abs_tol)

    # ------------------------------------------------------------------
    # Single date
    # ------------------------------------------------------------------
    async def reconcile_date(
        self,
        settlement_date: date,
        action: ReconcileAction | str = ReconcileAction.FULL_RECONCILE,
        periods: Iterable[int] | None = None,
        farm_ids: Collection[str] | None = None,
        *,
        block: bool = True,
        difficulty_cache: DifficultyCache | None = None,
        run_id: str | None = None,
    ) -> DateReport:
        """Run *action* for one date and return its report.

        Args:
            settlement_date: Date to reconcile.
            action: Stages to run (see module docstring).
            periods: Period override for backfilling; when given these
                periods are re-ingested even if already present.
            farm_ids: Optional resource filter for backfilling.
            block: Wait for an in-flight orchestration of the same date
                instead of raising.
            difficulty_cache: Run-scoped cache; a fresh one when omitted.
            run_id: Run identifier; a fresh UUID when omitted.

        Raises:
            DateLockedError: If *block* is False and the date is in flight.
            ValueError: If *periods* contains an off-grid period.
        """
        action = ReconcileAction(action)
        override = validate_periods(periods) if periods is not None else None
        cache = difficulty_cache or DifficultyCache(self.difficulty_source)
        report = DateReport(settlement_date=settlement_date, action=action)
        if run_id is not None:
            report.run_id = run_id

        async with self.locks.hold(settlement_date, block=block):
            await self._lock_across_processes(settlement_date, block)
            try:
                report.started_at = _utcnow()
                log = logger.bind(
                    date=str(settlement_date), action=action.value, run_id=report.run_id
                )
                try:
                    await self._run_stages(report, override, farm_ids, cache, log)
                except PersistenceError as exc:
                    report.error = f"persistence: {exc}"
                    log.error("date_persistence_failed", error=str(exc))

                self._finish(report, log)
                self._record_run(report, log)
            finally:
                self.store.unlock_date(settlement_date)
        return report

    async def _lock_across_processes(self, settlement_date: date, block: bool) -> None:
        """Take the store-level date lock held by other processes' runs.

        Raises:
            DateLockedError: If *block* is False and another process holds it.
        """
        while not self.store.try_lock_date(settlement_date):
            if not block:
                raise DateLockedError(settlement_date)
            logger.info(
                "date_locked_elsewhere",
                date=str(settlement_date),
                retry_in=self.lock_poll_interval,
            )
            await asyncio.sleep(self.lock_poll_interval)

    async def _run_stages(
        self,
        report: DateReport,
        override: list[int] | None,
        farm_ids: Collection[str] | None,
        cache: DifficultyCache,
        log: Any,
    ) -> None:
        d = report.settlement_date
        stages = _STAGES[report.action]

        if ReconcileState.VALIDATING in stages:
            self._enter(report, ReconcileState.VALIDATING, log)
            grid = self.validator.validate(d, self.store.present_periods(d))
            report.missing_periods = list(grid.missing)

            targets = override if override is not None else report.missing_periods
            if ReconcileState.BACKFILLING in stages and targets:
                self._enter(report, ReconcileState.BACKFILLING, log)
                ingested = await self.ingestion.ingest(d, targets, farm_ids)
                report.failed_periods = ingested.failed_periods
                grid = self.validator.validate(d, self.store.present_periods(d))
                report.missing_periods = list(grid.missing)

        if ReconcileState.RECOMPUTING_DERIVED in stages:
            self._enter(report, ReconcileState.RECOMPUTING_DERIVED, log)
            calculator = DerivedMetricCalculator(self.store, cache, self.miner_models)
            try:
                derived = await calculator.recompute(d)
                report.difficulty = derived.difficulty
            except MissingParameterError as exc:
                # aggregates still follow the records; only bitcoin rows go stale
                report.error = str(exc)
                log.warning("derived_stage_failed", error=str(exc))

        if ReconcileState.RECOMPUTING_AGGREGATES in stages:
            self._enter(report, ReconcileState.RECOMPUTING_AGGREGATES, log)
            self.aggregation.cascade([d])

        if ReconcileState.AUDITING in stages:
            self._enter(report, ReconcileState.AUDITING, log)
            report.discrepancies = self.auditor.audit_range(d, d)

    def _enter(self, report: DateReport, state: ReconcileState, log: Any) -> None:
        log.info("state_transition", from_state=report.state.value, to_state=state.value)
        report.state = state
        report.states.append(state)
        if self.on_transition is not None:
            self.on_transition(report.settlement_date, state)

    def _finish(self, report: DateReport, log: Any) -> None:
        failed = bool(
            report.failed_periods
            or report.discrepancies
            or report.error
            or (report.action is ReconcileAction.VALIDATE and report.missing_periods)
        )
        terminal = ReconcileState.PARTIAL_FAILURE if failed else ReconcileState.DONE
        self._enter(report, terminal, log)
        report.finished_at = _utcnow()
        log.info(
            "date_reconciled",
            state=terminal.value,
            missing=len(report.missing_periods),
            failed_periods=report.failed_periods,
            discrepancies=len(report.discrepancies),
        )

    def _record_run(self, report: DateReport, log: Any) -> None:
        """Write the ledger row; a ledger failure never changes the outcome."""
        try:
            self.store.record_run(
                {
                    "run_id": report.run_id,
                    "settlement_date": report.settlement_date,
                    "action": report.action.value,
                    "final_state": report.state.value,
                    "missing_periods": report.missing_periods,
                    "failed_periods": report.failed_periods,
                    "discrepancy_count": len(report.discrepancies),
                    "error": report.error[:500] if report.error else None,
                    "started_at": report.started_at,
                    "finished_at": report.finished_at,
                }
            )
        except PersistenceError:
            log.exception("run_ledger_persist_failed")

    # ------------------------------------------------------------------
    # Date range
    # ------------------------------------------------------------------
    async def run_range(
        self,
        start: date,
        end: date,
        action: ReconcileAction | str = ReconcileAction.FULL_RECONCILE,
        periods: Iterable[int] | None = None,
        farm_ids: Collection[str] | None = None,
        *,
        concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RangeReport:
        """Reconcile every date in ``start..end`` independently.

        Args:
            start: First date (inclusive).
            end: Last date (inclusive).
            action: Action applied to every date.
            periods: Period override applied to every date.
            farm_ids: Optional resource filter.
            concurrency: Dates in flight at once; defaults to
                ``max_concurrency``.
            cancel_event: Once set, dates not yet started are skipped.

        Returns:
            RangeReport with date reports ordered by date.
        """
        if end < start:
            raise ValueError(f"end {end} precedes start {start}")
        action = ReconcileAction(action)
        period_list = validate_periods(periods) if periods is not None else None
        limit = max(1, concurrency or self.max_concurrency)
        semaphore = asyncio.Semaphore(limit)
        cache = DifficultyCache(self.difficulty_source)
        result = RangeReport(run_id=str(uuid.uuid4()), action=action)
        log = logger.bind(run_id=result.run_id, action=action.value)

        async def _one(d: date) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    result.skipped.append(d)
                    return
                try:
                    report = await self.reconcile_date(
                        d,
                        action,
                        period_list,
                        farm_ids,
                        difficulty_cache=cache,
                        run_id=result.run_id,
                    )
                except Exception as exc:
                    log.exception("date_failed", date=str(d))
                    result.errors[d] = str(exc)
                    return
                result.reports.append(report)

        dates = list(iter_dates(start, end))
        log.info(
            "range_started",
            start=str(start),
            end=str(end),
            dates=len(dates),
            concurrency=limit,
        )
        await asyncio.gather(*(_one(d) for d in dates))

        result.reports.sort(key=lambda r: r.settlement_date)
        result.skipped.sort()
        result.cancelled = bool(result.skipped)
        log.info(
            "range_finished",
            done=len(result.done_dates),
            failed=len(result.failed_dates),
            skipped=len(result.skipped),
        )
        return result
