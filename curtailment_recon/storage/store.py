"""Persistence layer for records, derived calculations and aggregate tiers.

SettlementStore is the single data access layer used by ingestion, the
derived-metric stage, the aggregation engine and the auditor. It exposes
exactly the operations those stages need: exact-key lookup, grouped sums,
delete-by-scope and upsert-by-key with full column overwrite.

Every write runs inside one transaction, so a replace (delete + insert) or
an upsert is atomic relative to readers. Upserts use the dialect's
``INSERT ... ON CONFLICT DO UPDATE`` (PostgreSQL in production, SQLite in
tests). Any ``SQLAlchemyError`` surfaces as ``PersistenceError``.
"""

from __future__ import annotations

from collections.abc import Collection, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import Engine, delete, func, insert, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from curtailment_recon.core.database import make_session_factory
from curtailment_recon.core.exceptions import PersistenceError
from curtailment_recon.core.models import (
    Base,
    BitcoinCalculation,
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
    CurtailmentRecord,
    DailySummary,
    MonthlySummary,
    ReconciliationRun,
    YearlySummary,
)
from curtailment_recon.core.utils.logging_config import get_logger
from curtailment_recon.core.utils.periods import dates_in_month, is_valid_period

logger = get_logger("storage.store")

# First key of the two-key PostgreSQL advisory lock taken per settlement date
DATE_LOCK_CLASS = 0x43524543


@dataclass(frozen=True)
class Totals:
    """Volume/payment pair for one tier key."""

    volume: float = 0.0
    payment: float = 0.0
    rows: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_record(record: dict[str, Any]) -> None:
    """Enforce the record-level invariants at the point of creation.

    Raises:
        ValueError: If the period is off the grid or payment is positive.
    """
    if not is_valid_period(record["settlement_period"]):
        raise ValueError(f"Settlement period off grid: {record['settlement_period']}")
    if record["payment"] > 0:
        raise ValueError(
            f"Payment must be stored as a cost (<= 0), got {record['payment']} "
            f"for farm {record['farm_id']}"
        )


class SettlementStore:
    """SQLAlchemy-backed store for the four keyed relations.

    Args:
        session_factory: A sessionmaker producing sync sessions.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._date_locks: dict[date, Session] = {}

    @classmethod
    def from_engine(cls, engine: Engine) -> "SettlementStore":
        return cls(make_session_factory(engine))

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        with self._session_factory() as session:
            Base.metadata.create_all(session.get_bind())

    # ------------------------------------------------------------------
    # Cross-process date lock
    # ------------------------------------------------------------------
    def try_lock_date(self, settlement_date: date) -> bool:
        """Take the cross-process lock for *settlement_date* without waiting.

        On PostgreSQL this is a session-level advisory lock held on a
        dedicated session until ``unlock_date``. Other dialects have no
        concurrent writers to guard against and always succeed.

        Raises:
            PersistenceError: If the lock query fails.
        """
        session = self._session_factory()
        try:
            if session.get_bind().dialect.name != "postgresql":
                session.close()
                return True
            acquired = session.execute(
                text("SELECT pg_try_advisory_lock(:cls, :key)"),
                {"cls": DATE_LOCK_CLASS, "key": settlement_date.toordinal()},
            ).scalar()
        except SQLAlchemyError as exc:
            session.close()
            logger.error("storage_error", error=str(exc))
            raise PersistenceError(str(exc)) from exc
        if not acquired:
            session.close()
            return False
        self._date_locks[settlement_date] = session
        return True

    def unlock_date(self, settlement_date: date) -> None:
        """Release the lock taken by ``try_lock_date``; a no-op when not held."""
        session = self._date_locks.pop(settlement_date, None)
        if session is None:
            return
        try:
            session.execute(
                text("SELECT pg_advisory_unlock(:cls, :key)"),
                {"cls": DATE_LOCK_CLASS, "key": settlement_date.toordinal()},
            )
        except SQLAlchemyError:
            # dropping the connection releases the advisory lock server-side
            logger.exception("date_unlock_failed", date=str(settlement_date))
            session.invalidate()
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """Yield a session inside one transaction; wrap storage errors."""
        try:
            with self._session_factory() as session:
                with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("storage_error", error=str(exc))
            raise PersistenceError(str(exc)) from exc

    @contextmanager
    def _read(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("storage_error", error=str(exc))
            raise PersistenceError(str(exc)) from exc

    def _upsert(
        self,
        session: Session,
        model: type[Base],
        key: dict[str, Any],
        measures: dict[str, Any],
    ) -> None:
        """Insert *key* + *measures*, or overwrite every measure on conflict."""
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(model)
        elif dialect == "sqlite":
            stmt = sqlite_insert(model)
        else:
            raise PersistenceError(f"Upsert not supported for dialect {dialect!r}")

        now = _utcnow()
        values = {**key, **measures, "last_updated": now}
        stmt = stmt.values(**values).on_conflict_do_update(
            index_elements=list(key),
            set_={**measures, "last_updated": now},
        )
        session.execute(stmt)

    # ------------------------------------------------------------------
    # Curtailment records
    # ------------------------------------------------------------------
    def present_periods(self, settlement_date: date) -> set[int]:
        """Return the distinct settlement periods holding records for a date."""
        with self._read() as session:
            rows = session.execute(
                select(CurtailmentRecord.settlement_period)
                .where(CurtailmentRecord.settlement_date == settlement_date)
                .distinct()
            ).scalars()
            return set(rows)

    def replace_period_records(
        self,
        settlement_date: date,
        period: int,
        records: list[dict[str, Any]],
        farm_ids: Collection[str] | None = None,
    ) -> int:
        """Replace the records of one (date, period) scope in one transaction.

        With *farm_ids* the scope narrows to those farms within the period.
        Re-running with identical input leaves the table unchanged.

        Returns:
            Number of rows inserted.
        """
        for record in records:
            if (
                record["settlement_date"] != settlement_date
                or record["settlement_period"] != period
            ):
                raise ValueError(
                    f"Record {record['farm_id']} outside scope {settlement_date} P{period}"
                )
            _check_record(record)

        with self._transaction() as session:
            stmt = delete(CurtailmentRecord).where(
                CurtailmentRecord.settlement_date == settlement_date,
                CurtailmentRecord.settlement_period == period,
            )
            if farm_ids is not None:
                stmt = stmt.where(CurtailmentRecord.farm_id.in_(list(farm_ids)))
            deleted = session.execute(stmt).rowcount
            if records:
                session.execute(insert(CurtailmentRecord), records)

        logger.debug(
            "period_records_replaced",
            date=str(settlement_date),
            period=period,
            deleted=deleted,
            inserted=len(records),
        )
        return len(records)

    def load_records(self, settlement_date: date) -> list[CurtailmentRecord]:
        """Return every record of a date ordered by (period, farm)."""
        with self._read() as session:
            return list(
                session.execute(
                    select(CurtailmentRecord)
                    .where(CurtailmentRecord.settlement_date == settlement_date)
                    .order_by(
                        CurtailmentRecord.settlement_period, CurtailmentRecord.farm_id
                    )
                ).scalars()
            )

    def sum_records(self, settlement_date: date) -> Totals:
        """Grouped sum of record volume and payment for a date."""
        with self._read() as session:
            volume, payment, rows = session.execute(
                select(
                    func.coalesce(func.sum(CurtailmentRecord.volume), 0.0),
                    func.coalesce(func.sum(CurtailmentRecord.payment), 0.0),
                    func.count(),
                ).where(CurtailmentRecord.settlement_date == settlement_date)
            ).one()
            return Totals(float(volume), float(payment), int(rows))

    # ------------------------------------------------------------------
    # Derived bitcoin calculations
    # ------------------------------------------------------------------
    def replace_calculations(
        self,
        settlement_date: date,
        miner_model: str,
        rows: list[dict[str, Any]],
    ) -> int:
        """Replace every calculation of a (date, miner model) in one transaction."""
        with self._transaction() as session:
            session.execute(
                delete(BitcoinCalculation).where(
                    BitcoinCalculation.settlement_date == settlement_date,
                    BitcoinCalculation.miner_model == miner_model,
                )
            )
            if rows:
                session.execute(insert(BitcoinCalculation), rows)
        return len(rows)

    def load_calculations(
        self, settlement_date: date, miner_model: str | None = None
    ) -> list[BitcoinCalculation]:
        with self._read() as session:
            stmt = select(BitcoinCalculation).where(
                BitcoinCalculation.settlement_date == settlement_date
            )
            if miner_model is not None:
                stmt = stmt.where(BitcoinCalculation.miner_model == miner_model)
            stmt = stmt.order_by(
                BitcoinCalculation.miner_model,
                BitcoinCalculation.settlement_period,
                BitcoinCalculation.farm_id,
            )
            return list(session.execute(stmt).scalars())

    def sum_calculations(self, settlement_date: date) -> dict[str, float]:
        """Bitcoin mined per miner model for a date."""
        with self._read() as session:
            rows = session.execute(
                select(
                    BitcoinCalculation.miner_model,
                    func.sum(BitcoinCalculation.bitcoin_mined),
                )
                .where(BitcoinCalculation.settlement_date == settlement_date)
                .group_by(BitcoinCalculation.miner_model)
            ).all()
            return {model: float(total) for model, total in rows}

    # ------------------------------------------------------------------
    # Curtailment tiers
    # ------------------------------------------------------------------
    def upsert_daily(self, settlement_date: date, totals: Totals) -> None:
        with self._transaction() as session:
            self._upsert(
                session,
                DailySummary,
                {"summary_date": settlement_date},
                {"total_volume": totals.volume, "total_payment": totals.payment},
            )

    def upsert_monthly(self, year_month: str, totals: Totals) -> None:
        with self._transaction() as session:
            self._upsert(
                session,
                MonthlySummary,
                {"year_month": year_month},
                {"total_volume": totals.volume, "total_payment": totals.payment},
            )

    def upsert_yearly(self, year: str, totals: Totals) -> None:
        with self._transaction() as session:
            self._upsert(
                session,
                YearlySummary,
                {"year": year},
                {"total_volume": totals.volume, "total_payment": totals.payment},
            )

    def get_daily(self, settlement_date: date) -> DailySummary | None:
        with self._read() as session:
            return session.get(DailySummary, settlement_date)

    def get_monthly(self, year_month: str) -> MonthlySummary | None:
        with self._read() as session:
            return session.get(MonthlySummary, year_month)

    def get_yearly(self, year: str) -> YearlySummary | None:
        with self._read() as session:
            return session.get(YearlySummary, year)

    def sum_daily(self, year_month: str) -> Totals:
        """Sum of the daily tier over the month ``YYYY-MM``."""
        with self._read() as session:
            volume, payment, rows = session.execute(
                select(
                    func.coalesce(func.sum(DailySummary.total_volume), 0.0),
                    func.coalesce(func.sum(DailySummary.total_payment), 0.0),
                    func.count(),
                ).where(
                    DailySummary.summary_date.between(
                        *_month_bounds(year_month)
                    )
                )
            ).one()
            return Totals(float(volume), float(payment), int(rows))

    def sum_monthly(self, year: str) -> Totals:
        """Sum of the monthly tier over the year ``YYYY``."""
        with self._read() as session:
            volume, payment, rows = session.execute(
                select(
                    func.coalesce(func.sum(MonthlySummary.total_volume), 0.0),
                    func.coalesce(func.sum(MonthlySummary.total_payment), 0.0),
                    func.count(),
                ).where(MonthlySummary.year_month.between(f"{year}-01", f"{year}-12"))
            ).one()
            return Totals(float(volume), float(payment), int(rows))

    # ------------------------------------------------------------------
    # Bitcoin tiers
    # ------------------------------------------------------------------
    def upsert_bitcoin_daily(
        self, settlement_date: date, totals: dict[str, float]
    ) -> None:
        """Upsert one daily row per miner model in a single transaction."""
        with self._transaction() as session:
            for model, mined in totals.items():
                self._upsert(
                    session,
                    BitcoinDailySummary,
                    {"summary_date": settlement_date, "miner_model": model},
                    {"bitcoin_mined": mined},
                )

    def upsert_bitcoin_monthly(self, year_month: str, totals: dict[str, float]) -> None:
        with self._transaction() as session:
            for model, mined in totals.items():
                self._upsert(
                    session,
                    BitcoinMonthlySummary,
                    {"year_month": year_month, "miner_model": model},
                    {"bitcoin_mined": mined},
                )

    def upsert_bitcoin_yearly(self, year: str, totals: dict[str, float]) -> None:
        with self._transaction() as session:
            for model, mined in totals.items():
                self._upsert(
                    session,
                    BitcoinYearlySummary,
                    {"year": year, "miner_model": model},
                    {"bitcoin_mined": mined},
                )

    def get_bitcoin_daily(self, settlement_date: date) -> dict[str, float]:
        with self._read() as session:
            rows = session.execute(
                select(BitcoinDailySummary.miner_model, BitcoinDailySummary.bitcoin_mined)
                .where(BitcoinDailySummary.summary_date == settlement_date)
            ).all()
            return {model: float(mined) for model, mined in rows}

    def get_bitcoin_monthly(self, year_month: str) -> dict[str, float]:
        with self._read() as session:
            rows = session.execute(
                select(
                    BitcoinMonthlySummary.miner_model, BitcoinMonthlySummary.bitcoin_mined
                ).where(BitcoinMonthlySummary.year_month == year_month)
            ).all()
            return {model: float(mined) for model, mined in rows}

    def get_bitcoin_yearly(self, year: str) -> dict[str, float]:
        with self._read() as session:
            rows = session.execute(
                select(
                    BitcoinYearlySummary.miner_model, BitcoinYearlySummary.bitcoin_mined
                ).where(BitcoinYearlySummary.year == year)
            ).all()
            return {model: float(mined) for model, mined in rows}

    def sum_bitcoin_daily(self, year_month: str) -> dict[str, float]:
        with self._read() as session:
            rows = session.execute(
                select(
                    BitcoinDailySummary.miner_model,
                    func.sum(BitcoinDailySummary.bitcoin_mined),
                )
                .where(
                    BitcoinDailySummary.summary_date.between(*_month_bounds(year_month))
                )
                .group_by(BitcoinDailySummary.miner_model)
            ).all()
            return {model: float(total) for model, total in rows}

    def sum_bitcoin_monthly(self, year: str) -> dict[str, float]:
        with self._read() as session:
            rows = session.execute(
                select(
                    BitcoinMonthlySummary.miner_model,
                    func.sum(BitcoinMonthlySummary.bitcoin_mined),
                )
                .where(
                    BitcoinMonthlySummary.year_month.between(f"{year}-01", f"{year}-12")
                )
                .group_by(BitcoinMonthlySummary.miner_model)
            ).all()
            return {model: float(total) for model, total in rows}

    # ------------------------------------------------------------------
    # Run ledger
    # ------------------------------------------------------------------
    def record_run(self, row: dict[str, Any]) -> None:
        """Persist one reconciliation_runs row."""
        with self._transaction() as session:
            session.add(ReconciliationRun(**row))

    def latest_runs(self, settlement_date: date, limit: int = 10) -> list[ReconciliationRun]:
        with self._read() as session:
            return list(
                session.execute(
                    select(ReconciliationRun)
                    .where(ReconciliationRun.settlement_date == settlement_date)
                    .order_by(ReconciliationRun.started_at.desc())
                    .limit(limit)
                ).scalars()
            )


def _month_bounds(year_month: str) -> tuple[date, date]:
    days = dates_in_month(year_month)
    return days[0], days[-1]
