"""Reconciliation run ledger -- one row per orchestrated date per run.

Regular table with low volume. Lets operators list the latest terminal
state per settlement date and resume from dates that ended in
PARTIAL_FAILURE.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ReconciliationRun(Base):
    """ORM model for the reconciliation_runs table.

    Primary key is (run_id, settlement_date) so a range run writes one row
    per date it processed.
    """

    __tablename__ = "reconciliation_runs"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    settlement_date: Mapped[date] = mapped_column(Date, primary_key=True, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    final_state: Mapped[str] = mapped_column(String(30), nullable=False)
    missing_periods: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    failed_periods: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    discrepancy_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
