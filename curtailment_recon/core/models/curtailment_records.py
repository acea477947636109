"""Curtailment records -- one row per (date, period, farm).

Natural key: (settlement_date, settlement_period, farm_id).
Sign convention enforced at creation: volume < 0 is a reduction and
payment <= 0 is a cost. Rows for a period are only ever replaced wholesale.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class CurtailmentRecord(Base):
    __tablename__ = "curtailment_records"

    settlement_date: Mapped[date] = mapped_column(Date, primary_key=True)
    settlement_period: Mapped[int] = mapped_column(Integer, primary_key=True)
    farm_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    lead_party_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    volume: Mapped[float] = mapped_column(Float, nullable=False)
    payment: Mapped[float] = mapped_column(Float, nullable=False)
    original_price: Mapped[float] = mapped_column(Float, nullable=False)
    final_price: Mapped[float] = mapped_column(Float, nullable=False)
    so_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cadl_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "settlement_period BETWEEN 1 AND 48", name="period_on_grid"
        ),
        CheckConstraint("payment <= 0", name="payment_is_cost"),
        Index("ix_curtailment_records_settlement_date", "settlement_date"),
    )
