"""Derived bitcoin calculations -- one row per (date, period, farm, miner model).

Natural key: (settlement_date, settlement_period, farm_id, miner_model).
The difficulty used at computation time is retained for reproducibility.
"""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BitcoinCalculation(Base):
    __tablename__ = "historical_bitcoin_calculations"

    settlement_date: Mapped[date] = mapped_column(Date, primary_key=True)
    settlement_period: Mapped[int] = mapped_column(Integer, primary_key=True)
    farm_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    miner_model: Mapped[str] = mapped_column(String(32), primary_key=True)
    bitcoin_mined: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty: Mapped[float] = mapped_column(Float, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index(
            "ix_historical_bitcoin_calculations_date_model",
            "settlement_date",
            "miner_model",
        ),
    )
