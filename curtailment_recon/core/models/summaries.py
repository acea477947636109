"""Aggregate tiers -- daily, monthly and yearly summaries.

Curtailment tiers carry the signed volume and payment sums (both
non-positive) keyed by period key only; bitcoin tiers add the
miner model to the key. Every tier is written by key-based upsert that
overwrites all measure columns and bumps ``last_updated``; rows are never
incremented in place.
"""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class DailySummary(Base):
    __tablename__ = "daily_summaries"

    summary_date: Mapped[date] = mapped_column(Date, primary_key=True)
    total_volume: Mapped[float] = mapped_column(Float, nullable=False)
    total_payment: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class MonthlySummary(Base):
    __tablename__ = "monthly_summaries"

    year_month: Mapped[str] = mapped_column(String(7), primary_key=True)
    total_volume: Mapped[float] = mapped_column(Float, nullable=False)
    total_payment: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class YearlySummary(Base):
    __tablename__ = "yearly_summaries"

    year: Mapped[str] = mapped_column(String(4), primary_key=True)
    total_volume: Mapped[float] = mapped_column(Float, nullable=False)
    total_payment: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class BitcoinDailySummary(Base):
    __tablename__ = "bitcoin_daily_summaries"

    summary_date: Mapped[date] = mapped_column(Date, primary_key=True)
    miner_model: Mapped[str] = mapped_column(String(32), primary_key=True)
    bitcoin_mined: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class BitcoinMonthlySummary(Base):
    __tablename__ = "bitcoin_monthly_summaries"

    year_month: Mapped[str] = mapped_column(String(7), primary_key=True)
    miner_model: Mapped[str] = mapped_column(String(32), primary_key=True)
    bitcoin_mined: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class BitcoinYearlySummary(Base):
    __tablename__ = "bitcoin_yearly_summaries"

    year: Mapped[str] = mapped_column(String(4), primary_key=True)
    miner_model: Mapped[str] = mapped_column(String(32), primary_key=True)
    bitcoin_mined: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
