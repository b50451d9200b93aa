"""SQLAlchemy 2.0 async-compatible ORM models for the price cache."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all eodcache models."""


class PriceEod(Base):
    """One end-of-day close per ticker per trading day."""

    __tablename__ = "prices_eod"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticker: Mapped[str] = mapped_column(String(16), nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO trading day
    close: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    market_cap: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("ticker", "date", name="uq_prices_eod_ticker_date"),
        Index("ix_prices_eod_ticker_date", "ticker", "date"),
    )


# Optional columns added after the first release. ``init_db`` adds any that an
# existing table lacks.
OPTIONAL_COLUMNS: dict[str, dict[str, str]] = {
    "prices_eod": {
        "market_cap": "FLOAT",
        "currency": "VARCHAR(8)",
    },
}
