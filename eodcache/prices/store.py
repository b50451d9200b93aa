"""Durable EOD price cache: SQLite table plus a per-ticker JSON export.

Every write upserts on ``(ticker, date)``, prunes the ticker to the retention
window, then regenerates ``<export_dir>/<TICKER>.json`` (ascending dates) so
other processes can read prices without opening the database.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import date as date_cls
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eodcache.db.database import get_session
from eodcache.db.models import PriceEod
from eodcache.marketdata.models import CacheRecord, PricePoint
from eodcache.utils import as_utc, normalize_ticker, positive_float, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 400
_UPSERT_CHUNK = 100


def _valid_day(value: Any) -> str | None:
    day = str(value or "").strip()
    try:
        date_cls.fromisoformat(day)
    except ValueError:
        return None
    return day


def _to_record(row: PriceEod) -> CacheRecord:
    return CacheRecord(
        ticker=row.ticker,
        date=row.date,
        close=float(row.close),
        source=row.source,
        market_cap=float(row.market_cap) if row.market_cap else None,
        currency=row.currency or None,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _write_json(path: Path, payload: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    os.replace(tmp, path)


class PriceStore:
    """Sole owner of ``prices_eod`` rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        export_dir: str | Path = "data/prices",
        retention: int = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._factory = session_factory
        self._export_dir = Path(export_dir)
        self._retention = max(1, int(retention))
        self._clock = clock

    @property
    def retention(self) -> int:
        return self._retention

    def export_path(self, ticker: str) -> Path:
        return self._export_dir / f"{normalize_ticker(ticker)}.json"

    # ── Writes ─────────────────────────────────────────────────────────

    async def upsert(
        self,
        ticker: str,
        date: str,
        close: float,
        source: str,
        market_cap: float | None = None,
        currency: str | None = None,
    ) -> bool:
        """Insert or overwrite the close for one trading day."""
        key = normalize_ticker(ticker)
        day = _valid_day(date)
        value = positive_float(close)
        if not key or day is None or value is None or not source:
            logger.debug("[price-store] ignoring invalid upsert %r %r %r %r", ticker, date, close, source)
            return False

        now = self._clock()
        await self._execute_upsert([{
            "ticker": key,
            "date": day,
            "close": value,
            "source": source,
            "market_cap": positive_float(market_cap),
            "currency": currency or None,
            "created_at": now,
            "updated_at": now,
        }])
        await self._after_write(key)
        logger.info(
            "[price-store] upserted %s %s close=%.4f source=%s",
            key, day, value, source,
        )
        return True

    async def upsert_series(
        self,
        ticker: str,
        points: Iterable[PricePoint | dict[str, Any]],
        source: str,
        market_cap: float | None = None,
        currency: str | None = None,
    ) -> int:
        """Write a batch atomically; only the newest day carries the snapshot metadata."""
        key = normalize_ticker(ticker)
        if not key or not source:
            return 0

        by_date: dict[str, float] = {}
        for p in points or []:
            raw_date = p.get("date") if isinstance(p, dict) else p.date
            raw_close = p.get("close") if isinstance(p, dict) else p.close
            day = _valid_day(raw_date)
            value = positive_float(raw_close)
            if day is not None and value is not None:
                by_date[day] = value
        if not by_date:
            return 0

        latest = max(by_date)
        now = self._clock()
        cap = positive_float(market_cap)
        rows = [
            {
                "ticker": key,
                "date": day,
                "close": by_date[day],
                "source": source,
                "market_cap": cap if day == latest else None,
                "currency": (currency or None) if day == latest else None,
                "created_at": now,
                "updated_at": now,
            }
            for day in sorted(by_date)
        ]
        await self._execute_upsert(rows)
        await self._after_write(key)
        logger.info(
            "[price-store] upserted %s series points=%d latest=%s close=%.4f source=%s",
            key, len(rows), latest, by_date[latest], source,
        )
        return len(rows)

    async def prune(self, ticker: str, keep: int | None = None) -> int:
        """Keep only the ``keep`` most recent trading days for *ticker*."""
        key = normalize_ticker(ticker)
        if not key:
            return 0
        keep = max(1, int(keep or self._retention))
        keep_dates = (
            select(PriceEod.date)
            .where(PriceEod.ticker == key)
            .order_by(PriceEod.date.desc())
            .limit(keep)
        )
        stmt = (
            delete(PriceEod)
            .where(PriceEod.ticker == key, PriceEod.date.not_in(keep_dates))
            .execution_options(synchronize_session=False)
        )
        async with get_session(self._factory) as session:
            result = await session.execute(stmt)
        removed = result.rowcount or 0
        if removed:
            logger.debug("[price-store] pruned %d rows for %s (keep=%d)", removed, key, keep)
        return removed

    async def export(self, ticker: str) -> Path:
        """Regenerate the ascending flat file for *ticker*."""
        key = normalize_ticker(ticker)
        async with get_session(self._factory) as session:
            rows = (await session.execute(
                select(PriceEod.date, PriceEod.close)
                .where(PriceEod.ticker == key)
                .order_by(PriceEod.date.asc())
                .limit(self._retention)
            )).all()
        payload = [{"date": r.date, "close": float(r.close)} for r in rows]
        path = self.export_path(key)
        await asyncio.to_thread(_write_json, path, payload)
        return path

    # ── Reads ──────────────────────────────────────────────────────────

    async def get_latest(self, ticker: str) -> CacheRecord | None:
        rows = await self.get_recent(ticker, 1)
        return rows[0] if rows else None

    async def get_recent(self, ticker: str, limit: int = 2) -> list[CacheRecord]:
        """Newest-first records for *ticker*."""
        key = normalize_ticker(ticker)
        if not key:
            return []
        async with get_session(self._factory) as session:
            rows = (await session.execute(
                select(PriceEod)
                .where(PriceEod.ticker == key)
                .order_by(PriceEod.date.desc())
                .limit(max(1, int(limit or 1)))
            )).scalars().all()
        return [_to_record(r) for r in rows]

    def read_export(self, ticker: str) -> list[dict[str, Any]]:
        path = self.export_path(ticker)
        if not path.exists():
            return []
        return json.loads(path.read_text(encoding="utf-8"))

    # ── Internals ──────────────────────────────────────────────────────

    async def _execute_upsert(self, rows: list[dict[str, Any]]) -> None:
        # One transaction; chunked to stay under SQLite's bound-parameter limit.
        async with get_session(self._factory) as session:
            for i in range(0, len(rows), _UPSERT_CHUNK):
                stmt = sqlite_insert(PriceEod).values(rows[i:i + _UPSERT_CHUNK])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["ticker", "date"],
                    set_={
                        "close": stmt.excluded.close,
                        "source": stmt.excluded.source,
                        "market_cap": stmt.excluded.market_cap,
                        "currency": stmt.excluded.currency,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await session.execute(stmt)

    async def _after_write(self, key: str) -> None:
        # Yield between phases so a long write burst does not starve other callers.
        await asyncio.sleep(0)
        await self.prune(key)
        await asyncio.sleep(0)
        try:
            await self.export(key)
        except OSError as exc:
            logger.warning("[price-store] failed to write export for %s: %s", key, exc)
