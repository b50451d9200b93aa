"""Freshness-gated read path used by the scoring / view-model layer.

``get_or_fetch`` never blocks on the network: a fresh cache hit is returned as
``ready``; anything older enqueues a refresh and reports ``pending`` with
whatever stale-but-valid series is still cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Literal

from eodcache.marketdata.models import PricePoint
from eodcache.prices.queue import JobStatus, PriceJobQueue
from eodcache.prices.store import PriceStore
from eodcache.singleflight import SingleFlight
from eodcache.utils import normalize_ticker, utc_now

logger = logging.getLogger(__name__)

FRESHNESS_WINDOW_HOURS = 24.0

LookupState = Literal["ready", "pending", "error"]


@dataclass
class PriceLookup:
    ticker: str
    state: LookupState
    price_series: list[PricePoint] = field(default_factory=list)
    market_cap: float | None = None
    currency: str | None = None
    updated_at: datetime | None = None
    job_status: JobStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticker": self.ticker,
            "state": self.state,
            "price_series": [{"date": p.date, "close": p.close} for p in self.price_series],
            "market_cap": self.market_cap,
            "currency": self.currency,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "job_status": self.job_status.value if self.job_status else None,
        }


class PriceService:
    def __init__(
        self,
        store: PriceStore,
        queue: PriceJobQueue,
        *,
        freshness_hours: float = FRESHNESS_WINDOW_HOURS,
        series_length: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._freshness = timedelta(hours=float(freshness_hours))
        self._series_length = max(1, int(series_length))
        self._clock = clock
        self._flight: SingleFlight[PriceLookup] = SingleFlight()

    def is_fresh(self, updated_at: datetime | None) -> bool:
        if updated_at is None:
            return False
        return self._clock() - updated_at < self._freshness

    async def get_or_fetch(self, ticker: str) -> PriceLookup:
        key = normalize_ticker(ticker)
        if not key:
            return PriceLookup(ticker="", state="error")
        return await self._flight.do(key, lambda: self._evaluate(key))

    async def peek(self, ticker: str) -> PriceLookup:
        """Cached lookup with the freshness verdict applied; never enqueues."""
        key = normalize_ticker(ticker)
        if not key:
            return PriceLookup(ticker="", state="error")
        lookup = await self._read(key)
        lookup.job_status = self._queue.status(key)
        return lookup

    @property
    def inflight(self) -> int:
        return len(self._flight)

    def enqueue(self, ticker: str) -> JobStatus:
        return self._queue.enqueue(ticker)

    def get_status(self, ticker: str) -> JobStatus | None:
        return self._queue.status(ticker)

    async def _read(self, key: str) -> PriceLookup:
        recent = await self._store.get_recent(key, self._series_length)
        latest = recent[0] if recent else None
        fresh = latest is not None and self.is_fresh(latest.updated_at)
        return PriceLookup(
            ticker=key,
            state="ready" if fresh else "pending",
            price_series=[r.to_point() for r in recent],
            market_cap=latest.market_cap if latest else None,
            currency=latest.currency if latest else None,
            updated_at=latest.updated_at if latest else None,
        )

    async def _evaluate(self, key: str) -> PriceLookup:
        lookup = await self._read(key)
        if lookup.state == "ready":
            return lookup

        try:
            lookup.job_status = self._queue.enqueue(key)
        except ValueError as exc:
            logger.warning("[price-service] failed to enqueue price job for %s: %s", key, exc)
            lookup.state = "error"
            return lookup

        logger.info(
            "[price-service] %s stale (cached at %s), job %s",
            key, lookup.updated_at.isoformat() if lookup.updated_at else None, lookup.job_status.value,
        )
        return lookup
