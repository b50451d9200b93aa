"""Price worker, the single consumer of the price job queue.

Each iteration waits the spacing interval first, idle or not, then handles at
most one ticker. The spacing is what keeps the aggregate request rate against
the providers steady across all tickers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from eodcache.marketdata.fetcher import PriceFetcher
from eodcache.marketdata.guard import MAX_JUMP_FACTOR, is_plausible
from eodcache.prices.queue import JobStatus, PriceJobQueue
from eodcache.prices.store import PriceStore

logger = logging.getLogger(__name__)


class PriceWorker:
    """Drains ``PriceJobQueue`` through the fetcher, guard and store."""

    def __init__(
        self,
        queue: PriceJobQueue,
        fetcher: PriceFetcher,
        store: PriceStore,
        *,
        spacing_seconds: float = 10.0,
        max_jump_factor: float = MAX_JUMP_FACTOR,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._fetcher = fetcher
        self._store = store
        self._spacing = float(spacing_seconds)
        self._max_jump = float(max_jump_factor)
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._stats: dict[str, int] = {
            "cycles": 0, "idle": 0, "done": 0,
            "rejected": 0, "no_data": 0, "errors": 0,
        }

    # ── Main loop ─────────────────────────────────────────────────────

    async def run(self, *, iterations: int | None = None) -> None:
        """Run the worker loop (forever unless *iterations* is given)."""
        logger.info("[price-worker] starting loop with spacing %.1fs", self._spacing)
        done = 0
        while iterations is None or done < iterations:
            await self._sleep(self._spacing)
            try:
                await self.process_next()
            except Exception:
                logger.error("[price-worker] cycle failed", exc_info=True)
                self._stats["errors"] += 1
            done += 1

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="price-worker")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── One job ───────────────────────────────────────────────────────

    async def process_next(self) -> JobStatus | None:
        """Handle the head of the queue; ``None`` when the queue is empty."""
        self._stats["cycles"] += 1
        ticker = self._queue.pop()
        if ticker is None:
            self._stats["idle"] += 1
            logger.debug("[price-worker] idle, queue empty")
            return None

        self._queue.mark(ticker, JobStatus.RUNNING)
        logger.info("[price-worker] start job %s (queue length %d)", ticker, len(self._queue))

        status = JobStatus.ERROR
        try:
            status = await self._process(ticker)
        except Exception:
            logger.error("[price-worker] error fetching price for %s", ticker, exc_info=True)
            self._stats["errors"] += 1
        finally:
            self._queue.mark(ticker, status)
        return status

    async def _process(self, ticker: str) -> JobStatus:
        last = await self._store.get_latest(ticker)
        last_close = last.close if last else None
        obs = await self._fetcher.fetch_latest_price(ticker)

        if obs is None:
            logger.warning("[price-worker] no price returned for %s", ticker)
            self._stats["no_data"] += 1
            return JobStatus.ERROR

        if not is_plausible(obs.close, last_close, self._max_jump):
            logger.warning(
                "[price-worker] price rejected as implausible %s fetched=%.4f last=%s",
                ticker, obs.close, last_close,
            )
            self._stats["rejected"] += 1
            return JobStatus.ERROR

        points = obs.history or [{"date": obs.date, "close": obs.close}]
        written = await self._store.upsert_series(
            ticker, points, obs.source, obs.market_cap, obs.currency,
        )
        if not written:
            self._stats["no_data"] += 1
            return JobStatus.ERROR

        logger.info(
            "[price-worker] success %s close=%.4f date=%s source=%s last=%s",
            ticker, obs.close, obs.date, obs.source, last_close,
        )
        self._stats["done"] += 1
        return JobStatus.DONE

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "queue_length": len(self._queue),
            "spacing_seconds": self._spacing,
            "running": self.running,
        }
