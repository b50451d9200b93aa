"""In-process FIFO of price jobs with at most one active job per ticker.

All methods are synchronous, so under asyncio they run without interleaving:
``enqueue`` only ever writes ``queued``; the worker is the only caller of
``pop``/``mark``.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum

from eodcache.utils import normalize_ticker

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def active(self) -> bool:
        return self in (JobStatus.QUEUED, JobStatus.RUNNING)


class PriceJobQueue:
    def __init__(self) -> None:
        self._queue: deque[str] = deque()
        self._status: dict[str, JobStatus] = {}

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, ticker: str) -> JobStatus:
        """Queue *ticker* unless it already has an active job; return its status."""
        key = normalize_ticker(ticker)
        if not key:
            raise ValueError("ticker is required for price job")
        existing = self._status.get(key)
        if existing is not None and existing.active:
            logger.debug("[price-queue] skip enqueue, %s already %s", key, existing.value)
            return existing
        self._queue.append(key)
        self._status[key] = JobStatus.QUEUED
        logger.info("[price-queue] enqueued %s (queue length %d)", key, len(self._queue))
        return JobStatus.QUEUED

    def status(self, ticker: str) -> JobStatus | None:
        key = normalize_ticker(ticker)
        if not key:
            return None
        return self._status.get(key)

    def pop(self) -> str | None:
        return self._queue.popleft() if self._queue else None

    def mark(self, ticker: str, status: JobStatus) -> None:
        self._status[normalize_ticker(ticker)] = status

    def pending(self) -> list[str]:
        return list(self._queue)

    def snapshot(self) -> dict[str, str]:
        return {k: v.value for k, v in self._status.items()}
