"""Collapse concurrent identical calls into one shared in-flight result."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Map from key to the in-progress future for that key.

    The first caller for a key starts the work; callers arriving while it is
    still pending await the same future. The entry is dropped as soon as the
    future settles, so the next call after that starts fresh work.

    Usage::

        flight: SingleFlight[dict] = SingleFlight()
        result = await flight.do("AAPL", lambda: load("AAPL"))
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[T]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        fut = self._inflight.get(key)
        if fut is None:
            fut = asyncio.ensure_future(fn())
            self._inflight[key] = fut
            fut.add_done_callback(lambda done, k=key: self._forget(k, done))
        # Shielded so one cancelled caller does not cancel the shared work.
        return await asyncio.shield(fut)

    def _forget(self, key: str, fut: asyncio.Future[T]) -> None:
        if self._inflight.get(key) is fut:
            del self._inflight[key]
