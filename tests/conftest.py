from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import httpx
import pytest
import pytest_asyncio

from eodcache.db.database import create_engine, init_db, make_session_factory
from eodcache.http import ResilientHttpClient
from eodcache.prices.store import PriceStore


@pytest_asyncio.fixture
async def engine(tmp_path: Path):
    eng = create_engine(tmp_path / "prices.db")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def make_store(engine, tmp_path: Path) -> Callable[..., PriceStore]:
    def _make(**kwargs) -> PriceStore:
        return PriceStore(make_session_factory(engine), export_dir=tmp_path / "exports", **kwargs)

    return _make


class FakeClock:
    """Mutable wall clock for datetime-based components."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 12, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class Recorder:
    """Records sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    provider: str = "test",
    recorder: Recorder | None = None,
    **kwargs,
) -> ResilientHttpClient:
    recorder = recorder or Recorder()
    kwargs.setdefault("min_spacing", 0.0)
    kwargs.setdefault("max_retries", 3)
    return ResilientHttpClient(
        provider,
        transport=httpx.MockTransport(handler),
        sleep=recorder.sleep,
        **kwargs,
    )
