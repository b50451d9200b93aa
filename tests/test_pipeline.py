from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from eodcache.config import Settings
from eodcache.pipeline import PricePipeline
from eodcache.prices.queue import JobStatus

SPY_CSV = (
    "Date,Open,High,Low,Close,Volume\n"
    "2025-12-16,679.1,681.0,676.2,678.87,1\n"
    "2025-12-17,679.0,680.5,670.4,671.40,1\n"
)


def _stooq(request: httpx.Request) -> httpx.Response:
    if request.url.host == "stooq.com" and request.url.params.get("s") == "spy.us":
        return httpx.Response(200, text=SPY_CSV)
    return httpx.Response(404, text="not found")


@pytest.mark.asyncio
async def test_stale_lookup_is_filled_by_worker(tmp_path: Path) -> None:
    settings = Settings(
        data_dir=str(tmp_path),
        price_primary_provider="stooq",
        price_fallback_enabled=False,
        http_min_spacing_seconds=0,
    )
    pipeline = PricePipeline.from_settings(settings, transport=httpx.MockTransport(_stooq))
    await pipeline.start(run_worker=False)
    try:
        pending = await pipeline.service.get_or_fetch("spy")
        assert pending.state == "pending"

        assert await pipeline.worker.process_next() is JobStatus.DONE

        ready = await pipeline.service.get_or_fetch("SPY")
        assert ready.state == "ready"
        assert [(p.date, p.close) for p in ready.price_series] == [
            ("2025-12-17", 671.40),
            ("2025-12-16", 678.87),
        ]
        assert pipeline.store.read_export("SPY")[-1] == {"date": "2025-12-17", "close": 671.40}
        assert (tmp_path / "prices.db").exists()
    finally:
        await pipeline.close()
