"""Wires HTTP clients, session manager, fetcher, store, queue, worker and service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from eodcache.config import Settings, get_settings
from eodcache.db.database import create_engine, init_db, make_session_factory
from eodcache.http import ResilientHttpClient
from eodcache.marketdata.fetcher import PriceFetcher
from eodcache.marketdata.session import ProviderSessionManager
from eodcache.prices.queue import PriceJobQueue
from eodcache.prices.service import PriceService
from eodcache.prices.store import PriceStore
from eodcache.workers.price_worker import PriceWorker

logger = logging.getLogger(__name__)


@dataclass
class PricePipeline:
    settings: Settings
    engine: AsyncEngine
    store: PriceStore
    queue: PriceJobQueue
    sessions: ProviderSessionManager
    fetcher: PriceFetcher
    worker: PriceWorker
    service: PriceService
    http_clients: list[ResilientHttpClient] = field(default_factory=list)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PricePipeline:
        s = settings or get_settings()
        headers = {"User-Agent": s.http_user_agent}

        def _client(provider: str) -> ResilientHttpClient:
            return ResilientHttpClient(
                provider,
                min_spacing=s.http_min_spacing_seconds,
                max_retries=s.http_max_retries,
                timeout=s.http_timeout_seconds,
                headers=headers,
                transport=transport,
            )

        yahoo = _client("yahoo")
        stooq = _client("stooq")
        sessions = ProviderSessionManager(
            yahoo,
            ttl_seconds=s.yahoo_session_ttl_seconds,
            cooldown_seconds=s.provider_block_cooldown_seconds,
        )
        fetcher = PriceFetcher(
            yahoo=yahoo,
            sessions=sessions,
            stooq=stooq,
            primary=s.price_primary_provider,
            fallback_enabled=s.price_fallback_enabled,
        )

        engine = create_engine(s.database_file, echo=s.log_level == "DEBUG")
        store = PriceStore(
            make_session_factory(engine),
            export_dir=s.export_dir,
            retention=s.price_retention_days,
        )
        queue = PriceJobQueue()
        worker = PriceWorker(
            queue,
            fetcher,
            store,
            spacing_seconds=s.price_worker_spacing_seconds,
            max_jump_factor=s.price_max_jump_factor,
        )
        service = PriceService(
            store,
            queue,
            freshness_hours=s.price_freshness_hours,
            series_length=s.price_series_length,
        )
        return cls(
            settings=s,
            engine=engine,
            store=store,
            queue=queue,
            sessions=sessions,
            fetcher=fetcher,
            worker=worker,
            service=service,
            http_clients=[yahoo, stooq],
        )

    async def start(self, *, run_worker: bool = True) -> None:
        await init_db(self.engine)
        if run_worker:
            self.worker.start()
        logger.info(
            "Price pipeline ready (primary=%s, fallback=%s, db=%s)",
            self.settings.price_primary_provider,
            self.settings.price_fallback_enabled,
            self.settings.database_file,
        )

    async def close(self) -> None:
        await self.worker.stop()
        for client in self.http_clients:
            await client.close()
        await self.engine.dispose()

    def health(self) -> dict[str, Any]:
        return {
            "worker": self.worker.get_stats(),
            "queue": {"pending": self.queue.pending(), "jobs": self.queue.snapshot()},
            "inflight_lookups": self.service.inflight,
            "providers": {
                "order": self.fetcher.source_order(),
                "yahoo": self.sessions.state(),
            },
        }
