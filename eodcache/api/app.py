"""FastAPI application factory with lifespan, CORS, and routers."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from eodcache import __version__
from eodcache.pipeline import PricePipeline

logger = logging.getLogger(__name__)

_start_time: float = 0.0


def get_uptime() -> float:
    return time.time() - _start_time if _start_time else 0.0


def get_pipeline(request: Request) -> PricePipeline:
    return request.app.state.pipeline


def create_app(pipeline: PricePipeline | None = None, *, run_worker: bool = True) -> FastAPI:
    """Build and return the fully-configured FastAPI application."""

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        global _start_time
        _start_time = time.time()

        pipe = pipeline or PricePipeline.from_settings()
        await pipe.start(run_worker=run_worker)
        app.state.pipeline = pipe
        logger.info("eodcache API v%s starting", __version__)
        try:
            yield
        finally:
            logger.info("eodcache API shutting down")
            await pipe.close()

    app = FastAPI(
        title="eodcache",
        description="End-of-day price cache for the stock-rating dashboard",
        version=__version__,
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    from eodcache.api.routes import prices, system
    app.include_router(prices.router, prefix="/api")
    app.include_router(system.router, prefix="/api")

    return app
