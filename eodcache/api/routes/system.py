"""System endpoints — health and config."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from eodcache import __version__
from eodcache.api.app import get_pipeline, get_uptime
from eodcache.pipeline import PricePipeline

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(pipeline: PricePipeline = Depends(get_pipeline)):
    details = pipeline.health()
    yahoo = details["providers"]["yahoo"]
    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(get_uptime(), 1),
        "components": {
            "worker": pipeline.worker.running,
            "yahoo_blocked": yahoo["blocked"],
        },
        **details,
    }


@router.get("/config")
async def config(pipeline: PricePipeline = Depends(get_pipeline)):
    s = pipeline.settings
    return {
        "price_primary_provider": s.price_primary_provider,
        "price_fallback_enabled": s.price_fallback_enabled,
        "provider_block_cooldown_seconds": s.provider_block_cooldown_seconds,
        "yahoo_session_ttl_seconds": s.yahoo_session_ttl_seconds,
        "price_freshness_hours": s.price_freshness_hours,
        "price_retention_days": s.price_retention_days,
        "price_worker_spacing_seconds": s.price_worker_spacing_seconds,
        "log_level": s.log_level,
    }
