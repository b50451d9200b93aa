"""Price endpoints: cached read, refresh and job status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from eodcache.api.app import get_pipeline
from eodcache.pipeline import PricePipeline
from eodcache.utils import normalize_ticker

router = APIRouter(tags=["prices"])


def _ticker_or_400(ticker: str) -> str:
    key = normalize_ticker(ticker)
    if not key:
        raise HTTPException(status_code=400, detail="ticker is required")
    return key


@router.get("/prices/{ticker}")
async def get_price(ticker: str, pipeline: PricePipeline = Depends(get_pipeline)):
    lookup = await pipeline.service.get_or_fetch(_ticker_or_400(ticker))
    return lookup.to_dict()


@router.post("/prices/{ticker}/refresh", status_code=202)
async def refresh_price(ticker: str, pipeline: PricePipeline = Depends(get_pipeline)):
    key = _ticker_or_400(ticker)
    status = pipeline.service.enqueue(key)
    return {"ticker": key, "status": status.value}


@router.get("/prices/{ticker}/status")
async def price_status(ticker: str, pipeline: PricePipeline = Depends(get_pipeline)):
    key = _ticker_or_400(ticker)
    status = pipeline.service.get_status(key)
    if status is None:
        raise HTTPException(status_code=404, detail=f"no price job for {key}")
    return {"ticker": key, "status": status.value}
