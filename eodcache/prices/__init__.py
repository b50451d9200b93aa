"""Price cache: store, job queue, freshness-gated service."""

from eodcache.prices.queue import JobStatus, PriceJobQueue
from eodcache.prices.service import PriceLookup, PriceService
from eodcache.prices.store import PriceStore

__all__ = ["JobStatus", "PriceJobQueue", "PriceLookup", "PriceService", "PriceStore"]
