"""Market data acquisition: providers, sessions, plausibility."""

from eodcache.marketdata.fetcher import PriceFetcher, symbol_variants
from eodcache.marketdata.guard import is_plausible
from eodcache.marketdata.models import CacheRecord, PriceObservation, PricePoint
from eodcache.marketdata.session import ProviderSession, ProviderSessionManager

__all__ = [
    "CacheRecord",
    "PriceFetcher",
    "PriceObservation",
    "PricePoint",
    "ProviderSession",
    "ProviderSessionManager",
    "is_plausible",
    "symbol_variants",
]
