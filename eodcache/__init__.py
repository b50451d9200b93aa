"""eodcache — end-of-day price acquisition and caching pipeline."""

__version__ = "0.3.0"
