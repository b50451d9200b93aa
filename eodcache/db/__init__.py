"""Database package — models, engine, session factory."""

from eodcache.db.database import create_engine, get_session, init_db, make_session_factory
from eodcache.db.models import Base, PriceEod

__all__ = [
    "Base",
    "PriceEod",
    "create_engine",
    "get_session",
    "init_db",
    "make_session_factory",
]
