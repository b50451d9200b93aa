"""Price value objects passed between fetcher, guard, store and service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class PricePoint:
    date: str
    close: float


@dataclass
class PriceObservation:
    """A freshly fetched close; becomes a CacheRecord only if the guard accepts it."""

    ticker: str
    date: str
    close: float
    source: str
    market_cap: float | None = None
    currency: str | None = None
    history: list[PricePoint] = field(default_factory=list)


@dataclass
class CacheRecord:
    ticker: str
    date: str
    close: float
    source: str
    market_cap: float | None
    currency: str | None
    created_at: datetime
    updated_at: datetime

    def to_point(self) -> PricePoint:
        return PricePoint(date=self.date, close=self.close)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["created_at"] = self.created_at.isoformat()
        out["updated_at"] = self.updated_at.isoformat()
        return out
