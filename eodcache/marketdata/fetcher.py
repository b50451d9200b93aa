"""Latest end-of-day close from Yahoo (chart + quote) with Stooq CSV fallback.

The fetcher never raises for provider trouble: every failure mode collapses to
``None`` so the worker can mark the job ``error`` and leave the cache alone.
"""

from __future__ import annotations

import asyncio
import csv
import logging
from datetime import date
from io import StringIO
from typing import Any
from urllib.parse import quote as urlquote

from eodcache.http import ProviderHttpError, ResilientHttpClient
from eodcache.marketdata.models import PriceObservation, PricePoint
from eodcache.marketdata.session import ProviderSession, ProviderSessionManager
from eodcache.utils import epoch_to_date, normalize_ticker, positive_float, utc_now

logger = logging.getLogger(__name__)

YAHOO_CHART_BASE = "https://query2.finance.yahoo.com/v8/finance/chart/"
YAHOO_QUOTE_URL = "https://query2.finance.yahoo.com/v7/finance/quote"
STOOQ_HISTORY_URL = "https://stooq.com/q/d/l/"

YAHOO_HEADERS = {
    "Accept": "*/*",
    "Origin": "https://finance.yahoo.com",
    "Referer": "https://finance.yahoo.com",
}

PROVIDERS = ("yahoo", "stooq")


def symbol_variants(ticker: str) -> list[str]:
    """Share-class spellings to try: BRK-B also tries BRK.B, and vice versa."""
    symbol = normalize_ticker(ticker)
    if not symbol:
        return []
    variants = [symbol]
    if "-" in symbol:
        variants.append(symbol.replace("-", "."))
    if "." in symbol:
        variants.append(symbol.replace(".", "-"))
    return list(dict.fromkeys(variants))


def parse_stooq_csv(text: str) -> list[PricePoint]:
    """Valid ``Date,…,Close`` rows in ascending date order (row order in the body is arbitrary)."""
    body = (text or "").lstrip("\ufeff").strip()
    if not body:
        return []
    header = body.splitlines()[0]
    delimiter = ";" if header.count(";") > header.count(",") else ","

    by_date: dict[str, float] = {}
    for raw in csv.DictReader(StringIO(body), delimiter=delimiter):
        row = {(k or "").strip().lower(): v for k, v in raw.items()}
        day = (row.get("date") or "").strip()
        try:
            date.fromisoformat(day)
        except ValueError:
            continue
        close = positive_float(row.get("close"))
        if close is None:
            continue
        by_date[day] = close
    return [PricePoint(date=d, close=by_date[d]) for d in sorted(by_date)]


def parse_yahoo_chart(body: Any) -> dict[str, Any] | None:
    if not isinstance(body, dict):
        return None
    results = (body.get("chart") or {}).get("result") or []
    if not results:
        return None
    result = results[0] or {}
    meta = result.get("meta") or {}
    timestamps = result.get("timestamp") or []
    quotes = (result.get("indicators") or {}).get("quote") or [{}]
    closes = (quotes[0] or {}).get("close") or []

    history: dict[str, float] = {}
    for ts, raw_close in zip(timestamps, closes):
        close = positive_float(raw_close)
        if close is None or positive_float(ts) is None:
            continue
        history[epoch_to_date(ts)] = close
    if not history:
        return None
    return {
        "history": [PricePoint(date=d, close=history[d]) for d in sorted(history)],
        "currency": meta.get("currency") or None,
    }


def parse_yahoo_quote(body: Any) -> dict[str, Any] | None:
    if not isinstance(body, dict):
        return None
    results = (body.get("quoteResponse") or {}).get("result") or []
    if not results:
        return None
    result = results[0] or {}
    close = positive_float(result.get("regularMarketPreviousClose"))
    if close is None:
        return None
    ts = positive_float(result.get("regularMarketTime"))
    return {
        "close": close,
        "date": epoch_to_date(ts) if ts is not None else utc_now().date().isoformat(),
        "market_cap": positive_float(result.get("marketCap")),
        "currency": result.get("currency") or None,
    }


def merge_yahoo(
    ticker: str,
    chart: dict[str, Any] | None,
    quote: dict[str, Any] | None,
) -> PriceObservation | None:
    """History from chart, snapshot from quote; the quote close wins for its date."""
    if chart is None and quote is None:
        return None

    history = {p.date: p.close for p in chart["history"]} if chart else {}
    if quote is not None:
        history[quote["date"]] = quote["close"]
        day, close = quote["date"], quote["close"]
    else:
        last = chart["history"][-1]
        day, close = last.date, last.close

    if chart and quote:
        source = "yahoo-chart+quote"
    elif chart:
        source = "yahoo-chart"
    else:
        source = "yahoo-quote"

    return PriceObservation(
        ticker=ticker,
        date=day,
        close=close,
        source=source,
        market_cap=quote["market_cap"] if quote else None,
        currency=(quote or {}).get("currency") or (chart or {}).get("currency"),
        history=[PricePoint(date=d, close=history[d]) for d in sorted(history)],
    )


class PriceFetcher:
    """Walks the configured provider order and symbol variants until a close is found."""

    def __init__(
        self,
        *,
        yahoo: ResilientHttpClient | None = None,
        sessions: ProviderSessionManager | None = None,
        stooq: ResilientHttpClient | None = None,
        primary: str = "yahoo",
        fallback_enabled: bool = True,
    ) -> None:
        if primary not in PROVIDERS:
            raise ValueError(f"unknown primary provider: {primary!r}")
        self._yahoo = yahoo
        self._sessions = sessions
        self._stooq = stooq
        self._primary = primary
        self._fallback_enabled = fallback_enabled

    def source_order(self) -> list[str]:
        order = [self._primary]
        if self._fallback_enabled:
            order.extend(p for p in PROVIDERS if p != self._primary)
        return order

    async def fetch_latest_price(self, ticker: str) -> PriceObservation | None:
        symbol = normalize_ticker(ticker)
        if not symbol:
            return None

        for provider in self.source_order():
            if provider == "yahoo":
                obs = await self._from_yahoo(symbol)
            else:
                obs = await self._from_stooq(symbol)
            if obs is not None:
                logger.info(
                    "[price-fetcher] %s close=%.4f date=%s source=%s",
                    symbol, obs.close, obs.date, obs.source,
                )
                return obs
            logger.info("[price-fetcher] %s: no usable close from %s", symbol, provider)

        return None

    # ── Yahoo ──────────────────────────────────────────────────────────

    async def _from_yahoo(self, symbol: str) -> PriceObservation | None:
        if self._yahoo is None or self._sessions is None:
            return None
        session = await self._sessions.get_session()
        if session is None:
            return None

        for variant in symbol_variants(symbol):
            chart, quote = await asyncio.gather(
                self._yahoo_chart(variant, session),
                self._yahoo_quote(variant, session),
            )
            if self._sessions.is_blocked():
                return None
            obs = merge_yahoo(symbol, chart, quote)
            if obs is not None:
                return obs
            if self._sessions.session is not session:
                # Invalidated by a 403; later variants need a fresh crumb.
                session = await self._sessions.get_session()
                if session is None:
                    return None
        return None

    async def _yahoo_chart(self, variant: str, session: ProviderSession) -> dict[str, Any] | None:
        url = f"{YAHOO_CHART_BASE}{urlquote(variant, safe='')}"
        try:
            body = await self._yahoo.get(
                url,
                params={"range": "2y", "interval": "1d", "crumb": session.crumb},
                headers={**YAHOO_HEADERS, "Cookie": session.cookie},
            )
        except ProviderHttpError as exc:
            self._on_yahoo_error(exc, variant, "chart")
            return None
        except ValueError:
            logger.warning("[price-fetcher] yahoo chart returned malformed JSON for %s", variant)
            return None
        return parse_yahoo_chart(body)

    async def _yahoo_quote(self, variant: str, session: ProviderSession) -> dict[str, Any] | None:
        try:
            body = await self._yahoo.get(
                YAHOO_QUOTE_URL,
                params={"symbols": variant, "crumb": session.crumb},
                headers={**YAHOO_HEADERS, "Cookie": session.cookie},
            )
        except ProviderHttpError as exc:
            self._on_yahoo_error(exc, variant, "quote")
            return None
        except ValueError:
            logger.warning("[price-fetcher] yahoo quote returned malformed JSON for %s", variant)
            return None
        return parse_yahoo_quote(body)

    def _on_yahoo_error(self, exc: ProviderHttpError, variant: str, kind: str) -> None:
        if exc.status == 401:
            self._sessions.block(f"401 on {kind}")
        elif exc.status == 403:
            # Stale crumb; the next attempt performs a fresh handshake.
            self._sessions.invalidate()
        logger.warning("[price-fetcher] yahoo %s failed for %s: %s", kind, variant, exc)

    # ── Stooq ──────────────────────────────────────────────────────────

    async def _from_stooq(self, symbol: str) -> PriceObservation | None:
        if self._stooq is None:
            return None

        for variant in symbol_variants(symbol):
            try:
                body = await self._stooq.get(
                    STOOQ_HISTORY_URL,
                    params={"s": f"{variant.lower()}.us", "i": "d"},
                )
            except ProviderHttpError as exc:
                logger.warning("[price-fetcher] stooq failed for %s: %s", variant, exc)
                continue
            except ValueError:
                logger.warning("[price-fetcher] stooq returned malformed body for %s", variant)
                continue

            points = parse_stooq_csv(body if isinstance(body, str) else "")
            if not points:
                continue
            latest = points[-1]
            return PriceObservation(
                ticker=symbol,
                date=latest.date,
                close=latest.close,
                source="stooq",
                history=points,
            )
        return None
