from __future__ import annotations

import httpx
import pytest

from eodcache.marketdata.fetcher import PriceFetcher
from eodcache.marketdata.session import ProviderSessionManager
from tests.conftest import make_client


class YahooHandshake:
    """Mock transport handler for the cookie + crumb endpoints."""

    def __init__(self, cookie_status: int = 404, crumb_status: int = 200, crumb: str = "Xy7crumb") -> None:
        self.cookie_status = cookie_status
        self.crumb_status = crumb_status
        self.crumb = crumb
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(f"{request.url.host}{request.url.path}")
        if request.url.host == "fc.yahoo.com":
            return httpx.Response(
                self.cookie_status,
                headers={"set-cookie": "A3=abc123; Path=/"},
                text="",
            )
        if request.url.path == "/v1/test/getcrumb":
            return httpx.Response(self.crumb_status, text=self.crumb)
        return httpx.Response(500, text="unexpected")


@pytest.mark.asyncio
async def test_handshake_establishes_and_caches_session() -> None:
    handler = YahooHandshake()
    http = make_client(handler, provider="yahoo")
    now = [1000.0]
    sessions = ProviderSessionManager(http, ttl_seconds=1800, clock=lambda: now[0])
    try:
        first = await sessions.get_session()
        assert first is not None
        assert first.crumb == "Xy7crumb"
        assert "A3=abc123" in first.cookie
        assert len(handler.calls) == 2

        now[0] += 60
        again = await sessions.get_session()
        assert again is first
        assert len(handler.calls) == 2
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_session_is_refreshed_after_ttl() -> None:
    handler = YahooHandshake()
    http = make_client(handler, provider="yahoo")
    now = [1000.0]
    sessions = ProviderSessionManager(http, ttl_seconds=1800, clock=lambda: now[0])
    try:
        first = await sessions.get_session()
        now[0] += 1801
        second = await sessions.get_session()
        assert second is not None
        assert second is not first
        assert len(handler.calls) == 4
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_html_crumb_is_rejected() -> None:
    handler = YahooHandshake(crumb="<html>consent</html>")
    http = make_client(handler, provider="yahoo")
    sessions = ProviderSessionManager(http)
    try:
        assert await sessions.get_session() is None
        assert not sessions.is_blocked()
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_401_blocks_provider_without_further_requests() -> None:
    handler = YahooHandshake(cookie_status=401)
    http = make_client(handler, provider="yahoo")
    now = [1000.0]
    sessions = ProviderSessionManager(http, cooldown_seconds=21600, clock=lambda: now[0])
    fetcher = PriceFetcher(yahoo=http, sessions=sessions, primary="yahoo", fallback_enabled=False)
    try:
        assert await sessions.get_session() is None
        assert sessions.is_blocked()
        assert sessions.blocked_until == 1000.0 + 21600
        calls_after_block = len(handler.calls)

        now[0] += 3600
        assert await sessions.get_session() is None
        assert await fetcher.fetch_latest_price("AAPL") is None
        assert len(handler.calls) == calls_after_block
        assert sessions.state()["blocked"] is True
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_block_expires_after_cooldown() -> None:
    handler = YahooHandshake(crumb_status=401)
    http = make_client(handler, provider="yahoo")
    now = [1000.0]
    sessions = ProviderSessionManager(http, cooldown_seconds=100, clock=lambda: now[0])
    try:
        assert await sessions.get_session() is None
        assert sessions.is_blocked()

        handler.crumb_status = 200
        now[0] += 101
        assert not sessions.is_blocked()
        assert await sessions.get_session() is not None
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_undecodable_crumb_body_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "fc.yahoo.com":
            return httpx.Response(404, headers={"set-cookie": "A3=abc123; Path=/"})
        return httpx.Response(200, headers={"content-type": "application/json"}, content=b"not json{")

    http = make_client(handler, provider="yahoo")
    sessions = ProviderSessionManager(http)
    try:
        assert await sessions.get_session() is None
        assert not sessions.is_blocked()
    finally:
        await http.close()
