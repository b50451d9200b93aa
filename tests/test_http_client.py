from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from eodcache.http import ProviderHttpError
from tests.conftest import Recorder, make_client


@pytest.mark.asyncio
async def test_json_body_is_parsed_and_text_is_returned_verbatim() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/json":
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(200, text="Date,Close\n")

    client = make_client(handler)
    try:
        assert await client.get("https://example.test/json") == {"ok": True}
        assert await client.get("https://example.test/csv") == "Date,Close\n"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_429_honours_retry_after_then_succeeds() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429, headers={"Retry-After": "2"})
        return httpx.Response(200, json={"n": calls})

    recorder = Recorder()
    client = make_client(handler, recorder=recorder)
    try:
        assert await client.get("https://example.test/x") == {"n": 2}
    finally:
        await client.close()

    assert calls == 2
    assert recorder.sleeps == [2.0]


@pytest.mark.asyncio
async def test_429_without_retry_after_waits_twice_the_backoff() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429)
        return httpx.Response(200, text="ok")

    recorder = Recorder()
    client = make_client(handler, recorder=recorder)
    try:
        assert await client.get("https://example.test/x") == "ok"
    finally:
        await client.close()

    assert recorder.sleeps == [pytest.approx(0.4)]


@pytest.mark.asyncio
async def test_persistent_5xx_exhausts_retries_with_bounded_snippet() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="x" * 2000)

    recorder = Recorder()
    client = make_client(handler, recorder=recorder, max_retries=3)
    try:
        with pytest.raises(ProviderHttpError) as info:
            await client.get("https://example.test/down")
    finally:
        await client.close()

    err = info.value
    assert err.status == 503
    assert err.url == "https://example.test/down"
    assert len(err.body_snippet) == 500
    assert calls == 4
    assert recorder.sleeps == [pytest.approx(0.2), pytest.approx(0.4), pytest.approx(0.8)]


@pytest.mark.asyncio
async def test_other_4xx_is_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, text="not found")

    recorder = Recorder()
    client = make_client(handler, recorder=recorder)
    try:
        with pytest.raises(ProviderHttpError) as info:
            await client.get("https://example.test/missing")
    finally:
        await client.close()

    assert info.value.status == 404
    assert info.value.body_snippet == "not found"
    assert calls == 1
    assert recorder.sleeps == []


@pytest.mark.asyncio
async def test_transport_errors_are_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json=[1, 2])

    client = make_client(handler)
    try:
        assert await client.get("https://example.test/flaky") == [1, 2]
    finally:
        await client.close()
    assert calls == 3


@pytest.mark.asyncio
async def test_transport_failure_surfaces_without_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dns failure", request=request)

    client = make_client(handler, max_retries=1)
    try:
        with pytest.raises(ProviderHttpError) as info:
            await client.get("https://example.test/unreachable")
    finally:
        await client.close()

    assert info.value.status is None
    assert info.value.is_transport


@pytest.mark.asyncio
async def test_requests_are_spaced_by_min_spacing() -> None:
    now = [100.0]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    recorder = Recorder()
    client = make_client(handler, recorder=recorder, min_spacing=1.0, clock=lambda: now[0])
    try:
        await client.get("https://example.test/a")
        now[0] = 100.25
        await client.get("https://example.test/b")
        now[0] = 105.0
        await client.get("https://example.test/c")
    finally:
        await client.close()

    assert recorder.sleeps == [pytest.approx(0.75)]
    assert client.request_count == 3


@pytest.mark.asyncio
async def test_429_honours_http_date_retry_after() -> None:
    calls = 0
    retry_at = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=30), usegmt=True)

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429, headers={"Retry-After": retry_at})
        return httpx.Response(200, text="ok")

    recorder = Recorder()
    client = make_client(handler, recorder=recorder)
    try:
        assert await client.get("https://example.test/x") == "ok"
    finally:
        await client.close()

    assert len(recorder.sleeps) == 1
    assert 20 < recorder.sleeps[0] <= 31


@pytest.mark.asyncio
async def test_past_http_date_retry_after_falls_back_to_backoff() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        return httpx.Response(200, text="ok")

    recorder = Recorder()
    client = make_client(handler, recorder=recorder)
    try:
        await client.get("https://example.test/x")
    finally:
        await client.close()

    assert recorder.sleeps == [pytest.approx(0.4)]
