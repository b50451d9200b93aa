"""Rate-limited async HTTP client with retry and backoff for market-data providers.

One ``ResilientHttpClient`` per provider. It knows nothing about prices: it
spaces requests, retries what is transient, and raises ``ProviderHttpError``
for everything else so callers can branch on ``status``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

_BODY_SNIPPET_CHARS = 500

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


class ProviderHttpError(Exception):
    """Structured failure of a provider request.

    ``status`` is ``None`` for transport-level failures (DNS, reset, timeout).
    ``body_snippet`` is bounded; the full response body is never kept.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status: int | None = None,
        status_text: str | None = None,
        body_snippet: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.status_text = status_text
        self.body_snippet = body_snippet

    @property
    def is_transport(self) -> bool:
        return self.status is None


class ResilientHttpClient:
    """Single-request client: spacing, bounded retries, exponential backoff.

    - 2xx: parsed body (JSON when the content type says so, else text).
    - 429: honour ``Retry-After`` (seconds) or wait twice the backoff; retry.
    - 5xx and transport errors: exponential backoff; retry.
    - other 4xx: raise immediately.
    """

    def __init__(
        self,
        provider: str,
        *,
        min_spacing: float = 0.25,
        max_retries: int = 3,
        timeout: float = 12.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self.provider = provider
        self._min_spacing = max(0.0, float(min_spacing))
        self._max_retries = max(0, int(max_retries))
        self._base_delay = max(self._min_spacing, 0.2)
        self._sleep = sleep
        self._clock = clock
        self._last_request: float | None = None
        self._spacing_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
            transport=transport,
            follow_redirects=True,
        )
        self.request_count = 0

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    async def close(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        resp = await self.get_response(url, params=params, headers=headers)
        content_type = resp.headers.get("content-type", "")
        if "json" in content_type:
            return resp.json()
        return resp.text

    async def get_response(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        attempt = 0
        backoff = self._base_delay

        while True:
            await self._throttle()
            try:
                resp = await self._client.get(url, params=params, headers=headers)
            except httpx.TransportError as exc:
                attempt += 1
                if attempt > self._max_retries:
                    raise ProviderHttpError(
                        f"{self.provider} request error: {type(exc).__name__}",
                        url=url,
                    ) from exc
                logger.warning(
                    "[http:%s] transport error %s (attempt %d/%d), retrying in %.1fs",
                    self.provider, type(exc).__name__, attempt, self._max_retries, backoff,
                )
                await self._sleep(backoff)
                backoff *= 2
                continue

            if resp.is_success:
                return resp

            status = resp.status_code
            if status == 429 or status >= 500:
                attempt += 1
                if attempt > self._max_retries:
                    raise self._error(url, resp, "failed after retries")
                if status == 429:
                    delay = self._retry_after(resp) or backoff * 2
                else:
                    delay = backoff
                logger.warning(
                    "[http:%s] HTTP %d (attempt %d/%d), retrying in %.1fs",
                    self.provider, status, attempt, self._max_retries, delay,
                )
                await self._sleep(delay)
                backoff *= 2
                continue

            raise self._error(url, resp, "failed")

    async def _throttle(self) -> None:
        async with self._spacing_lock:
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self._min_spacing:
                    await self._sleep(self._min_spacing - elapsed)
            self._last_request = self._clock()
            self.request_count += 1

    @staticmethod
    def _retry_after(resp: httpx.Response) -> float | None:
        raw = resp.headers.get("retry-after")
        if not raw:
            return None
        try:
            seconds = float(raw)
        except ValueError:
            # HTTP-date form, e.g. "Wed, 21 Oct 2015 07:28:00 GMT".
            try:
                when = parsedate_to_datetime(raw)
            except (TypeError, ValueError):
                return None
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            seconds = (when - datetime.now(timezone.utc)).total_seconds()
        return seconds if seconds > 0 else None

    def _error(self, url: str, resp: httpx.Response, what: str) -> ProviderHttpError:
        snippet = resp.text[:_BODY_SNIPPET_CHARS]
        return ProviderHttpError(
            f"{self.provider} request {what}: {resp.status_code} {resp.reason_phrase}",
            url=url,
            status=resp.status_code,
            status_text=resp.reason_phrase,
            body_snippet=snippet,
        )
