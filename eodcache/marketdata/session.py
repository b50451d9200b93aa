"""Cookie + crumb session for Yahoo, with a provider-wide 401 cooldown.

A 401 from Yahoo almost always means IP-level bulk blocking. Retrying makes
it worse, so a 401 opens a multi-hour circuit during which no request at all
is attempted against the provider.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from eodcache.http import ProviderHttpError, ResilientHttpClient
from eodcache.singleflight import SingleFlight

logger = logging.getLogger(__name__)

YAHOO_COOKIE_URL = "https://fc.yahoo.com"
YAHOO_CRUMB_URL = "https://query1.finance.yahoo.com/v1/test/getcrumb"


@dataclass
class ProviderSession:
    cookie: str
    crumb: str
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at


class ProviderSessionManager:
    """Owns the cached session and the ``blocked_until`` circuit for one provider."""

    def __init__(
        self,
        http: ResilientHttpClient,
        *,
        ttl_seconds: float = 1800,
        cooldown_seconds: float = 6 * 60 * 60,
        cookie_url: str = YAHOO_COOKIE_URL,
        crumb_url: str = YAHOO_CRUMB_URL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._ttl = float(ttl_seconds)
        self._cooldown = float(cooldown_seconds)
        self._cookie_url = cookie_url
        self._crumb_url = crumb_url
        self._clock = clock
        self._session: ProviderSession | None = None
        self._handshake: SingleFlight[ProviderSession | None] = SingleFlight()
        self.blocked_until = 0.0

    @property
    def provider(self) -> str:
        return self._http.provider

    def is_blocked(self) -> bool:
        return self._clock() < self.blocked_until

    def block(self, reason: str = "401") -> None:
        self.blocked_until = self._clock() + self._cooldown
        self._session = None
        logger.warning(
            "[session:%s] provider blocked (%s), cooling down for %.0fs",
            self.provider, reason, self._cooldown,
        )

    @property
    def session(self) -> ProviderSession | None:
        return self._session

    def invalidate(self) -> None:
        self._session = None

    def state(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "provider": self.provider,
            "blocked": self.is_blocked(),
            "blocked_until": self.blocked_until or None,
            "has_session": self._session is not None,
            "session_age_seconds": round(self._session.age(now), 1) if self._session else None,
        }

    async def get_session(self) -> ProviderSession | None:
        """Return a live session, or ``None`` when the provider cannot be used now."""
        if self.is_blocked():
            logger.debug("[session:%s] blocked until %.0f, skipping", self.provider, self.blocked_until)
            return None
        if self._session is not None and self._session.age(self._clock()) < self._ttl:
            return self._session
        self._session = None
        return await self._handshake.do("session", self._open_session)

    async def _open_session(self) -> ProviderSession | None:
        # Step 1: the cookie endpoint often answers 404 but still sets the cookie.
        try:
            await self._http.get_response(self._cookie_url)
        except ProviderHttpError as exc:
            if exc.status == 401:
                self.block("401 on cookie handshake")
                return None
            if exc.is_transport:
                logger.warning("[session:%s] cookie handshake failed: %s", self.provider, exc)
                return None

        cookie = "; ".join(f"{c.name}={c.value}" for c in self._http.cookies.jar)
        if not cookie:
            logger.warning("[session:%s] handshake returned no cookie", self.provider)
            return None

        # Step 2: exchange the cookie for a crumb.
        try:
            body = await self._http.get(self._crumb_url, headers={"Cookie": cookie})
        except ProviderHttpError as exc:
            if exc.status == 401:
                self.block("401 on crumb handshake")
            else:
                logger.warning("[session:%s] crumb request failed: %s", self.provider, exc)
            return None
        except ValueError:
            logger.warning("[session:%s] crumb response was not decodable", self.provider)
            return None

        crumb = body.strip() if isinstance(body, str) else ""
        if not crumb or "<" in crumb or len(crumb) > 64:
            logger.warning("[session:%s] unusable crumb response", self.provider)
            return None

        self._session = ProviderSession(cookie=cookie, crumb=crumb, fetched_at=self._clock())
        logger.info("[session:%s] new session established", self.provider)
        return self._session
