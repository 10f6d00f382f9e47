"""
Session credential resolution for the request gateway.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import Callable, Optional, Protocol, runtime_checkable

import httpx

from shared.errors import AccessLayerException, AuthUnavailable
from shared.inflight import InFlightRegistry
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.session_client import SessionClient
from .session_cache import SessionTokenCache

SESSION_FETCH_KEY = "fetch-session"


@runtime_checkable
class FallbackCredentialSource(Protocol):
    """Secondary credential consulted when the session endpoint fails."""

    def read(self) -> Optional[str]:
        ...


class StaticCredentialSource:
    """Fallback that always offers the same token."""

    def __init__(self, token: Optional[str]):
        self.token = token

    def read(self) -> Optional[str]:
        return self.token


class EnvCredentialSource:
    """Fallback that reads a token from an environment variable."""

    def __init__(self, variable: str = "FOODLIST_ACCESS_TOKEN"):
        self.variable = variable

    def read(self) -> Optional[str]:
        return os.environ.get(self.variable) or None


class CookieCredentialSource:
    """Fallback that reads the access token cookie from an httpx cookie jar."""

    def __init__(self, cookies: httpx.Cookies, name: str = "sb-access-token"):
        self.cookies = cookies
        self.name = name

    def read(self) -> Optional[str]:
        return self.cookies.get(self.name) or None


class ChainedCredentialSource:
    """Fallback that returns the first token offered by its sources."""

    def __init__(self, *sources: FallbackCredentialSource):
        self.sources = sources

    def read(self) -> Optional[str]:
        for source in self.sources:
            token = source.read()
            if token:
                return token
        return None


class CredentialProvider:
    """Resolves the bearer token attached to every outbound call.

    Resolution order: a cached token that is still usable, the pending
    session fetch if one is running, and finally a new session fetch. At
    most one session fetch is outstanding at a time; callers arriving while
    a superseded fetch is still finishing back off and retry instead of
    starting another.
    """

    def __init__(self,
                 session_client: SessionClient,
                 *,
                 safety_margin: float = 60.0,
                 default_lifetime: float = 3600.0,
                 backoff: float = 0.1,
                 backoff_attempts: int = 50,
                 inflight_ttl: float = 30.0,
                 fallback: Optional[FallbackCredentialSource] = None,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.session_client = session_client
        self.safety_margin = safety_margin
        self.default_lifetime = default_lifetime
        self.backoff = backoff
        self.backoff_attempts = backoff_attempts
        self.fallback = fallback
        self.metrics = metrics
        self.logger = get_logger("gateway.credentials")
        self._clock = clock

        self._cache: Optional[SessionTokenCache] = None
        self._inflight = InFlightRegistry("session", default_ttl=inflight_ttl, clock=clock, metrics=metrics)
        self._finalizing = False
        self._generation = 0

    @property
    def cached(self) -> Optional[SessionTokenCache]:
        return self._cache

    @property
    def fetch_in_flight(self) -> bool:
        return SESSION_FETCH_KEY in self._inflight

    def peek(self) -> Optional[str]:
        """Return the cached token if it is usable, without any I/O."""
        if self._cache is not None and self._cache.is_usable(self._clock(), self.safety_margin):
            return self._cache.token
        return None

    async def get_credential(self) -> str:
        """Resolve a bearer token, fetching a session when needed."""
        attempts = 0
        while True:
            token = self.peek()
            if token is not None:
                return token
            if self.fetch_in_flight or not self._finalizing or attempts >= self.backoff_attempts:
                break
            attempts += 1
            await asyncio.sleep(self.backoff)

        try:
            return await self._inflight.run(SESSION_FETCH_KEY, self._acquire)
        except AccessLayerException as e:
            return self._use_fallback(e)

    async def _acquire(self) -> str:
        generation = self._generation
        self._finalizing = True
        try:
            grant = await self.session_client.fetch_session()
        except AccessLayerException as e:
            if self.metrics:
                self.metrics.record_session_fetch(False)
            self.logger.warning("Could not get session from API", error=e.message, code=e.code)
            raise
        finally:
            self._finalizing = False

        if self.metrics:
            self.metrics.record_session_fetch(True)

        if generation != self._generation:
            # Invalidated while the fetch was running; hand the token to the
            # waiting callers but do not resurrect the cleared cache.
            self.logger.info("Discarding session fetched before invalidation")
            return grant.access_token

        self._cache = SessionTokenCache.from_grant(
            grant.access_token,
            grant.expires_in or self.default_lifetime,
            now=self._clock(),
            safety_margin=self.safety_margin
        )
        self.logger.debug("Session token cached", expires_at=self._cache.expires_at)
        return grant.access_token

    def _use_fallback(self, cause: AccessLayerException) -> str:
        if self.fallback is not None:
            token = self.fallback.read()
            if token:
                self.logger.info("Using fallback credential", source=type(self.fallback).__name__)
                return token

        raise AuthUnavailable(
            "No authentication token found",
            details={"cause": cause.code}
        ) from cause

    def invalidate(self):
        """Drop the cached token and forget any pending session fetch."""
        self._cache = None
        self._inflight.clear()
        self._generation += 1
