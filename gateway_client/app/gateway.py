"""
Authenticated request gateway.

Every outbound call made by the client goes through ``RequestGateway``:
it resolves a session credential, attaches it, enforces the request
timeout and reacts uniformly to a 401 by tearing down all local state.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.config import ClientConfig
from shared.errors import NetworkError, RequestTimeout, Unauthorized
from shared.logging import get_logger, set_request_id
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_async
from shared.storage import KeyValueStore

from .adapters.session_client import SessionClient
from .auth.credentials import CredentialProvider, FallbackCredentialSource
from .events import AuthEventSink, LoggingEventSink

SESSION_EXPIRED_MESSAGE = "Session expired. Please sign in again."


class RequestGateway:
    """Process-wide entry point for authenticated backend calls."""

    def __init__(self,
                 config: ClientConfig,
                 *,
                 http_client: Optional[httpx.AsyncClient] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 credentials: Optional[CredentialProvider] = None,
                 store: Optional[KeyValueStore] = None,
                 events: Optional[AuthEventSink] = None,
                 fallback: Optional[FallbackCredentialSource] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.logger = get_logger("gateway.dispatch")
        self.metrics = metrics or MetricsCollector("gateway")
        self.store = store
        self.events = events or LoggingEventSink()

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.api_base_url,
            transport=transport,
            timeout=config.request_timeout
        )

        self.session_client = SessionClient(
            self.http_client,
            session_endpoint=config.session_endpoint,
            timeout=config.request_timeout
        )
        self.credentials = credentials or CredentialProvider(
            self.session_client,
            safety_margin=config.session_safety_margin,
            default_lifetime=config.session_default_lifetime,
            backoff=config.session_backoff,
            backoff_attempts=config.session_backoff_attempts,
            inflight_ttl=config.inflight_ttl,
            fallback=fallback,
            clock=clock,
            metrics=self.metrics
        )

        # Only transport failures trip the breaker; any HTTP status counts as reachable
        self.circuit_breaker = CircuitBreaker(
            "backend",
            failure_threshold=config.circuit_failure_threshold,
            recovery_timeout=config.circuit_recovery_timeout,
            trips_on=(NetworkError, RequestTimeout),
            metrics=self.metrics
        )
        self.retry_config = RetryConfig.for_timeouts(config.timeout_retries)

        self._teardown_hooks: List[Callable[[], None]] = []
        self._signed_out = False
        self._teardown_epoch = 0

    async def __aenter__(self) -> "RequestGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if the gateway created it."""
        if self._owns_client:
            await self.http_client.aclose()

    def add_teardown_hook(self, hook: Callable[[], None]) -> None:
        """Register a callback that clears state owned by another component."""
        self._teardown_hooks.append(hook)

    async def dispatch(self,
                       endpoint: str,
                       method: str = "GET",
                       *,
                       json: Any = None,
                       params: Optional[Dict[str, Any]] = None,
                       headers: Optional[Dict[str, str]] = None,
                       timeout: Optional[float] = None,
                       authenticated: bool = True) -> httpx.Response:
        """Issue a request and return the raw response.

        Non-2xx statuses other than 401 are returned unmodified. A 401 tears
        down local state, emits the sign-out intents and raises
        ``Unauthorized``. Transport failures raise ``NetworkError`` or
        ``RequestTimeout`` and leave the session untouched.
        """
        method = method.upper()
        timeout = self.config.request_timeout if timeout is None else timeout
        request_id = set_request_id()
        epoch = self._teardown_epoch

        request_headers = dict(headers or {})
        request_headers["Content-Type"] = "application/json"
        request_headers["X-Request-ID"] = request_id
        if authenticated:
            token = await self.credentials.get_credential()
            request_headers["Authorization"] = f"Bearer {token}"

        async def _attempt() -> httpx.Response:
            return await self.circuit_breaker.call(
                self._send, method, endpoint, request_headers, json, params, timeout
            )

        if self.retry_config.enabled:
            response = await retry_async(
                _attempt, retry_on=(RequestTimeout,), config=self.retry_config, label=f"{method} {endpoint}"
            )
        else:
            response = await _attempt()

        if response.status_code == 401 and authenticated:
            await self._handle_unauthorized(method, endpoint)
            raise Unauthorized(details={"endpoint": endpoint, "method": method})

        # Only a request issued after the latest teardown proves a new session
        if authenticated and epoch == self._teardown_epoch:
            self._signed_out = False
        return response

    async def _send(self,
                    method: str,
                    endpoint: str,
                    headers: Dict[str, str],
                    json: Any,
                    params: Optional[Dict[str, Any]],
                    timeout: float) -> httpx.Response:
        start_time = time.perf_counter()
        try:
            # wait_for cancels the in-flight request when the timeout fires
            response = await asyncio.wait_for(
                self.http_client.request(
                    method, endpoint, headers=headers, json=json, params=params, timeout=timeout
                ),
                timeout=timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self.metrics.record_error("REQUEST_TIMEOUT")
            self.logger.warning("Request timeout", method=method, endpoint=endpoint, timeout=timeout)
            raise RequestTimeout(
                f"Request timeout after {timeout}s",
                details={"method": method, "endpoint": endpoint}
            ) from e
        except httpx.RequestError as e:
            self.metrics.record_error("NETWORK_ERROR")
            self.logger.error("Request failed", method=method, endpoint=endpoint, error=str(e))
            raise NetworkError(
                "Network error or server unavailable",
                details={"method": method, "endpoint": endpoint, "error": str(e)}
            ) from e

        duration = time.perf_counter() - start_time
        self.metrics.record_request(method, endpoint, response.status_code, duration)
        self.logger.debug(
            "Request completed",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration=duration
        )
        return response

    async def _handle_unauthorized(self, method: str, endpoint: str) -> None:
        first_rejection = not self._signed_out
        self._signed_out = True
        self.metrics.record_error("UNAUTHORIZED")

        await self.clear_local_state()

        if first_rejection:
            self.logger.warning("Session rejected by backend; signing out", method=method, endpoint=endpoint)
            self.events.notify(SESSION_EXPIRED_MESSAGE, "error")
            self.events.redirect(self.config.sign_in_path)

    async def clear_local_state(self) -> None:
        """Clear credentials, registered component state and persisted entries."""
        self._teardown_epoch += 1
        self.credentials.invalidate()
        self.http_client.cookies.clear()

        for hook in list(self._teardown_hooks):
            try:
                hook()
            except Exception as e:
                self.logger.error("Teardown hook failed", hook=getattr(hook, "__qualname__", repr(hook)), error=str(e))

        if self.store is not None:
            try:
                await self.store.clear()
            except Exception as e:
                self.metrics.record_error("CACHE_WRITE_ERROR")
                self.logger.warning("Could not clear persisted state", error=str(e))

    async def teardown(self) -> None:
        """Explicit logout: clear everything without user-facing intents."""
        self.logger.info("Tearing down gateway state")
        await self.clear_local_state()

    async def get(self, endpoint: str, **kwargs) -> httpx.Response:
        return await self.dispatch(endpoint, "GET", **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs) -> httpx.Response:
        return await self.dispatch(endpoint, "POST", json=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs) -> httpx.Response:
        return await self.dispatch(endpoint, "PUT", json=body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs) -> httpx.Response:
        return await self.dispatch(endpoint, "PATCH", json=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> httpx.Response:
        return await self.dispatch(endpoint, "DELETE", **kwargs)
