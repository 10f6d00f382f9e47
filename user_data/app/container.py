"""
Wiring for the process-wide gateway and user data cache.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from shared.config import ClientConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.storage import KeyValueStore, RedisStore, create_store

from gateway_client.app.auth.credentials import (
    ChainedCredentialSource,
    CookieCredentialSource,
    EnvCredentialSource,
    FallbackCredentialSource,
)
from gateway_client.app.events import AuthEventSink
from gateway_client.app.gateway import RequestGateway

from .caching.entity_cache import EntityCache
from .domain.state import UserAggregate
from .service import UserDataCache

logger = get_logger("user_data.container")


@dataclass
class AccessClient:
    """Single shared instance of every access-layer component."""

    config: ClientConfig
    store: KeyValueStore
    http_client: httpx.AsyncClient
    metrics: MetricsCollector
    gateway: RequestGateway
    entity_cache: EntityCache
    user_data: UserDataCache

    async def __aenter__(self) -> "AccessClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def logout(self) -> None:
        """Explicit sign-out: same local teardown as a rejected session."""
        await self.gateway.teardown()

    async def aclose(self) -> None:
        await self.http_client.aclose()
        if isinstance(self.store, RedisStore):
            await self.store.close()


def create_access_client(config: Optional[ClientConfig] = None,
                         *,
                         transport: Optional[httpx.AsyncBaseTransport] = None,
                         store: Optional[KeyValueStore] = None,
                         events: Optional[AuthEventSink] = None,
                         fallback: Optional[FallbackCredentialSource] = None,
                         clock: Callable[[], float] = time.time,
                         on_change: Optional[Callable[[UserAggregate], None]] = None,
                         configure_logs: bool = False) -> AccessClient:
    """Build one gateway and one user data cache sharing a store and HTTP client."""
    config = config or get_config()
    if configure_logs:
        configure_logging("foodlist-access", config.log_level, json_logs=config.env != "local")

    store = store if store is not None else create_store(config)
    metrics = get_metrics_collector("foodlist-access")
    http_client = httpx.AsyncClient(
        base_url=config.api_base_url,
        transport=transport,
        timeout=config.request_timeout
    )

    if fallback is None:
        fallback = ChainedCredentialSource(
            CookieCredentialSource(http_client.cookies),
            EnvCredentialSource(config.fallback_token_env)
        )

    gateway = RequestGateway(
        config,
        http_client=http_client,
        store=store,
        events=events,
        fallback=fallback,
        metrics=metrics,
        clock=clock
    )
    entity_cache = EntityCache(store, default_ttl=config.cache_ttl, clock=clock, metrics=metrics)
    user_data = UserDataCache(gateway, entity_cache, config, on_change=on_change)

    logger.info(
        "Access client created",
        api_base_url=config.api_base_url,
        cache_backend=config.cache_backend,
        env=config.env
    )
    return AccessClient(
        config=config,
        store=store,
        http_client=http_client,
        metrics=metrics,
        gateway=gateway,
        entity_cache=entity_cache,
        user_data=user_data
    )
