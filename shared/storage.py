"""
Pluggable key-value persistence for cached client state.

Writes through these stores are best-effort: callers treat every failure
as a cache miss or a skipped write, never as a fault in the data flow.
"""

from typing import Dict, List, Optional, Protocol, runtime_checkable

import redis.asyncio as redis

from shared.config import ClientConfig
from shared.logging import get_logger


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal async key-value capability."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...

    async def keys(self, prefix: str = "") -> List[str]:
        ...


class MemoryStore:
    """Process-local store; the default for tests and short-lived clients."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class RedisStore:
    """Redis-backed store confined to a key namespace."""

    def __init__(self, redis_url: str, namespace: str = "foodlist:"):
        self.redis_url = redis_url
        self.namespace = namespace
        self.logger = get_logger("storage.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        return await client.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        client = await self._get_redis()
        await client.set(self._key(key), value)

    async def remove(self, key: str) -> None:
        client = await self._get_redis()
        await client.delete(self._key(key))

    async def clear(self) -> None:
        client = await self._get_redis()
        keys = [key async for key in client.scan_iter(match=f"{self.namespace}*")]
        if keys:
            await client.delete(*keys)
        self.logger.info("Cleared namespaced keys", namespace=self.namespace, count=len(keys))

    async def keys(self, prefix: str = "") -> List[str]:
        client = await self._get_redis()
        offset = len(self.namespace)
        return [key[offset:] async for key in client.scan_iter(match=f"{self.namespace}{prefix}*")]

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_store(config: ClientConfig) -> KeyValueStore:
    """Build the store selected by configuration."""
    if config.cache_backend == "redis":
        return RedisStore(config.redis_url, namespace=config.cache_namespace)
    return MemoryStore()
