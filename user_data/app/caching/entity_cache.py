"""
Persisted per-entity cache records.
"""

import time
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, ValidationError

from shared.errors import CacheWriteError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.storage import KeyValueStore

DEFAULT_ENTITY_TTL = 300.0


class EntityKind(str, Enum):
    """Entity kinds and the key prefix each is stored under."""
    PROFILE = "user_profile_"
    REVIEWS = "user_reviews_"
    LISTS = "user_lists_"
    RESTAURANTS = "user_restaurants_"
    RESTAURANTS_CURSOR = "user_restaurants_cursor_"

    def key(self, owner_id: str) -> str:
        return f"{self.value}{owner_id}"

    @property
    def label(self) -> str:
        return self.name.lower()


class CachedEntityRecord(BaseModel):
    """Stored as JSON ``{"data": ..., "timestamp": ..., "ttl": ...}`` (seconds)."""

    data: Any
    timestamp: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl


class EntityCache:
    """TTL records over a key-value store; stale records remain readable."""

    def __init__(self,
                 store: KeyValueStore,
                 *,
                 default_ttl: float = DEFAULT_ENTITY_TTL,
                 clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("user_data.entity_cache")
        self._clock = clock

    def is_fresh(self, record: CachedEntityRecord) -> bool:
        return record.is_fresh(self._clock())

    async def read(self, kind: EntityKind, owner_id: str) -> Optional[CachedEntityRecord]:
        """Read a record; unreadable or corrupt entries count as a miss."""
        key = kind.key(owner_id)
        try:
            raw = await self.store.get(key)
        except Exception as e:
            self.logger.warning("Error reading cached data", key=key, error=str(e))
            self._count(kind, "miss")
            return None

        if raw is None:
            self._count(kind, "miss")
            return None

        try:
            record = CachedEntityRecord.model_validate_json(raw)
        except ValidationError as e:
            self.logger.warning("Discarding corrupt cache entry", key=key, error=str(e))
            self._count(kind, "corrupt")
            await self._remove_quietly(key)
            return None

        self._count(kind, "fresh" if self.is_fresh(record) else "stale")
        return record

    async def write(self, kind: EntityKind, owner_id: str, data: Any, ttl: Optional[float] = None) -> bool:
        """Persist a fresh record. Failures are logged and reported as False."""
        key = kind.key(owner_id)
        record = CachedEntityRecord(
            data=data,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl
        )
        try:
            await self.store.set(key, record.model_dump_json())
        except Exception as e:
            error = CacheWriteError(details={"key": key, "error": str(e)})
            self.logger.warning(error.message, key=key, error=str(e))
            if self.metrics:
                self.metrics.record_cache_write_failure(kind.label)
            return False
        return True

    async def invalidate(self, owner_id: str, kinds: Optional[Iterable[EntityKind]] = None) -> None:
        """Remove an owner's records, all kinds unless narrowed."""
        for kind in (kinds if kinds is not None else EntityKind):
            await self._remove_quietly(kind.key(owner_id))

    async def _remove_quietly(self, key: str) -> None:
        try:
            await self.store.remove(key)
        except Exception as e:
            self.logger.warning("Error invalidating cache", key=key, error=str(e))

    def _count(self, kind: EntityKind, result: str):
        if self.metrics:
            self.metrics.record_cache_lookup(kind.label, result)
