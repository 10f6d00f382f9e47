"""
User data caching package.

Persists one TTL record per entity kind and owner in a pluggable
key-value store. Records stay readable after they go stale; writes are
best-effort and never fail the caller.
"""

from .entity_cache import CachedEntityRecord, EntityCache, EntityKind

__all__ = [
    "CachedEntityRecord",
    "EntityCache",
    "EntityKind",
]
