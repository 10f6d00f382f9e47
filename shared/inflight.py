"""
In-flight request registry.

Concurrent callers asking for the same logical operation share a single
task instead of each issuing their own request. An entry lives until its
task settles or its dedup TTL elapses, whichever comes first.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass
class InFlightRequest:
    """A shared task keyed by operation identity."""

    task: "asyncio.Task[Any]"
    started_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.started_at >= self.ttl


class InFlightRegistry:
    """Map of operation key -> shared task, bound to the running event loop."""

    def __init__(self,
                 name: str,
                 default_ttl: float = 30.0,
                 clock: Callable[[], float] = time.monotonic,
                 metrics: Optional[MetricsCollector] = None):
        self.name = name
        self.default_ttl = default_ttl
        self.logger = get_logger(f"inflight.{name}")
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[str, InFlightRequest] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[float] = None) -> Any:
        """Attach to the pending task for key, or start one from factory."""
        entry = self._live_entry(key)
        if entry is not None:
            self.logger.debug("Attaching to in-flight request", key=key)
            if self.metrics:
                self.metrics.record_inflight_join(self.name)
        else:
            entry = self.start(key, factory, ttl)

        # A cancelled waiter must not cancel the task other callers share
        return await asyncio.shield(entry.task)

    def start(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[float] = None) -> InFlightRequest:
        """Start a new shared task for key, superseding any previous entry."""
        task = asyncio.ensure_future(factory())
        entry = InFlightRequest(
            task=task,
            started_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl
        )
        self._entries[key] = entry
        task.add_done_callback(lambda done, k=key, e=entry: self._release(k, e, done))
        return entry

    def get(self, key: str) -> Optional[InFlightRequest]:
        """Get the live entry for key, if any."""
        return self._live_entry(key)

    def _live_entry(self, key: str) -> Optional[InFlightRequest]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.task.done() or entry.expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry

    def _release(self, key: str, entry: InFlightRequest, task: "asyncio.Task[Any]"):
        if self._entries.get(key) is entry:
            del self._entries[key]
        # Failures are delivered to waiters; mark them retrieved for the loop
        if not task.cancelled():
            task.exception()

    def discard(self, key: str) -> bool:
        """Forget the entry for key without cancelling its task."""
        return self._entries.pop(key, None) is not None

    def discard_where(self, predicate: Callable[[str], bool]) -> int:
        """Forget every entry whose key matches predicate."""
        doomed = [key for key in self._entries if predicate(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self):
        """Forget all entries."""
        self._entries.clear()

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
