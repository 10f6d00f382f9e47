"""
Aggregate user data cache.

``UserDataCache`` keeps an always-renderable ``UserAggregate`` for the
profile owner currently being viewed. Loads are debounced, fetches are
deduplicated through an in-flight registry, persisted records are shown
first and revalidated in the background, and restaurants page forward
with a server-provided cursor.

Every fetch captures the owner and a generation number when it starts.
Results are applied only if both still match when they arrive, so a
switch of owner, a refresh or a sign-out abandons older fetches without
cancelling them.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from shared.config import ClientConfig
from shared.errors import AccessLayerException, NotFound, ParseError, parse_json, raise_for_status
from shared.inflight import InFlightRegistry
from shared.logging import clear_context, get_logger, set_owner_context

from gateway_client.app.gateway import RequestGateway

from .caching.entity_cache import CachedEntityRecord, EntityCache, EntityKind
from .domain.models import PageResponse, entity_id, unique_by_id
from .domain.state import FIELDS, FieldState, UserAggregate

FIELD_KINDS = {
    "profile": EntityKind.PROFILE,
    "reviews": EntityKind.REVIEWS,
    "lists": EntityKind.LISTS,
    "restaurants": EntityKind.RESTAURANTS,
}


@dataclass
class _PendingLoad:
    """Debounced load waiting for its quiet window to elapse."""

    future: "asyncio.Future[None]"
    timer: Optional[asyncio.TimerHandle] = None


class UserDataCache:
    """Stale-while-revalidate cache of one owner's aggregate data."""

    def __init__(self,
                 gateway: RequestGateway,
                 entity_cache: EntityCache,
                 config: ClientConfig,
                 *,
                 inflight: Optional[InFlightRegistry] = None,
                 on_change: Optional[Callable[[UserAggregate], None]] = None):
        self.gateway = gateway
        self.entity_cache = entity_cache
        self.config = config
        self.logger = get_logger("user_data.cache")
        self.on_change = on_change

        self._inflight = inflight or InFlightRegistry(
            "entities",
            default_ttl=config.inflight_ttl,
            metrics=gateway.metrics
        )
        self._state = UserAggregate()
        self._generation = 0
        self._pending: Dict[str, _PendingLoad] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._restaurants_lock = asyncio.Lock()

        gateway.add_teardown_hook(self.reset)

    @property
    def state(self) -> UserAggregate:
        """Read-only snapshot of the aggregate."""
        return self._state.snapshot()

    @property
    def inflight(self) -> InFlightRegistry:
        return self._inflight

    def enabled_fields(self) -> List[str]:
        flags = {
            "reviews": self.config.enable_reviews,
            "lists": self.config.enable_lists,
            "restaurants": self.config.enable_restaurants,
        }
        return ["profile"] + [name for name in FIELDS[1:] if flags[name]]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def load(self, owner_id: str) -> None:
        """Load an owner's aggregate; calls within the debounce window collapse."""
        if not owner_id:
            return

        loop = asyncio.get_running_loop()
        pending = self._pending.get(owner_id)
        if pending is None:
            pending = _PendingLoad(future=loop.create_future())
            self._pending[owner_id] = pending
        elif pending.timer is not None:
            pending.timer.cancel()

        pending.timer = loop.call_later(self.config.debounce_window, self._fire_load, owner_id, pending)
        await asyncio.shield(pending.future)

    async def refresh(self, owner_id: str) -> None:
        """Invalidate everything cached for an owner and load from the network."""
        if not owner_id:
            return

        self.logger.info("Refreshing user data", owner_id=owner_id)
        await self.clear_cache(owner_id)

        if self._state.owner_id == owner_id:
            # Abandon pre-refresh fetches and restart pagination
            self._generation += 1
            self._state.cursor = None
            self._state.has_more_restaurants = True
            for name in FIELDS:
                if self._state.field_states[name] == FieldState.FRESH:
                    self._state.field_states[name] = FieldState.STALE
            self._notify()

        await self.load(owner_id)

    async def load_more_restaurants(self, owner_id: str) -> None:
        """Fetch the next restaurants page and append unseen entries."""
        state = self._state
        if not owner_id or state.owner_id != owner_id:
            self.logger.debug("Ignoring load more for inactive owner", owner_id=owner_id)
            return
        if not state.has_more_restaurants:
            return
        if self._restaurants_lock.locked() or state.loading_per_field["restaurants"]:
            return

        async with self._restaurants_lock:
            generation = self._generation
            cursor = state.cursor
            if cursor:
                params = {"cursor": cursor, "limit": self.config.page_limit}
            else:
                params = {"page": 1, "limit": self.config.page_limit}

            self._begin(["restaurants"])
            try:
                page = await self._inflight.run(
                    self._entity_key("restaurants", owner_id, cursor or "first"),
                    lambda: self._request_page(owner_id, "restaurants", params)
                )
            except AccessLayerException as e:
                self._apply_failure(owner_id, generation, "restaurants", e)
                raise

            if self._abandoned(owner_id, generation):
                return

            seen = {entity_id(item) for item in self._state.restaurants}
            self._state.restaurants = self._state.restaurants + unique_by_id(page.data, seen)
            self._apply_cursor(page.next_cursor)
            self._finish("restaurants")
            await self._persist(owner_id, "restaurants")

    async def load_all_restaurants(self, owner_id: str) -> List[Dict[str, Any]]:
        """Follow cursors until the collection ends or the page bound is hit."""
        if not owner_id:
            return []
        self._ensure_owner(owner_id)
        return await self._inflight.run(
            self._bulk_key(owner_id),
            lambda: self._load_all_restaurants(owner_id),
            ttl=self.config.bulk_inflight_ttl
        )

    async def refresh_profile(self, owner_id: str) -> None:
        await self._refresh_field(owner_id, "profile")

    async def refresh_reviews(self, owner_id: str) -> None:
        await self._refresh_field(owner_id, "reviews")

    async def refresh_lists(self, owner_id: str) -> None:
        await self._refresh_field(owner_id, "lists")

    async def refresh_restaurants(self, owner_id: str) -> None:
        await self._refresh_field(owner_id, "restaurants")

    async def clear_cache(self, owner_id: str) -> None:
        """Drop persisted records and pending fetches for an owner, without refetching."""
        if not owner_id:
            return
        await self.entity_cache.invalidate(owner_id)
        dropped = self._inflight.discard_where(self._owned_by(owner_id))
        self.logger.debug("Cleared cached user data", owner_id=owner_id, inflight_dropped=dropped)

    async def has_cached_data(self, owner_id: str) -> bool:
        return await self.entity_cache.read(EntityKind.PROFILE, owner_id) is not None

    def reset(self) -> None:
        """Forget all in-memory state; registered as a gateway teardown hook."""
        self._generation += 1
        self._inflight.clear()
        for pending in self._pending.values():
            if pending.timer is not None:
                pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_result(None)
        self._pending.clear()
        self._state = UserAggregate()
        clear_context()
        self._notify()

    # ------------------------------------------------------------------
    # Load pipeline
    # ------------------------------------------------------------------

    def _fire_load(self, owner_id: str, pending: _PendingLoad) -> None:
        if self._pending.get(owner_id) is pending:
            del self._pending[owner_id]
        pending.timer = None

        task = asyncio.ensure_future(self._load_now(owner_id))
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._settle_load(done, pending.future))

    def _settle_load(self, task: "asyncio.Task[None]", future: "asyncio.Future[None]") -> None:
        self._tasks.discard(task)
        if future.done():
            return
        if task.cancelled():
            future.cancel()
        elif task.exception() is not None:
            future.set_exception(task.exception())
        else:
            future.set_result(None)

    async def _load_now(self, owner_id: str) -> None:
        set_owner_context(owner_id)
        self._ensure_owner(owner_id)
        generation = self._generation
        fields = self.enabled_fields()

        cached: Dict[str, Optional[CachedEntityRecord]] = {}
        for name in fields:
            cached[name] = await self.entity_cache.read(FIELD_KINDS[name], owner_id)
        cursor_record = None
        if "restaurants" in fields:
            cursor_record = await self.entity_cache.read(EntityKind.RESTAURANTS_CURSOR, owner_id)

        if self._abandoned(owner_id, generation):
            return

        to_fetch = []
        for name in fields:
            record = cached[name]
            fresh = record is not None and self.entity_cache.is_fresh(record)
            if record is not None:
                self._apply_cached(name, record, fresh)
            if name == "restaurants" and record is not None:
                if cursor_record is None:
                    fresh = False
                else:
                    self._apply_cursor_record(cursor_record)
            if not fresh:
                to_fetch.append(name)

        if not to_fetch:
            self.logger.debug("Serving user data from fresh cache", owner_id=owner_id)
            self._notify()
            return

        self._state.error = None
        self._begin(to_fetch)
        await asyncio.gather(*(self._revalidate(owner_id, generation, name) for name in to_fetch))

    async def _revalidate(self, owner_id: str, generation: int, name: str) -> None:
        try:
            await self._fetch_and_apply(owner_id, generation, name)
        except AccessLayerException:
            # Recorded on the field by _fetch_and_apply; load never fails as a whole
            pass

    async def _refresh_field(self, owner_id: str, name: str) -> None:
        if not owner_id:
            return
        if name != "profile" and name not in self.enabled_fields():
            return

        self._ensure_owner(owner_id)
        kinds = [FIELD_KINDS[name]]
        if name == "restaurants":
            kinds.append(EntityKind.RESTAURANTS_CURSOR)
        await self.entity_cache.invalidate(owner_id, kinds)
        self._inflight.discard(self._entity_key(name, owner_id))

        generation = self._generation
        self._begin([name])
        await self._fetch_and_apply(owner_id, generation, name)

    async def _fetch_and_apply(self, owner_id: str, generation: int, name: str) -> None:
        """Fetch one sub-resource, then record success or failure on its field."""
        if name == "restaurants":
            async with self._restaurants_lock:
                await self._fetch_and_apply_unlocked(owner_id, generation, name)
        else:
            await self._fetch_and_apply_unlocked(owner_id, generation, name)

    async def _fetch_and_apply_unlocked(self, owner_id: str, generation: int, name: str) -> None:
        try:
            value = await self._inflight.run(self._entity_key(name, owner_id), self._fetcher(owner_id, name))
        except AccessLayerException as e:
            self._apply_failure(owner_id, generation, name, e)
            raise

        if self._abandoned(owner_id, generation):
            self.logger.debug("Discarding result for abandoned load", owner_id=owner_id, field=name)
            return

        state = self._state
        if name == "profile":
            state.profile = value
            state.not_found = False
            state.error = None
        elif name == "restaurants":
            state.restaurants = unique_by_id(value.data)
            self._apply_cursor(value.next_cursor)
        else:
            setattr(state, name, value)

        self._finish(name)
        await self._persist(owner_id, name)

    async def _load_all_restaurants(self, owner_id: str) -> List[Dict[str, Any]]:
        async with self._restaurants_lock:
            generation = self._generation
            before = list(self._state.restaurants)
            collected: List[Dict[str, Any]] = []
            seen: Set[str] = set()
            cursor: Optional[str] = None

            self._begin(["restaurants"])
            try:
                for _ in range(self.config.bulk_max_pages):
                    if cursor:
                        params = {"cursor": cursor, "limit": self.config.bulk_page_limit}
                    else:
                        params = {"page": 1, "limit": self.config.bulk_page_limit}
                    page = await self._request_page(owner_id, "restaurants", params)
                    collected.extend(unique_by_id(page.data, seen))
                    cursor = page.next_cursor

                    if self._abandoned(owner_id, generation):
                        return list(collected)

                    # Progress keeps previously rendered entries until the final swap
                    self._state.restaurants = collected + [
                        item for item in before if entity_id(item) not in seen
                    ]
                    self._notify()

                    if cursor is None:
                        break
            except AccessLayerException as e:
                self._apply_failure(owner_id, generation, "restaurants", e)
                raise

            if not self._abandoned(owner_id, generation):
                self._state.restaurants = list(collected)
                self._apply_cursor(cursor)
                self._finish("restaurants")
                await self._persist(owner_id, "restaurants")

            return list(collected)

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def _fetcher(self, owner_id: str, name: str) -> Callable[[], Awaitable[Any]]:
        if name == "profile":
            return lambda: self._request_profile(owner_id)
        params = {"page": 1, "limit": self.config.page_limit}
        if name == "restaurants":
            return lambda: self._request_page(owner_id, name, params)
        return lambda: self._request_items(owner_id, name, params)

    async def _request_profile(self, owner_id: str) -> Dict[str, Any]:
        response = await self.gateway.get(f"{self.config.users_endpoint}/{owner_id}")
        raise_for_status(response, "profile")
        body = parse_json(response, "profile")
        if not isinstance(body, dict):
            raise ParseError("Unexpected profile payload", details={"owner_id": owner_id})
        return body

    async def _request_page(self, owner_id: str, name: str, params: Dict[str, Any]) -> PageResponse:
        response = await self.gateway.get(f"{self.config.users_endpoint}/{owner_id}/{name}", params=params)
        raise_for_status(response, name)
        body = parse_json(response, name)
        if not isinstance(body, dict):
            raise ParseError(f"Unexpected {name} payload", details={"owner_id": owner_id})
        try:
            return PageResponse.model_validate(body)
        except ValidationError as e:
            raise ParseError(f"Unexpected {name} payload", details={"owner_id": owner_id, "error": str(e)}) from e

    async def _request_items(self, owner_id: str, name: str, params: Dict[str, Any]) -> List[Any]:
        page = await self._request_page(owner_id, name, params)
        return page.data

    @staticmethod
    def _entity_key(name: str, owner_id: str, *extra: str) -> str:
        return ":".join(["fetch-entity", name, owner_id, *extra])

    @staticmethod
    def _bulk_key(owner_id: str) -> str:
        return f"fetch-all-restaurants:{owner_id}"

    def _owned_by(self, owner_id: str) -> Callable[[str], bool]:
        """Match the in-flight keys of one owner, including per-cursor page keys."""
        exact = {self._entity_key(name, owner_id) for name in FIELD_KINDS}
        exact.add(self._bulk_key(owner_id))
        page_prefix = self._entity_key("restaurants", owner_id) + ":"
        return lambda key: key in exact or key.startswith(page_prefix)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _ensure_owner(self, owner_id: str) -> None:
        if self._state.owner_id == owner_id:
            return
        if self._state.owner_id is not None:
            self.logger.info("Switching profile owner", previous=self._state.owner_id, owner_id=owner_id)
        self._generation += 1
        self._state = UserAggregate(owner_id=owner_id)
        self._notify()

    def _abandoned(self, owner_id: str, generation: int) -> bool:
        return self._state.owner_id != owner_id or self._generation != generation

    def _apply_cached(self, name: str, record: CachedEntityRecord, fresh: bool) -> None:
        state = self._state
        if name == "restaurants":
            state.restaurants = unique_by_id(record.data or [])
        elif name == "profile":
            state.profile = record.data
        else:
            setattr(state, name, list(record.data or []))
        state.field_states[name] = FieldState.FRESH if fresh else FieldState.STALE

    def _apply_cursor_record(self, record: CachedEntityRecord) -> None:
        data = record.data if isinstance(record.data, dict) else {}
        self._state.cursor = data.get("cursor")
        self._state.has_more_restaurants = bool(data.get("hasMore", self._state.cursor is not None))

    def _apply_cursor(self, next_cursor: Optional[str]) -> None:
        self._state.cursor = next_cursor
        self._state.has_more_restaurants = next_cursor is not None

    def _begin(self, names: List[str]) -> None:
        for name in names:
            self._state.loading_per_field[name] = True
            self._state.field_states[name] = FieldState.LOADING
        self._notify()

    def _finish(self, name: str) -> None:
        self._state.loading_per_field[name] = False
        self._state.field_states[name] = FieldState.FRESH
        self._state.field_errors[name] = None
        self._notify()

    def _apply_failure(self, owner_id: str, generation: int, name: str, error: AccessLayerException) -> None:
        if self._abandoned(owner_id, generation):
            return

        state = self._state
        state.loading_per_field[name] = False

        if name == "profile" and isinstance(error, NotFound):
            self.logger.info("Profile not found or private", owner_id=owner_id)
            state.profile = None
            state.not_found = True
            state.error = None
            state.field_states[name] = FieldState.FRESH
            state.field_errors[name] = None
            self._notify()
            return

        has_data = state.has_data(name)
        state.field_states[name] = FieldState.STALE if has_data else FieldState.ERROR
        state.field_errors[name] = error.to_response()

        if name == "profile":
            self.logger.error("Error fetching user profile", owner_id=owner_id, code=error.code, error=error.message)
            if not has_data:
                state.error = error.to_response()
        else:
            self.logger.warning(f"Failed to refresh {name}", owner_id=owner_id, code=error.code, error=error.message)

        self._notify()

    async def _persist(self, owner_id: str, name: str) -> None:
        state = self._state
        ttl = self.config.cache_ttl
        if name == "profile":
            await self.entity_cache.write(EntityKind.PROFILE, owner_id, state.profile, ttl)
        elif name == "restaurants":
            await self.entity_cache.write(EntityKind.RESTAURANTS, owner_id, state.restaurants, ttl)
            await self.entity_cache.write(
                EntityKind.RESTAURANTS_CURSOR,
                owner_id,
                {"cursor": state.cursor, "hasMore": state.has_more_restaurants},
                ttl
            )
        else:
            await self.entity_cache.write(FIELD_KINDS[name], owner_id, getattr(state, name), ttl)

    def _notify(self) -> None:
        self._state.loading = any(self._state.loading_per_field.values())
        if self.on_change is None:
            return
        try:
            self.on_change(self._state.snapshot())
        except Exception as e:
            self.logger.error("State listener failed", error=str(e))
