"""
Unit tests for the request gateway.
"""

import asyncio
import json

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from gateway_client.app.gateway import SESSION_EXPIRED_MESSAGE, RequestGateway
from shared.errors import CircuitOpenError, NetworkError, RequestTimeout, Unauthorized
from shared.retry import RetryConfig
from shared.storage import MemoryStore
from shared.test_helpers import (
    FailingStore,
    FakeBackend,
    ManualClock,
    RecordingEvents,
    make_config,
    slow_http_server,
    wait_until,
)

PROFILE_PATH = "/api/users/alice"
REVIEWS_PATH = "/api/users/alice/reviews"
SESSION_PATH = "/api/auth/session"


class TestRequestGateway:
    """Test cases for RequestGateway."""

    @pytest.fixture
    def backend(self):
        backend = FakeBackend()
        backend.add_user("alice")
        return backend

    @pytest.fixture
    def events(self):
        return RecordingEvents()

    @pytest.fixture
    def store(self):
        return MemoryStore({"user_profile_alice": "{}"})

    @pytest.fixture
    def gateway(self, backend, events, store):
        return RequestGateway(
            make_config(circuit_failure_threshold=2),
            transport=backend.transport(),
            store=store,
            events=events,
            clock=ManualClock()
        )

    @pytest.mark.asyncio
    async def test_dispatch_attaches_bearer_token(self, gateway, backend):
        """Test that requests carry the session token and JSON headers."""
        response = await gateway.get(PROFILE_PATH)

        assert response.status_code == 200
        request = backend.requests_to(PROFILE_PATH)[0]
        assert request.headers["authorization"] == "Bearer session-token-1"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["x-request-id"]

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_fetches_session_once(self, gateway, backend):
        """Test that parallel requests share one session fetch."""
        responses = await asyncio.gather(*(gateway.get(PROFILE_PATH) for _ in range(4)))

        assert all(response.status_code == 200 for response in responses)
        assert backend.count(SESSION_PATH) == 1

    @pytest.mark.asyncio
    async def test_non_401_errors_returned_unmodified(self, gateway, backend, events):
        """Test that 4xx/5xx other than 401 are handed back to the caller."""
        backend.script(PROFILE_PATH, status_code=500, body={"error": "boom"})

        response = await gateway.get(PROFILE_PATH)

        assert response.status_code == 500
        assert gateway.credentials.cached is not None
        assert events.redirects == []

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, gateway, backend):
        """Test that write verbs encode their body as JSON."""
        await gateway.post("/api/lists", {"name": "Favourites"})

        request = backend.requests_to("/api/lists")[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"name": "Favourites"}

    @pytest.mark.asyncio
    async def test_put_and_delete_verbs(self, gateway, backend):
        await gateway.put("/api/lists/list-1", {"isPublic": False})
        await gateway.delete("/api/lists/list-1")

        put_request, delete_request = backend.requests_to("/api/lists/list-1")
        assert put_request.method == "PUT"
        assert json.loads(put_request.content) == {"isPublic": False}
        assert delete_request.method == "DELETE"
        assert delete_request.headers["authorization"].startswith("Bearer ")

    @pytest.mark.asyncio
    async def test_unauthorized_tears_down_local_state(self, gateway, backend, events, store):
        """Test the 401 path: everything cleared, one notification and redirect."""
        hook_calls = []
        gateway.add_teardown_hook(lambda: hook_calls.append("reset"))
        gateway.http_client.cookies.set("sb-access-token", "stale-cookie")
        backend.script(PROFILE_PATH, status_code=401, body={"error": "Unauthorized"})

        with pytest.raises(Unauthorized):
            await gateway.get(PROFILE_PATH)

        assert gateway.credentials.cached is None
        assert len(store) == 0
        assert hook_calls == ["reset"]
        assert len(gateway.http_client.cookies) == 0
        assert events.notifications == [(SESSION_EXPIRED_MESSAGE, "error")]
        assert events.redirects == ["/auth/signin"]

    @pytest.mark.asyncio
    async def test_concurrent_unauthorized_notifies_once(self, gateway, backend, events):
        """Test that simultaneous 401s emit a single sign-out intent."""
        backend.script(PROFILE_PATH, status_code=401, times=3)

        results = await asyncio.gather(*(gateway.get(PROFILE_PATH) for _ in range(3)), return_exceptions=True)

        assert all(isinstance(result, Unauthorized) for result in results)
        assert len(events.notifications) == 1
        assert len(events.redirects) == 1

    @pytest.mark.asyncio
    async def test_signed_out_window_resets_after_success(self, gateway, backend, events):
        """Test that a later rejection, after a successful call, notifies again."""
        backend.script(PROFILE_PATH, status_code=401)
        with pytest.raises(Unauthorized):
            await gateway.get(PROFILE_PATH)

        await gateway.get(PROFILE_PATH)
        backend.script(PROFILE_PATH, status_code=401)
        with pytest.raises(Unauthorized):
            await gateway.get(PROFILE_PATH)

        assert len(events.redirects) == 2

    @pytest.mark.asyncio
    async def test_late_success_from_before_teardown_keeps_window(self, gateway, backend, events):
        """Test that a response to a request sent before the 401 does not reopen sign-out intents."""
        hold = backend.hold(REVIEWS_PATH)
        earlier = asyncio.ensure_future(gateway.get(REVIEWS_PATH))
        await wait_until(lambda: backend.count(REVIEWS_PATH) == 1)

        backend.script(PROFILE_PATH, status_code=401)
        with pytest.raises(Unauthorized):
            await gateway.get(PROFILE_PATH)

        hold.set()
        assert (await earlier).status_code == 200

        backend.script(PROFILE_PATH, status_code=401)
        with pytest.raises(Unauthorized):
            await gateway.get(PROFILE_PATH)

        assert len(events.notifications) == 1
        assert events.redirects == ["/auth/signin"]

    @pytest.mark.asyncio
    async def test_unauthenticated_request_skips_token_and_teardown(self, gateway, backend, events):
        """Test public calls carry no credential and pass 401 through."""
        backend.script("/api/restaurants", status_code=401)

        response = await gateway.get("/api/restaurants", authenticated=False)

        assert response.status_code == 401
        assert "authorization" not in backend.requests_to("/api/restaurants")[0].headers
        assert backend.count(SESSION_PATH) == 0
        assert events.redirects == []

    @pytest.mark.asyncio
    async def test_timeout_leaves_session_intact(self, gateway, backend, events):
        """Test that a request exceeding its timeout fails without teardown."""
        hold = backend.hold(PROFILE_PATH)

        with pytest.raises(RequestTimeout):
            await gateway.get(PROFILE_PATH, timeout=0.05)
        hold.set()

        assert gateway.credentials.cached is not None
        assert events.redirects == []

    @pytest.mark.asyncio
    async def test_timeout_retries(self, backend, events, store):
        """Test that timeouts are retried when retries are configured."""
        gateway = RequestGateway(
            make_config(timeout_retries=1),
            transport=backend.transport(),
            store=store,
            events=events
        )
        gateway.retry_config = RetryConfig(max_attempts=2, base_delay=0.0)
        backend.delay(PROFILE_PATH, 0.2)

        with pytest.raises(RequestTimeout):
            await gateway.get(PROFILE_PATH, timeout=0.05)

        assert backend.count(PROFILE_PATH) == 2

    @pytest.mark.asyncio
    async def test_network_errors_open_circuit(self, gateway, backend):
        """Test that repeated transport failures fail fast."""
        backend.fail_transport(PROFILE_PATH, times=2)

        for _ in range(2):
            with pytest.raises(NetworkError):
                await gateway.get(PROFILE_PATH)

        with pytest.raises(CircuitOpenError):
            await gateway.get(PROFILE_PATH)
        assert backend.count(PROFILE_PATH) == 2

    @pytest.mark.asyncio
    async def test_teardown_emits_no_intents(self, gateway, backend, events, store):
        """Test explicit logout clears state quietly."""
        await gateway.get(PROFILE_PATH)

        await gateway.teardown()

        assert gateway.credentials.cached is None
        assert len(store) == 0
        assert events.notifications == []
        assert events.redirects == []

    @pytest.mark.asyncio
    async def test_teardown_survives_failing_store_and_hook(self, backend, events):
        """Test that teardown continues past hook and storage failures."""
        gateway = RequestGateway(
            make_config(),
            transport=backend.transport(),
            store=FailingStore(fail_clear=True),
            events=events
        )
        calls = []

        def broken_hook():
            raise RuntimeError("listener gone")

        gateway.add_teardown_hook(broken_hook)
        gateway.add_teardown_hook(lambda: calls.append("second"))

        await gateway.teardown()

        assert calls == ["second"]

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, gateway):
        """Test that outbound requests are counted."""
        await gateway.get(PROFILE_PATH)

        assert gateway.metrics.get_sample_value(
            "requests_total",
            method="GET",
            endpoint=PROFILE_PATH,
            status_code="200"
        ) == 1.0

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self, backend):
        async with RequestGateway(make_config(), transport=backend.transport()) as gateway:
            await gateway.get(PROFILE_PATH)

        assert gateway.http_client.is_closed


class TestRequestTimeouts:
    """Per-request timeouts against a real socket."""

    @pytest.mark.asyncio
    async def test_longer_timeout_overrides_client_default(self):
        """Test that a per-request timeout above the client default is honoured."""
        async with slow_http_server(delay=0.6) as base_url:
            config = make_config(api_base_url=base_url, request_timeout=0.3)
            async with RequestGateway(config, store=MemoryStore(), events=RecordingEvents()) as gateway:
                response = await gateway.get("/slow", authenticated=False, timeout=2.0)

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_shorter_timeout_still_applies(self):
        async with slow_http_server(delay=0.6) as base_url:
            config = make_config(api_base_url=base_url, request_timeout=2.0)
            async with RequestGateway(config, store=MemoryStore(), events=RecordingEvents()) as gateway:
                with pytest.raises(RequestTimeout, match="after 0.1s"):
                    await gateway.get("/slow", authenticated=False, timeout=0.1)
