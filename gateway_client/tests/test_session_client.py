"""
Unit tests for the session endpoint client.
"""

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from gateway_client.app.adapters.session_client import SessionClient
from shared.errors import AuthUnavailable, NetworkError, ParseError, RequestTimeout
from shared.test_helpers import FakeBackend, slow_http_server


class TestSessionClient:
    """Test cases for SessionClient."""

    @pytest.fixture
    def backend(self):
        return FakeBackend(expires_in=1800)

    @pytest.fixture
    def session_client(self, backend):
        http_client = httpx.AsyncClient(base_url="http://localhost:3000", transport=backend.transport())
        return SessionClient(http_client, session_endpoint="/api/auth/session", timeout=1.0)

    @pytest.mark.asyncio
    async def test_fetch_session_success(self, session_client, backend):
        """Test successful session fetch."""
        grant = await session_client.fetch_session()

        assert grant.access_token == "session-token-1"
        assert grant.expires_in == 1800
        request = backend.requests_to("/api/auth/session")[0]
        assert request.method == "GET"
        assert "authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_fetch_session_without_expiry(self, session_client, backend):
        """Test that a grant without expires_in is still accepted."""
        backend.expires_in = None

        grant = await session_client.fetch_session()

        assert grant.expires_in is None

    @pytest.mark.asyncio
    async def test_fetch_session_rejected(self, session_client, backend):
        """Test non-2xx session response."""
        backend.script("/api/auth/session", status_code=401, body={"error": "No session"})

        with pytest.raises(AuthUnavailable) as exc_info:
            await session_client.fetch_session()

        assert exc_info.value.details["status_code"] == 401

    @pytest.mark.asyncio
    async def test_fetch_session_missing_token(self, session_client, backend):
        """Test a 200 response without an access token."""
        backend.script("/api/auth/session", body={"user": {"id": "alice"}})

        with pytest.raises(AuthUnavailable):
            await session_client.fetch_session()

    @pytest.mark.asyncio
    async def test_fetch_session_network_error(self, session_client, backend):
        """Test transport failure."""
        backend.fail_transport("/api/auth/session")

        with pytest.raises(NetworkError):
            await session_client.fetch_session()

    @pytest.mark.asyncio
    async def test_fetch_session_timeout(self, session_client, backend):
        """Test that a hung session endpoint times out."""
        session_client.timeout = 0.05
        hold = backend.hold("/api/auth/session")

        with pytest.raises(RequestTimeout):
            await session_client.fetch_session()
        hold.set()

    @pytest.mark.asyncio
    async def test_fetch_session_invalid_json(self, session_client):
        """Test malformed session payload."""
        async def handler(request):
            return httpx.Response(200, content=b"not json")

        session_client.http_client = httpx.AsyncClient(
            base_url="http://localhost:3000",
            transport=httpx.MockTransport(handler)
        )

        with pytest.raises(ParseError):
            await session_client.fetch_session()

    @pytest.mark.asyncio
    async def test_session_timeout_overrides_client_default(self):
        """Test that the session timeout wins over the shared client's default."""
        grant_body = {"access_token": "slow-token", "expires_in": 60}
        async with slow_http_server(delay=0.6, body=grant_body) as base_url:
            async with httpx.AsyncClient(base_url=base_url, timeout=0.3) as http_client:
                session_client = SessionClient(http_client, session_endpoint="/api/auth/session", timeout=2.0)
                grant = await session_client.fetch_session()

        assert grant.access_token == "slow-token"
