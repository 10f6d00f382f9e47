"""
Session endpoint client for the request gateway.
"""

import asyncio
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from shared.errors import AuthUnavailable, NetworkError, ParseError, RequestTimeout, parse_json
from shared.logging import get_logger


class SessionGrant(BaseModel):
    """Session payload returned by the session-issuing endpoint."""

    access_token: Optional[str] = None
    expires_in: Optional[float] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None


class SessionClient:
    """Client for the session-issuing endpoint.

    The endpoint authenticates from ambient credentials (cookies held by the
    shared HTTP client), so the request carries no body and no bearer token.
    """

    def __init__(self, http_client: httpx.AsyncClient, session_endpoint: str = "/api/auth/session", timeout: float = 10.0):
        self.http_client = http_client
        self.session_endpoint = session_endpoint
        self.timeout = timeout
        self.logger = get_logger("gateway.session_client")

    async def fetch_session(self) -> SessionGrant:
        """Fetch a fresh session grant."""
        try:
            response = await asyncio.wait_for(
                self.http_client.get(
                    self.session_endpoint,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout
                ),
                timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self.logger.error("Session endpoint timeout")
            raise RequestTimeout("Session endpoint timeout") from e
        except httpx.RequestError as e:
            self.logger.error("Session endpoint request error", error=str(e))
            raise NetworkError("Session endpoint unavailable", details={"error": str(e)}) from e

        if response.status_code != 200:
            self.logger.warning(
                "Session fetch rejected",
                status_code=response.status_code,
                response=response.text
            )
            raise AuthUnavailable(
                f"Session endpoint returned {response.status_code}",
                details={"status_code": response.status_code}
            )

        body = parse_json(response, "session")
        try:
            grant = SessionGrant.model_validate(body)
        except ValidationError as e:
            raise ParseError("Unexpected session payload", details={"error": str(e)}) from e

        if not grant.access_token:
            self.logger.warning("Session payload carried no access token")
            raise AuthUnavailable("No session token available")

        return grant
