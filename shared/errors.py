"""
Shared error handling for the FoodList access layer.
"""

from typing import Dict, Any, Optional

import httpx
from pydantic import BaseModel, Field

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error payload surfaced to UI consumers."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for the access layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class NetworkError(AccessLayerException):
    """Transport-level failure: the request never produced a response."""

    def __init__(self, message: str = "Network error or server unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, details)


class RequestTimeout(AccessLayerException):
    """Client-enforced timeout aborted the request."""

    def __init__(self, message: str = "Request timeout", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_TIMEOUT", message, details)


class AuthUnavailable(AccessLayerException):
    """No credential could be obtained from the session endpoint or a fallback."""

    def __init__(self, message: str = "No authentication token found", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_UNAVAILABLE", message, details)


class ParseError(AccessLayerException):
    """Response body could not be decoded."""

    def __init__(self, message: str = "Malformed response body", details: Optional[Dict[str, Any]] = None):
        super().__init__("PARSE_ERROR", message, details)


class CacheWriteError(AccessLayerException):
    """Best-effort persistence failed."""

    def __init__(self, message: str = "Could not cache data", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_WRITE_ERROR", message, details)


class CircuitOpenError(AccessLayerException):
    """Outbound calls are blocked while the circuit breaker is open."""

    def __init__(self, message: str = "Service temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CIRCUIT_OPEN", message, details)


class HTTPStatusError(AccessLayerException):
    """Base for errors derived from a non-2xx response."""

    code = "HTTP_ERROR"
    default_message = "Request failed"

    def __init__(self, status_code: int, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        details = dict(details or {})
        details.setdefault("status_code", status_code)
        super().__init__(type(self).code, message or type(self).default_message, details)


class Unauthorized(HTTPStatusError):
    """Session rejected by the server (401)."""

    code = "UNAUTHORIZED"
    default_message = "Authentication expired"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None, status_code: int = 401):
        super().__init__(status_code, message, details)


class NotFound(HTTPStatusError):
    """Resource does not exist or is private (404)."""

    code = "NOT_FOUND"
    default_message = "User not found or profile is private"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None, status_code: int = 404):
        super().__init__(status_code, message, details)


class ServerError(HTTPStatusError):
    """Backend failure (5xx)."""

    code = "SERVER_ERROR"
    default_message = "Server error. Please try again later."


class ClientError(HTTPStatusError):
    """Request rejected by the backend (4xx other than 401/404)."""

    code = "CLIENT_ERROR"
    default_message = "Request rejected"


def error_for_status(status_code: int, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> HTTPStatusError:
    """Map an HTTP status code onto the error taxonomy."""
    if status_code == 401:
        return Unauthorized(message, details)
    if status_code == 404:
        return NotFound(message, details)
    if status_code >= 500:
        return ServerError(status_code, message, details)
    return ClientError(status_code, message, details)


def raise_for_status(response: httpx.Response, resource: str) -> None:
    """Raise the taxonomy error for a non-2xx response."""
    if response.is_success:
        return

    message = None
    try:
        body = response.json()
        if isinstance(body, dict):
            message = body.get("error") or body.get("message")
    except ValueError:
        pass

    raise error_for_status(
        response.status_code,
        message,
        details={"resource": resource}
    )


def parse_json(response: httpx.Response, resource: str) -> Any:
    """Decode a JSON body, raising ParseError on malformed content."""
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(
            f"Invalid JSON from {resource}",
            details={"resource": resource, "error": str(e)}
        ) from e
