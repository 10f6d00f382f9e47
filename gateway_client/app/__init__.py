"""
Authenticated Request Gateway package for the FoodList access layer.

The gateway performs every outbound call made by the client, enforcing:
- Session credentials: cached, deduplicated acquisition from the session endpoint
- Timeouts: per-request cancellation with optional retries
- Circuit-breaking for transport failures
- Uniform 401 handling: local state teardown plus a sign-in redirect

Structure:
- app.gateway: RequestGateway dispatch and teardown wiring.
- app.auth: Session token cache, credential provider and fallback sources.
- app.adapters: HTTP client for the session-issuing endpoint.
- app.events: Notification/redirect sink used on authentication failure.
"""

from .gateway import RequestGateway
from .events import AuthEventSink, LoggingEventSink

__all__ = [
    "AuthEventSink",
    "LoggingEventSink",
    "RequestGateway",
]
