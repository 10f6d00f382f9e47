"""
Adapters package for the request gateway.

Contains the HTTP client wrapper for the session-issuing endpoint. The
adapter encapsulates the request shape and maps transport and status
failures onto shared errors. Keep adapters thin and side-effect free
outside of explicit calls.
"""

from .session_client import SessionClient, SessionGrant

__all__ = [
    "SessionClient",
    "SessionGrant",
]
