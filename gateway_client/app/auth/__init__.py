"""
Session credential helpers for the request gateway.
"""

from .session_cache import SessionTokenCache
from .credentials import (
    ChainedCredentialSource,
    CookieCredentialSource,
    CredentialProvider,
    EnvCredentialSource,
    FallbackCredentialSource,
    StaticCredentialSource,
)

__all__ = [
    "ChainedCredentialSource",
    "CookieCredentialSource",
    "CredentialProvider",
    "EnvCredentialSource",
    "FallbackCredentialSource",
    "SessionTokenCache",
    "StaticCredentialSource",
]
