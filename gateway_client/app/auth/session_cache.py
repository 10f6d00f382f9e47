"""
Process-wide session token record.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SessionTokenCache:
    """Cached session credential.

    ``expires_at`` already has the safety margin subtracted once when the
    record is built from a session grant; ``is_usable`` applies the margin
    again so a token is never attached in the minute before it lapses.
    """

    token: str
    expires_at: float
    last_fetched_at: float

    @classmethod
    def from_grant(cls, token: str, expires_in: float, now: float, safety_margin: float) -> "SessionTokenCache":
        return cls(
            token=token,
            expires_at=now + expires_in - safety_margin,
            last_fetched_at=now,
        )

    def is_usable(self, now: float, safety_margin: float) -> bool:
        return now < self.expires_at - safety_margin

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)
