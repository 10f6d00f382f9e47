"""
User-facing side effects of authentication failure.
"""

from typing import Protocol, runtime_checkable

from shared.logging import get_logger


@runtime_checkable
class AuthEventSink(Protocol):
    """Receives the notification and navigation intents emitted on sign-out."""

    def notify(self, message: str, level: str = "error") -> None:
        ...

    def redirect(self, path: str) -> None:
        ...


class LoggingEventSink:
    """Default sink for headless clients: both intents become log events."""

    def __init__(self):
        self.logger = get_logger("gateway.events")

    def notify(self, message: str, level: str = "error") -> None:
        self.logger.warning("User notification", message=message, level=level)

    def redirect(self, path: str) -> None:
        self.logger.warning("Sign-in redirect requested", path=path)
