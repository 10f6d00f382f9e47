"""
Bounded exponential backoff for outbound requests.

The gateway only retries client-side timeouts. Every other failure reaches
the caller on the first attempt.
"""

import asyncio
from typing import Any, Awaitable, Callable, Tuple, Type

from pydantic import BaseModel, Field

from shared.logging import get_logger

logger = get_logger("retry")

Sleep = Callable[[float], Awaitable[None]]


class RetryConfig(BaseModel):
    """Waits ``base_delay``, ``base_delay * factor``, ... capped at ``max_delay``."""

    max_attempts: int = Field(default=1, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    factor: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=10.0, ge=0)

    @classmethod
    def for_timeouts(cls, extra_attempts: int) -> "RetryConfig":
        return cls(max_attempts=extra_attempts + 1)

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 1

    def delay_for(self, failed_attempt: int) -> float:
        """Seconds to wait after the given 1-based attempt failed."""
        return min(self.base_delay * self.factor ** (failed_attempt - 1), self.max_delay)


async def retry_async(operation: Callable[[], Awaitable[Any]],
                      *,
                      retry_on: Tuple[Type[BaseException], ...],
                      config: RetryConfig,
                      label: str = "request",
                      sleep: Sleep = asyncio.sleep) -> Any:
    """Await ``operation()`` until it succeeds or attempts run out; the last error propagates."""
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= config.max_attempts:
                if config.enabled:
                    logger.warning("Giving up after retries", label=label, attempts=attempt, error=str(e))
                raise
            delay = config.delay_for(attempt)
            logger.info(
                "Retrying after transient failure",
                label=label,
                attempt=attempt,
                delay=delay,
                error=type(e).__name__
            )
            await sleep(delay)
            attempt += 1
