"""
Circuit breaker for calls to the FoodList backend.

Only the exception types passed as ``trips_on`` count as failures. In the
gateway those are transport failures; any HTTP response, whatever its
status, shows the backend is reachable and closes the circuit.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from shared.errors import CircuitOpenError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Fails fast after ``failure_threshold`` consecutive failures.

    Once ``recovery_timeout`` seconds have passed since the last failure the
    circuit lets a single probe through. A successful probe closes it again;
    a failed one re-opens it for another full timeout.
    """

    def __init__(self,
                 name: str,
                 *,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 trips_on: Tuple[Type[BaseException], ...] = (Exception,),
                 clock: Callable[[], float] = time.monotonic,
                 metrics: Optional[MetricsCollector] = None):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.trips_on = trips_on
        self.metrics = metrics
        self.logger = get_logger(f"circuit.{name}")
        self._clock = clock

        self._opened = False
        self._probing = False
        self._consecutive_failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        if not self._opened:
            return CircuitBreakerState.CLOSED
        if self._probing or self._clock() - self._opened_at >= self.recovery_timeout:
            return CircuitBreakerState.HALF_OPEN
        return CircuitBreakerState.OPEN

    def is_open(self) -> bool:
        return self.state == CircuitBreakerState.OPEN

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` unless the circuit is open; raises ``CircuitOpenError`` when blocked."""
        state = self.state
        if state == CircuitBreakerState.OPEN or (state == CircuitBreakerState.HALF_OPEN and self._probing):
            raise CircuitOpenError(
                f"Backend circuit '{self.name}' is open",
                details=self.get_state()
            )
        if state == CircuitBreakerState.HALF_OPEN:
            self._probing = True
            self._transition(CircuitBreakerState.HALF_OPEN)

        try:
            result = await func(*args, **kwargs)
        except self.trips_on:
            self._on_failure()
            raise
        except BaseException:
            # Errors that say nothing about reachability release the probe slot
            self._probing = False
            raise

        self._on_success()
        return result

    def reset(self) -> None:
        was_opened = self._opened
        self._opened = False
        self._probing = False
        self._consecutive_failures = 0
        if was_opened:
            self._transition(CircuitBreakerState.CLOSED)

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def _on_success(self) -> None:
        if self._opened:
            self.logger.info("Backend reachable again; closing circuit")
        self.reset()

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        reopening = self._probing
        self._probing = False
        if reopening or self._consecutive_failures >= self.failure_threshold:
            self._opened = True
            self._opened_at = self._clock()
            self.logger.warning(
                "Opening circuit after transport failures",
                failure_count=self._consecutive_failures,
                threshold=self.failure_threshold,
                retry_in=self.recovery_timeout
            )
            self._transition(CircuitBreakerState.OPEN)

    def _transition(self, state: CircuitBreakerState) -> None:
        if self.metrics is not None:
            self.metrics.record_circuit_transition(self.name, state.value)
