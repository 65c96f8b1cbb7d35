"""Per-source circuit breaker.

A provider that keeps failing (blocked by bot protection, layout change,
outage) is skipped for a recovery window instead of burning the aggregator's
timeout budget on every pass. States:
- CLOSED: Normal operation
- OPEN: Source is down, fail fast
- HALF_OPEN: One trial call allowed

Example:
    >>> breaker = CircuitBreaker("chittorgarh", failure_threshold=3)
    >>> if breaker.allow_request():
    ...     result = await scraper.get_ipos()
    ...     breaker.record(result.success)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

from ipolens.utils.logger import get_logger
from ipolens.utils.metrics import (
    circuit_breaker_failures,
    circuit_breaker_state,
    circuit_breaker_state_transitions,
)

_STATE_GAUGE = {"closed": 0, "half_open": 1, "open": 2}


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Tracks consecutive failures of one source.

    Unlike a call wrapper, this breaker is driven by outcomes: scrapers never
    raise, so the caller reports ``success``/``failure`` after each operation.

    Attributes:
        failure_threshold: Consecutive failures before opening circuit
        recovery_timeout: Seconds to wait before allowing a trial call
        state: Current circuit state
        failure_count: Current consecutive failure count
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float | None = None
        self._clock = clock
        self.logger = get_logger(f"{__name__}.{name}")

    def allow_request(self) -> bool:
        """Return True when the source may be called now."""
        if self.state != CircuitState.OPEN:
            return True

        if self.opened_at is not None and self._clock() - self.opened_at >= self.recovery_timeout:
            self.logger.info(
                "circuit_breaker_attempting_recovery",
                recovery_timeout=self.recovery_timeout,
            )
            self._transition(CircuitState.HALF_OPEN)
            return True

        self.logger.warning("circuit_breaker_open_failing_fast", failure_count=self.failure_count)
        return False

    def record(self, success: bool, error: str | None = None) -> None:
        """Record the outcome of an operation that was allowed through."""
        if success:
            self._on_success()
        else:
            self._on_failure(error)

    def _on_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            self.logger.info("circuit_breaker_recovered", old_state=self.state.value)
            self._transition(CircuitState.CLOSED)
        self.failure_count = 0
        self.opened_at = None

    def _on_failure(self, error: str | None) -> None:
        self.failure_count += 1
        circuit_breaker_failures.labels(source=self.name).inc()
        self.logger.warning(
            "circuit_breaker_failure",
            state=self.state.value,
            failure_count=self.failure_count,
            threshold=self.failure_threshold,
            error=error,
        )

        # A failed trial call re-opens immediately
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                self.logger.error(
                    "circuit_breaker_opened",
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold,
                )
                self._transition(CircuitState.OPEN)
            self.opened_at = self._clock()

    def _transition(self, new_state: CircuitState) -> None:
        circuit_breaker_state_transitions.labels(
            source=self.name, from_state=self.state.value, to_state=new_state.value
        ).inc()
        self.state = new_state
        circuit_breaker_state.labels(source=self.name).set(_STATE_GAUGE[new_state.value])

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.logger.info("circuit_breaker_manual_reset", old_state=self.state.value)
        if self.state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)
        self.failure_count = 0
        self.opened_at = None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED
