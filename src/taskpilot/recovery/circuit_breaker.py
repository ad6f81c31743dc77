"""Circuit Breaker - Per-operation-class failure guard."""

import time
from typing import Callable

import structlog
from pydantic import BaseModel, Field

from taskpilot.core.types import BreakerState, CircuitBreakerState, OperationClass


logger = structlog.get_logger()


class BreakerSettings(BaseModel):
    """Thresholds for one circuit breaker (seconds)."""

    failure_threshold: int = Field(default=5)
    reset_timeout: float = Field(default=60.0)
    monitoring_period: float = Field(default=300.0)


DEFAULT_BREAKER_SETTINGS: dict[OperationClass, BreakerSettings] = {
    OperationClass.NETWORK: BreakerSettings(
        failure_threshold=5, reset_timeout=60.0, monitoring_period=300.0
    ),
    OperationClass.ELEMENT_INTERACTION: BreakerSettings(
        failure_threshold=10, reset_timeout=30.0, monitoring_period=120.0
    ),
    OperationClass.HOST_API: BreakerSettings(
        failure_threshold=3, reset_timeout=120.0, monitoring_period=600.0
    ),
    OperationClass.DEFAULT: BreakerSettings(),
}


# Checked in order; first keyword hit wins.
_OPERATION_KEYWORDS: list[tuple[OperationClass, tuple[str, ...]]] = [
    (OperationClass.NETWORK, ("network", "fetch", "navigate", "request", "http")),
    (
        OperationClass.ELEMENT_INTERACTION,
        ("element", "click", "input", "type", "scroll", "select"),
    ),
    (OperationClass.HOST_API, ("browser", "chrome", "tab", "host", "extension")),
]


def operation_class_for(operation: str) -> OperationClass:
    """Derive the operation class from an operation or action name.

    Args:
        operation: Operation name, e.g. "click_element"

    Returns:
        Matching operation class, ``DEFAULT`` when nothing matches
    """
    lowered = operation.lower()
    for operation_class, keywords in _OPERATION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return operation_class
    return OperationClass.DEFAULT


class CircuitBreaker:
    """Closed/open/half-open failure guard for one operation class.

    closed -> open when failures inside the monitoring window reach the
    threshold; open -> half-open once ``reset_timeout`` has elapsed since
    the last failure; half-open -> closed on the next success and back to
    open on the next failure.
    """

    def __init__(
        self,
        name: str,
        settings: BreakerSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the breaker.

        Args:
            name: Operation class this breaker guards
            settings: Thresholds; defaults to ``BreakerSettings()``
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.settings = settings or BreakerSettings()
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures: list[float] = []
        self._last_failure_time: float | None = None

    @property
    def state(self) -> BreakerState:
        """Current state, promoting open to half-open once the reset timeout passed."""
        if (
            self._state == BreakerState.OPEN
            and self._last_failure_time is not None
            and self._clock() - self._last_failure_time >= self.settings.reset_timeout
        ):
            self._state = BreakerState.HALF_OPEN
            logger.info("circuit_breaker_half_open", breaker=self.name)
        return self._state

    @property
    def failure_count(self) -> int:
        """Failures currently inside the monitoring window."""
        return len(self._failures)

    def allow_request(self) -> bool:
        """Whether a request may proceed."""
        return self.state != BreakerState.OPEN

    def record_failure(self) -> None:
        """Record a failed operation."""
        now = self._clock()
        self._failures.append(now)
        self._last_failure_time = now

        cutoff = now - self.settings.monitoring_period
        self._failures = [t for t in self._failures if t > cutoff]

        state = self.state
        if state == BreakerState.HALF_OPEN:
            self._trip()
        elif state == BreakerState.CLOSED and len(self._failures) >= self.settings.failure_threshold:
            self._trip()

    def record_success(self) -> None:
        """Record a successful operation."""
        self._failures = []
        if self.state == BreakerState.HALF_OPEN:
            self._state = BreakerState.CLOSED
            logger.info("circuit_breaker_closed", breaker=self.name)

    def reset(self) -> None:
        """Return to the closed state and forget all failures."""
        self._state = BreakerState.CLOSED
        self._failures = []
        self._last_failure_time = None

    def snapshot(self) -> CircuitBreakerState:
        """Get a copy of the breaker state."""
        return CircuitBreakerState(
            state=self.state,
            failure_timestamps=list(self._failures),
            last_failure_time=self._last_failure_time,
        )

    def _trip(self) -> None:
        self._state = BreakerState.OPEN
        logger.warning(
            "circuit_breaker_tripped",
            breaker=self.name,
            failure_count=len(self._failures),
            threshold=self.settings.failure_threshold,
        )


class CircuitBreakerRegistry:
    """Circuit breakers keyed by operation class.

    Owned by the dispatcher and shared across tasks of one process.
    """

    def __init__(
        self,
        settings: dict[OperationClass, BreakerSettings] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the registry.

        Args:
            settings: Per-class settings; missing classes use the defaults
            clock: Time source shared by every breaker
        """
        self._settings = {**DEFAULT_BREAKER_SETTINGS, **(settings or {})}
        self._clock = clock
        self._breakers: dict[OperationClass, CircuitBreaker] = {}

    def get(self, operation_class: OperationClass) -> CircuitBreaker:
        """Get (creating on first use) the breaker for an operation class."""
        breaker = self._breakers.get(operation_class)
        if breaker is None:
            breaker = CircuitBreaker(
                operation_class.value,
                self._settings.get(operation_class, BreakerSettings()),
                clock=self._clock,
            )
            self._breakers[operation_class] = breaker
        return breaker

    def state(self, operation_class: OperationClass) -> BreakerState:
        """Current state for an operation class."""
        return self.get(operation_class).state

    def snapshot(self) -> dict[str, CircuitBreakerState]:
        """Snapshot every breaker created so far."""
        return {op.value: breaker.snapshot() for op, breaker in self._breakers.items()}

    def reset(self) -> None:
        """Reset every breaker."""
        for breaker in self._breakers.values():
            breaker.reset()
