"""
Per-provider circuit breakers.

States:
    CLOSED     calls pass, consecutive failures are counted
    OPEN       calls are rejected until the cooldown elapses
    HALF_OPEN  exactly one trial call is admitted; its result closes or
               re-opens the breaker

Breakers are keyed by provider name. Counter updates and state transitions
happen under a per-breaker lock, so the threshold is applied exactly once even
when parallel stages share a provider.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..config.settings import CircuitBreakerConfig
from ..exceptions import CircuitOpenError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    key: str
    state: CircuitState
    consecutive_failures: int
    open_until: float | None


class CircuitBreaker:
    def __init__(
        self,
        key: str,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be at least 1, got: {failure_threshold}")
        if cooldown <= 0:
            raise ValueError(f"cooldown must be positive, got: {cooldown}")

        self.key = key
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._open_until: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def before_call(self) -> None:
        """Admit a call or raise ``CircuitOpenError``."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                remaining = (self._open_until or 0.0) - self._clock()
                if remaining > 0:
                    self._reject(remaining)
                self._transition(CircuitState.HALF_OPEN)
                self._trial_in_flight = True
                return

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._reject(0.0)
                self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._open_until = None
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._open()
            elif self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold:
                self._open()

    def release_trial(self) -> None:
        """Give up a half-open trial without an outcome, e.g. on cancellation."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._open_until = None
            self._trial_in_flight = False
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(self.key, self._state, self._failures, self._open_until)

    # Callers below hold self._lock

    def _open(self) -> None:
        self._open_until = self._clock() + self.cooldown
        self._transition(CircuitState.OPEN)

    def _reject(self, retry_after: float) -> None:
        get_metrics_collector().record_circuit_rejection(self.key)
        raise CircuitOpenError(self.key, retry_after)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        get_metrics_collector().record_circuit_transition(self.key, old_state.value, new_state.value)
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.key}' {old_state.value} -> {new_state.value}",
            failures=self._failures,
        )


class CircuitBreakerRegistry:
    """Lazily creates one breaker per key from shared configuration."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    failure_threshold=self.config.failure_threshold,
                    cooldown=self.config.cooldown,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def snapshots(self) -> list[BreakerSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in breakers]

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
