"""
Circuit breaker pattern implementation for the text-completion backend.

Defaults:
- Failure threshold: 50% error rate over a 60 second window, once at least
  5 calls have been recorded in that window
- Open duration: 60 seconds (every call fails fast)
- Half-open: at most 1 trial call in flight; 1 trial success closes the
  circuit, any trial failure re-opens it

One breaker protects one operation (one per orchestration domain). All
state transitions happen under the breaker's lock, so outcomes reported
by concurrent in-flight calls are applied one at a time.
"""
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Optional, Tuple

from spai.core.logging import get_logger
from spai.core.metrics import record_circuit_transition

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, bypass service
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit rejects a call without invoking the operation."""

    def __init__(self, name: str, state: CircuitState):
        super().__init__(f"Circuit breaker {name} is {state.value.upper()}. Service unavailable.")
        self.name = name
        self.state = state


class CircuitBreaker:
    """
    Rolling-window circuit breaker.

    Usage:
        cb = CircuitBreaker("travel")

        if not cb.try_acquire_permission():
            return fallback()
        try:
            result = operation()
        except Exception:
            cb.record_failure()
            raise
        cb.record_success()

    or simply cb.call(operation), which raises CircuitBreakerOpenError
    when the call is not permitted.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60.0,
        open_duration_seconds: float = 60.0,
        min_requests_for_threshold: int = 5,
        half_open_max_calls: int = 1,
        half_open_success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests_for_threshold = min_requests_for_threshold
        self.half_open_max_calls = half_open_max_calls
        self.half_open_success_threshold = half_open_success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()
        self._request_history: Deque[Tuple[float, bool]] = deque()  # (timestamp, success)
        self._opened_at: Optional[float] = None
        self._half_open_in_flight = 0
        self._half_open_successes = 0
        self._rejected_count = 0

    @property
    def state(self) -> CircuitState:
        """Current state (applies a pending OPEN -> HALF_OPEN transition)."""
        with self._lock:
            self._update_state(self._clock())
            return self._state

    def _transition(self, new_state: CircuitState, now: float, **fields) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = now
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._request_history.clear()
        if new_state == CircuitState.HALF_OPEN:
            self._half_open_in_flight = 0
            self._half_open_successes = 0

        record_circuit_transition(self.name, new_state.value)
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"circuit_breaker_{new_state.value}",
            circuit_breaker=self.name,
            from_state=old_state.value,
            **fields,
        )

    def _prune(self, now: float) -> None:
        cutoff_time = now - self.time_window_seconds
        while self._request_history and self._request_history[0][0] < cutoff_time:
            self._request_history.popleft()

    def _update_state(self, now: float) -> None:
        """Apply time-driven transitions. Caller holds the lock."""
        self._prune(now)
        if self._state == CircuitState.OPEN:
            if self._opened_at is not None and (now - self._opened_at) >= self.open_duration_seconds:
                self._transition(CircuitState.HALF_OPEN, now)

    def _error_rate(self) -> Tuple[int, int, float]:
        total = len(self._request_history)
        failures = sum(1 for _, success in self._request_history if not success)
        return failures, total, (failures / total if total else 0.0)

    def acquire_permission(self) -> Optional[CircuitState]:
        """
        Ask whether the protected operation may be invoked now.

        Returns the state the permission was granted in (CLOSED, or
        HALF_OPEN for a trial call), or None when the call is refused.
        CLOSED always permits. OPEN never does. HALF_OPEN permits while
        fewer than half_open_max_calls trial calls are in flight; every
        permitted trial must be followed by record_success/record_failure.
        """
        with self._lock:
            now = self._clock()
            self._update_state(now)

            if self._state == CircuitState.CLOSED:
                return CircuitState.CLOSED

            if self._state == CircuitState.HALF_OPEN and self._half_open_in_flight < self.half_open_max_calls:
                self._half_open_in_flight += 1
                return CircuitState.HALF_OPEN

            self._rejected_count += 1
            return None

    def try_acquire_permission(self) -> bool:
        return self.acquire_permission() is not None

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
                self._half_open_successes += 1
                if self._half_open_successes >= self.half_open_success_threshold:
                    self._transition(
                        CircuitState.CLOSED,
                        now,
                        trial_successes=self._half_open_successes,
                    )
            elif self._state == CircuitState.CLOSED:
                self._request_history.append((now, True))
                self._prune(now)

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
                self._transition(CircuitState.OPEN, now, reason="trial_failed")
            elif self._state == CircuitState.CLOSED:
                self._request_history.append((now, False))
                self._prune(now)
                if len(self._request_history) >= self.min_requests_for_threshold:
                    failures, total, error_rate = self._error_rate()
                    if error_rate >= self.failure_threshold:
                        self._transition(
                            CircuitState.OPEN,
                            now,
                            error_rate=error_rate,
                            failures=failures,
                            total=total,
                        )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: the call was not permitted
        """
        if not self.try_acquire_permission():
            raise CircuitBreakerOpenError(self.name, self._state)

        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the circuit CLOSED and forget recorded outcomes."""
        with self._lock:
            self._transition(CircuitState.CLOSED, self._clock(), reason="manual_reset")
            self._half_open_in_flight = 0
            self._half_open_successes = 0

    def get_metrics(self) -> dict:
        """Get circuit breaker metrics for monitoring."""
        with self._lock:
            self._update_state(self._clock())
            failures, total, error_rate = self._error_rate()
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": error_rate,
                "opened_at": self._opened_at,
                "rejected_calls": self._rejected_count,
                "half_open_in_flight": self._half_open_in_flight,
                "half_open_successes": self._half_open_successes,
            }
