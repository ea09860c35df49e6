"""
Unit tests for the rolling-window circuit breaker.
"""
import pytest
from prometheus_client import REGISTRY

from spai.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _fail():
    raise RuntimeError("backend error")


def _trip(cb: CircuitBreaker, failures: int = 5) -> None:
    for _ in range(failures):
        with pytest.raises(RuntimeError):
            cb.call(_fail)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cb(clock):
    return CircuitBreaker(
        "test",
        failure_threshold=0.5,
        time_window_seconds=60,
        open_duration_seconds=30,
        min_requests_for_threshold=5,
        clock=clock,
    )


def test_closed_state_passes_calls(cb):
    assert cb.state == CircuitState.CLOSED
    assert cb.call(lambda: "success") == "success"


def test_does_not_open_below_min_requests(cb):
    _trip(cb, failures=4)
    assert cb.state == CircuitState.CLOSED


def test_opens_after_threshold(cb):
    _trip(cb, failures=5)
    assert cb.state == CircuitState.OPEN


def test_error_rate_below_threshold_stays_closed(cb):
    for _ in range(6):
        cb.call(lambda: "ok")
    _trip(cb, failures=4)
    # 4 failures / 10 calls = 40% < 50%
    assert cb.state == CircuitState.CLOSED


def test_old_outcomes_fall_out_of_window(cb, clock):
    _trip(cb, failures=4)
    clock.advance(61)
    _trip(cb, failures=1)
    assert cb.state == CircuitState.CLOSED


def test_open_circuit_never_invokes_operation(cb):
    """While OPEN, calls fail fast without reaching the operation."""
    _trip(cb)
    calls = []

    for _ in range(10):
        with pytest.raises(CircuitBreakerOpenError):
            cb.call(lambda: calls.append(1))

    assert calls == []
    assert cb.get_metrics()["rejected_calls"] == 10


def test_half_open_after_cooldown_allows_one_trial(cb, clock):
    _trip(cb)
    clock.advance(30)

    assert cb.state == CircuitState.HALF_OPEN
    assert cb.try_acquire_permission() is True
    # Second concurrent trial is refused while the first is in flight
    assert cb.try_acquire_permission() is False


def test_half_open_success_closes(cb, clock):
    _trip(cb)
    clock.advance(30)

    assert cb.call(lambda: "recovered") == "recovered"
    assert cb.state == CircuitState.CLOSED


def test_half_open_failure_reopens(cb, clock):
    _trip(cb)
    clock.advance(30)

    with pytest.raises(RuntimeError):
        cb.call(_fail)
    assert cb.state == CircuitState.OPEN

    clock.advance(29)
    assert cb.state == CircuitState.OPEN


def test_success_threshold_above_one(clock):
    cb = CircuitBreaker(
        "multi",
        min_requests_for_threshold=1,
        open_duration_seconds=10,
        half_open_max_calls=2,
        half_open_success_threshold=2,
        clock=clock,
    )
    _trip(cb, failures=1)
    clock.advance(10)

    cb.call(lambda: "a")
    assert cb.state == CircuitState.HALF_OPEN
    cb.call(lambda: "b")
    assert cb.state == CircuitState.CLOSED


def test_reset_forces_closed(cb):
    _trip(cb)
    cb.reset()
    assert cb.state == CircuitState.CLOSED
    assert cb.call(lambda: "ok") == "ok"


def test_acquire_permission_reports_granting_state(cb, clock):
    assert cb.acquire_permission() == CircuitState.CLOSED

    _trip(cb)
    assert cb.acquire_permission() is None

    clock.advance(30)
    assert cb.acquire_permission() == CircuitState.HALF_OPEN
    assert cb.acquire_permission() is None


def test_state_gauge_and_transitions_recorded(clock):
    cb = CircuitBreaker("gauge-test", min_requests_for_threshold=1, clock=clock)
    _trip(cb, failures=1)

    assert REGISTRY.get_sample_value("circuit_breaker_state", {"circuit": "gauge-test"}) == 2
    opened = REGISTRY.get_sample_value(
        "circuit_breaker_transitions_total",
        {"circuit": "gauge-test", "to_state": "open"},
    )
    assert opened == 1
