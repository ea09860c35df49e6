"""
Unit tests for ResilientInvoker (retry + circuit breaker + fallback).
"""
from unittest.mock import MagicMock

import pytest

from spai.core.circuit_breaker import CircuitBreaker, CircuitState
from spai.core.config import Settings
from spai.core.retry import RetryPolicy
from spai.services.ai.llm_client import BackendError
from spai.services.ai.resilience import (
    BACKEND_UNAVAILABLE,
    CIRCUIT_OPEN,
    FALLBACK_ERROR,
    ResilientInvoker,
)
from spai.services.ai.schema import InvocationKind, InvocationResult


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def invoker(clock):
    breaker = CircuitBreaker(
        "recipe",
        failure_threshold=0.5,
        time_window_seconds=60,
        open_duration_seconds=60,
        min_requests_for_threshold=5,
        clock=clock,
    )
    policy = RetryPolicy(max_attempts=3, retry_on=(BackendError,), sleep=lambda _: None)
    return ResilientInvoker("recipe", breaker, policy)


def failing_operation():
    return MagicMock(side_effect=BackendError("backend down"))


def test_success(invoker):
    result = invoker.invoke(lambda: "a recipe", lambda: "fallback")
    assert result == InvocationResult.success("a recipe")


def test_transient_failure_retried_then_succeeds(invoker):
    operation = MagicMock(side_effect=[BackendError("blip"), "a recipe"])
    result = invoker.invoke(operation, lambda: "fallback")
    assert result.kind == InvocationKind.SUCCESS
    assert operation.call_count == 2


def test_exhausted_retries_serve_fallback(invoker):
    operation = failing_operation()
    result = invoker.invoke(operation, lambda: "fallback text")

    assert result == InvocationResult.fallback("fallback text")
    assert operation.call_count == 3


def test_exhausted_invocation_counts_one_breaker_failure(invoker):
    invoker.invoke(failing_operation(), lambda: "fallback")
    metrics = invoker.circuit_breaker.get_metrics()
    assert metrics["recent_failures"] == 1
    assert metrics["recent_requests"] == 1


def test_non_retryable_error_not_retried_but_counted(invoker):
    operation = MagicMock(side_effect=KeyError("bad payload"))
    result = invoker.invoke(operation, lambda: "fallback")

    assert result.kind == InvocationKind.FALLBACK
    assert operation.call_count == 1
    assert invoker.circuit_breaker.get_metrics()["recent_failures"] == 1


def test_open_circuit_skips_operation(invoker):
    """After 5 failed invocations the next ones never reach the backend."""
    for _ in range(5):
        invoker.invoke(failing_operation(), lambda: "fallback")
    assert invoker.circuit_breaker.state == CircuitState.OPEN

    operation = MagicMock(return_value="should not run")
    fallback = MagicMock(return_value="fallback")
    for _ in range(4):
        assert invoker.invoke(operation, fallback).kind == InvocationKind.FALLBACK

    operation.assert_not_called()
    assert fallback.call_count == 4


def test_one_trial_after_cooldown(invoker, clock):
    for _ in range(5):
        invoker.invoke(failing_operation(), lambda: "fallback")

    clock.advance(60)
    operation = MagicMock(return_value="recovered")
    result = invoker.invoke(operation, lambda: "fallback")

    assert result == InvocationResult.success("recovered")
    assert operation.call_count == 1
    assert invoker.circuit_breaker.state == CircuitState.CLOSED


def test_failing_trial_after_cooldown_makes_one_attempt(invoker, clock):
    for _ in range(5):
        invoker.invoke(failing_operation(), lambda: "fallback")

    clock.advance(60)
    operation = failing_operation()
    result = invoker.invoke(operation, lambda: "fallback")

    assert result == InvocationResult.fallback("fallback")
    assert operation.call_count == 1
    assert invoker.circuit_breaker.state == CircuitState.OPEN


def test_retries_stop_once_circuit_opens(invoker):
    breaker = invoker.circuit_breaker
    for _ in range(4):
        invoker.invoke(failing_operation(), lambda: "fallback")
    states_seen = []

    def operation():
        states_seen.append(breaker.state)
        # A concurrent request fails and opens the circuit mid-retry
        breaker.record_failure()
        raise BackendError("backend down")

    result = invoker.invoke(operation, lambda: "fallback")

    assert result == InvocationResult.fallback("fallback")
    assert states_seen == [CircuitState.CLOSED]
    assert breaker.state == CircuitState.OPEN


def test_failure_without_fallback(invoker):
    result = invoker.invoke(failing_operation())
    assert result == InvocationResult.failure(BACKEND_UNAVAILABLE)

    for _ in range(4):
        invoker.invoke(failing_operation())
    assert invoker.invoke(lambda: "x") == InvocationResult.failure(CIRCUIT_OPEN)


def test_fallback_error_is_not_retried_or_counted(invoker):
    fallback = MagicMock(side_effect=RuntimeError("template bug"))
    operation = failing_operation()

    result = invoker.invoke(operation, fallback)

    assert result == InvocationResult.failure(FALLBACK_ERROR)
    assert fallback.call_count == 1
    assert invoker.circuit_breaker.get_metrics()["recent_failures"] == 1


def test_fallback_does_not_call_operation_when_circuit_open(invoker):
    invoker.circuit_breaker._state = CircuitState.OPEN
    invoker.circuit_breaker._opened_at = 0.0
    operation = MagicMock()
    invoker.invoke(operation, lambda: "fallback")
    operation.assert_not_called()


def test_none_completion_becomes_empty_success(invoker):
    result = invoker.invoke(lambda: None, lambda: "fallback")
    assert result == InvocationResult.success("")


def test_from_settings(clock):
    settings = Settings(retry_max_attempts=2, circuit_min_calls=3, circuit_open_seconds=10)
    invoker = ResilientInvoker.from_settings("travel", settings, clock=clock, sleep=lambda _: None)

    assert invoker.retry_policy.max_attempts == 2
    assert invoker.retry_policy.retry_on == (BackendError,)
    assert invoker.circuit_breaker.min_requests_for_threshold == 3
    assert invoker.circuit_breaker.open_duration_seconds == 10


def test_invocation_result_is_tagged():
    with pytest.raises(ValueError):
        InvocationResult(kind=InvocationKind.FAILURE, text="data", error_kind="x")
    with pytest.raises(ValueError):
        InvocationResult(kind=InvocationKind.SUCCESS, text="data", error_kind="x")
