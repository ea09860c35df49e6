"""
Unit tests for the retry policy.
"""
import pytest

from spai.core.retry import RetryExhaustedError, RetryPolicy


class TransientError(Exception):
    pass


def test_returns_first_success():
    sleeps = []
    policy = RetryPolicy(max_attempts=3, sleep=sleeps.append)
    assert policy.execute(lambda: "ok") == "ok"
    assert sleeps == []


def test_retries_until_success():
    attempts = []
    sleeps = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientError("try again")
        return "done"

    policy = RetryPolicy(max_attempts=3, retry_on=(TransientError,), sleep=sleeps.append)
    assert policy.execute(flaky) == "done"
    assert len(attempts) == 3
    assert len(sleeps) == 2


def test_exhausted_raises_with_last_error():
    policy = RetryPolicy(max_attempts=3, retry_on=(TransientError,), sleep=lambda _: None)
    attempts = []

    def always_fails():
        attempts.append(1)
        raise TransientError(f"attempt {len(attempts)}")

    with pytest.raises(RetryExhaustedError) as exc_info:
        policy.execute(always_fails)

    assert exc_info.value.attempts == 3
    assert str(exc_info.value.last_error) == "attempt 3"
    assert exc_info.value.__cause__ is exc_info.value.last_error
    assert len(attempts) == 3


def test_non_retryable_error_propagates_immediately():
    attempts = []

    def wrong():
        attempts.append(1)
        raise KeyError("not transient")

    policy = RetryPolicy(max_attempts=5, retry_on=(TransientError,), sleep=lambda _: None)
    with pytest.raises(KeyError):
        policy.execute(wrong)
    assert len(attempts) == 1


def test_on_retry_callback():
    seen = []

    def fails():
        raise TransientError("x")

    policy = RetryPolicy(max_attempts=3, retry_on=(TransientError,), sleep=lambda _: None)
    with pytest.raises(RetryExhaustedError):
        policy.execute(fails, on_retry=lambda n, err, delay: seen.append(n))

    assert seen == [2, 3]


def test_single_attempt_policy_never_sleeps():
    sleeps = []
    policy = RetryPolicy(max_attempts=1, retry_on=(TransientError,), sleep=sleeps.append)

    def fails():
        raise TransientError("x")

    with pytest.raises(RetryExhaustedError):
        policy.execute(fails)
    assert sleeps == []


def test_may_retry_false_stops_before_next_attempt():
    attempts = []

    def fails():
        attempts.append(1)
        raise TransientError("x")

    policy = RetryPolicy(max_attempts=5, retry_on=(TransientError,), sleep=lambda _: None)
    with pytest.raises(RetryExhaustedError) as exc_info:
        policy.execute(fails, may_retry=lambda: len(attempts) < 2)

    assert len(attempts) == 2
    assert exc_info.value.attempts == 2


def test_per_run_attempt_ceiling():
    attempts = []

    def fails():
        attempts.append(1)
        raise TransientError("x")

    policy = RetryPolicy(max_attempts=3, retry_on=(TransientError,), sleep=lambda _: None)
    with pytest.raises(RetryExhaustedError):
        policy.execute(fails, max_attempts=1)
    assert len(attempts) == 1

    with pytest.raises(RetryExhaustedError):
        policy.execute(fails, max_attempts=10)
    assert len(attempts) == 4


def test_backoff_grows_and_is_capped():
    for attempt in range(4):
        delay = RetryPolicy.calculate_backoff(attempt, base_delay=0.5, max_delay=5.0)
        base = 0.5 * (2 ** attempt)
        assert base <= delay <= min(base + 0.25, 5.0)

    assert RetryPolicy.calculate_backoff(10, base_delay=0.5, max_delay=5.0) == 5.0


def test_invalid_max_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
