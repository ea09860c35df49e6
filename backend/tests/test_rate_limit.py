"""
Unit tests for per-subject fixed-window rate limiting.
"""
import threading

import pytest
from prometheus_client import REGISTRY

from spai.core.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(max_requests=10, window_seconds=60.0, clock=clock)


def _count(limiter: RateLimiter, subject: str) -> int:
    return limiter.get_stats().get(subject, {}).get("count", 0)


def test_allows_up_to_ceiling(limiter):
    """First 10 requests in a window are admitted, the 11th is rejected."""
    results = [limiter.try_acquire("chat") for _ in range(11)]
    assert results == [True] * 10 + [False]


def test_counter_keeps_growing_past_ceiling(limiter):
    """Rejected calls still increment the counter (no saturation)."""
    for _ in range(15):
        limiter.try_acquire("chat")
    assert _count(limiter, "chat") == 15


def test_window_resets_after_expiry(limiter, clock):
    """After the window elapses the count reflects only post-rollover calls."""
    for _ in range(12):
        limiter.try_acquire("recipe")
    assert limiter.try_acquire("recipe") is False

    clock.advance(60.5)
    assert limiter.try_acquire("recipe") is True
    assert _count(limiter, "recipe") == 1


def test_window_not_reset_at_exact_boundary(limiter, clock):
    """Reset requires now - window_start to exceed the window length."""
    for _ in range(10):
        limiter.try_acquire("travel")
    clock.advance(60.0)
    assert limiter.try_acquire("travel") is False


def test_subjects_are_independent(limiter):
    """Exhausting one subject does not affect another."""
    for _ in range(11):
        limiter.try_acquire("chat")
    assert limiter.try_acquire("chat") is False
    assert limiter.try_acquire("travel") is True


def test_unknown_subject_has_zero_usage(limiter):
    assert _count(limiter, "never-seen") == 0
    assert limiter.seconds_until_reset("never-seen") == 0.0


def test_empty_subject_rejected(limiter):
    with pytest.raises(ValueError):
        limiter.try_acquire("")


def test_seconds_until_reset(limiter, clock):
    limiter.try_acquire("chat")
    clock.advance(20)
    assert limiter.seconds_until_reset("chat") == pytest.approx(40.0)


def test_rejection_recorded_in_metrics(limiter):
    before = REGISTRY.get_sample_value("rate_limit_rejections_total", {"subject": "metrics-subject"}) or 0
    for _ in range(12):
        limiter.try_acquire("metrics-subject")
    after = REGISTRY.get_sample_value("rate_limit_rejections_total", {"subject": "metrics-subject"})
    assert after == before + 2


def test_concurrent_admissions_never_exceed_ceiling(clock):
    """Parallel callers on the same subject get at most `ceiling` admissions."""
    limiter = RateLimiter(max_requests=10, window_seconds=60.0, clock=clock)
    admitted = []
    lock = threading.Lock()

    def worker():
        for _ in range(5):
            if limiter.try_acquire("chat"):
                with lock:
                    admitted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 10
    assert _count(limiter, "chat") == 40


def test_stats_and_reset(limiter):
    for _ in range(3):
        limiter.try_acquire("chat")
    stats = limiter.get_stats()
    assert stats["chat"]["count"] == 3
    assert stats["chat"]["remaining"] == 7

    limiter.reset("chat")
    assert _count(limiter, "chat") == 0
