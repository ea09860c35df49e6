"""
Per-subject admission control with a fixed 60-second window.

A subject is the operation domain ("chat", "recipe", "travel"), not the
end user. Each subject owns one RateWindow:

- The first request for a subject creates the window.
- When more than window_seconds have passed since window_start, the
  window resets (count -> 0, window_start -> now) instead of sliding.
  Bursts of up to 2x the ceiling are therefore possible around a reset.
- Every call increments the counter, admitted or not. The counter keeps
  growing past the ceiling until the next reset.

Window updates are serialized per subject; different subjects never
contend on the same lock.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from spai.core.logging import get_logger
from spai.core.metrics import record_rate_limit_rejection

logger = get_logger(__name__)

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_SECONDS = 60.0


@dataclass
class RateWindow:
    """Mutable admission state for a single subject."""

    window_start: float
    count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class RateLimiter:
    """
    Fixed-window admission check.

    Usage:
        limiter = RateLimiter(max_requests=10, window_seconds=60)
        if not limiter.try_acquire("recipe"):
            # reply 429
            ...
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._registry_lock = threading.Lock()

    def _get_window(self, subject: str) -> RateWindow:
        window = self._windows.get(subject)
        if window is None:
            with self._registry_lock:
                window = self._windows.get(subject)
                if window is None:
                    window = RateWindow(window_start=self._clock())
                    self._windows[subject] = window
        return window

    def try_acquire(self, subject: str) -> bool:
        """
        Count one request against the subject's window.

        Admission itself has no error outcome: any non-empty subject gets
        True or False. Callers pass the fixed domain subject constants.

        Returns:
            True if the post-increment count is within the ceiling.

        Raises:
            ValueError: subject is empty (a caller bug, not a request outcome)
        """
        if not subject:
            raise ValueError("subject must be a non-empty string")

        window = self._get_window(subject)
        with window.lock:
            now = self._clock()
            if now - window.window_start > self.window_seconds:
                window.count = 0
                window.window_start = now
            window.count += 1
            count = window.count

        allowed = count <= self.max_requests
        if not allowed:
            record_rate_limit_rejection(subject)
            logger.warning(
                "rate_limit_rejected",
                subject=subject,
                count=count,
                limit=self.max_requests,
            )
        return allowed

    def seconds_until_reset(self, subject: str) -> float:
        """Seconds until the subject's current window can reset (0 if unknown or expired)."""
        window = self._windows.get(subject)
        if window is None:
            return 0.0
        with window.lock:
            remaining = window.window_start + self.window_seconds - self._clock()
        return max(0.0, remaining)

    def get_stats(self) -> Dict[str, dict]:
        """Snapshot of every known subject's window."""
        with self._registry_lock:
            subjects = list(self._windows.keys())
        stats = {}
        for subject in subjects:
            window = self._windows.get(subject)
            if window is None:
                continue
            with window.lock:
                count = window.count
            stats[subject] = {
                "count": count,
                "limit": self.max_requests,
                "remaining": max(0, self.max_requests - count),
                "reset_in_seconds": round(self.seconds_until_reset(subject), 3),
            }
        return stats

    def reset(self, subject: Optional[str] = None) -> None:
        """Forget one subject's window, or all of them."""
        with self._registry_lock:
            if subject is None:
                self._windows.clear()
            else:
                self._windows.pop(subject, None)
        logger.info("rate_limit_reset", subject=subject or "*")
