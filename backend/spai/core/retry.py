"""
Retry policy with exponential backoff and jitter.

Backoff strategy (attempt is 0-based, counting failed attempts so far):
  delay = min(base * 2^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)

Only exceptions listed in retry_on are retried. Anything else propagates
on the first occurrence.
"""
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from spai.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every permitted attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    """
    Bounded retry with backoff.

    Usage:
        policy = RetryPolicy(max_attempts=3, retry_on=(BackendError,))
        text = policy.execute(lambda: client.complete(prompt))
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @staticmethod
    def calculate_backoff(
        attempt: int,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
    ) -> float:
        """
        Calculate exponential backoff with jitter.

        Formula: min(base * 2^attempt + jitter, max_delay)
        Jitter: random(0, base * 0.5)
        """
        exponential = base_delay * (2 ** attempt)
        jitter = random.uniform(0, base_delay * 0.5)
        return min(exponential + jitter, max_delay)

    def execute(
        self,
        operation: Callable[[], T],
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        may_retry: Optional[Callable[[], bool]] = None,
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run operation, retrying retryable failures up to max_attempts in total.

        Args:
            operation: Zero-argument callable
            on_retry: Called as on_retry(next_attempt_number, error, delay) before each backoff sleep
            may_retry: Checked after each backoff sleep; False ends the run without another attempt
            max_attempts: Lower ceiling for this run only (never above the policy's)

        Raises:
            RetryExhaustedError: the last permitted attempt raised a retryable error
            Exception: a non-retryable error, re-raised unchanged
        """
        limit = self.max_attempts if max_attempts is None else max(1, min(max_attempts, self.max_attempts))
        last_error: Optional[BaseException] = None
        attempts = 0
        for attempt in range(limit):
            if attempt and may_retry is not None and not may_retry():
                logger.info("retry_abandoned", attempts=attempts, max_attempts=limit)
                break
            attempts += 1
            try:
                return operation()
            except self.retry_on as exc:
                last_error = exc
                if attempts >= limit:
                    break
                delay = self.calculate_backoff(attempt, self.base_delay_seconds, self.max_delay_seconds)
                logger.info(
                    "retry_scheduled",
                    attempt=attempt + 1,
                    max_attempts=limit,
                    delay_seconds=round(delay, 3),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                if on_retry is not None:
                    on_retry(attempt + 2, exc, delay)
                self.sleep(delay)

        raise RetryExhaustedError(attempts, last_error) from last_error
