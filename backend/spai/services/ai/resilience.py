"""
Resilient backend invocation: circuit breaker around retry, plus fallback.

Order of operations for one invoke():

1. Ask the circuit breaker for permission. OPEN → fallback immediately,
   the operation is never called.
2. Run the operation under the retry policy. Only retryable errors
   (BackendError by default) are retried; anything else fails on the
   first occurrence. Retrying stops as soon as the breaker is no longer
   CLOSED, and a HALF_OPEN trial gets exactly one attempt.
3. Report exactly one outcome to the breaker per invoke(): success, or
   one failure once retries are exhausted (or a non-retryable error).
4. On failure, serve the domain fallback. The fallback runs outside
   retry and breaker accounting.

Backend errors never escape invoke(); the caller always gets an
InvocationResult.
"""
from typing import Callable, Optional, Tuple, Type

from spai.core.circuit_breaker import CircuitBreaker, CircuitState
from spai.core.config import Settings
from spai.core.logging import get_logger
from spai.core.metrics import record_llm_fallback, record_llm_retry
from spai.core.retry import RetryExhaustedError, RetryPolicy
from spai.services.ai.llm_client import BackendError
from spai.services.ai.schema import InvocationResult

logger = get_logger(__name__)

CIRCUIT_OPEN = "circuit_open"
BACKEND_UNAVAILABLE = "backend_unavailable"
FALLBACK_ERROR = "fallback_error"


class ResilientInvoker:
    """
    Retry + circuit breaker + fallback around one protected operation.

    Usage:
        invoker = ResilientInvoker("recipe", CircuitBreaker("recipe"), RetryPolicy())
        result = invoker.invoke(lambda: client.complete(prompt), lambda: FALLBACK_TEXT)
    """

    def __init__(
        self,
        name: str,
        circuit_breaker: CircuitBreaker,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.name = name
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy or RetryPolicy(retry_on=(BackendError,))

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: Settings,
        retry_on: Tuple[Type[BaseException], ...] = (BackendError,),
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> "ResilientInvoker":
        breaker_kwargs = {"clock": clock} if clock is not None else {}
        breaker = CircuitBreaker(
            name=name,
            failure_threshold=settings.circuit_failure_rate_threshold,
            time_window_seconds=settings.circuit_window_seconds,
            open_duration_seconds=settings.circuit_open_seconds,
            min_requests_for_threshold=settings.circuit_min_calls,
            half_open_max_calls=settings.circuit_half_open_max_calls,
            half_open_success_threshold=settings.circuit_half_open_success_threshold,
            **breaker_kwargs,
        )
        policy_kwargs = {"sleep": sleep} if sleep is not None else {}
        policy = RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
            retry_on=retry_on,
            **policy_kwargs,
        )
        return cls(name, breaker, policy)

    def invoke(
        self,
        operation: Callable[[], Optional[str]],
        fallback: Optional[Callable[[], str]] = None,
    ) -> InvocationResult:
        """
        Call operation with retry and circuit breaking.

        Args:
            operation: Zero-argument backend call returning completion text
            fallback: Zero-argument generator of the canned degraded response

        Returns:
            Success(text), Fallback(text), or Failure(kind) when there is no
            fallback (kind: circuit_open, backend_unavailable, fallback_error)
        """
        granted = self.circuit_breaker.acquire_permission()
        if granted is None:
            logger.warning(
                "circuit_open_fast_fail",
                circuit=self.name,
                state=self.circuit_breaker.state.value,
            )
            return self._degrade(fallback, CIRCUIT_OPEN)

        # A half-open trial is a single attempt
        trial = granted == CircuitState.HALF_OPEN
        try:
            text = self.retry_policy.execute(
                operation,
                on_retry=self._on_retry,
                may_retry=self._circuit_closed,
                max_attempts=1 if trial else None,
            )
        except RetryExhaustedError as exc:
            self.circuit_breaker.record_failure()
            logger.warning(
                "retries_exhausted",
                circuit=self.name,
                attempts=exc.attempts,
                error=str(exc.last_error),
                error_type=type(exc.last_error).__name__,
            )
            return self._degrade(fallback, BACKEND_UNAVAILABLE)
        except Exception as exc:
            self.circuit_breaker.record_failure()
            logger.error(
                "backend_call_unexpected_error",
                circuit=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return self._degrade(fallback, BACKEND_UNAVAILABLE)

        self.circuit_breaker.record_success()
        return InvocationResult.success(text if text is not None else "")

    def _circuit_closed(self) -> bool:
        return self.circuit_breaker.state == CircuitState.CLOSED

    def _on_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        record_llm_retry(self.name)

    def _degrade(self, fallback: Optional[Callable[[], str]], reason: str) -> InvocationResult:
        if fallback is None:
            return InvocationResult.failure(reason)

        try:
            text = fallback()
        except Exception as exc:
            logger.error(
                "fallback_failed",
                circuit=self.name,
                reason=reason,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return InvocationResult.failure(FALLBACK_ERROR)

        record_llm_fallback(self.name, reason)
        logger.warning("fallback_served", circuit=self.name, reason=reason)
        return InvocationResult.fallback(text)
