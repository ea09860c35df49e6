"""
Bounded-timeout asynchronous execution.

AsyncGateway.submit() schedules an operation on a worker pool and returns
a DeferredResult immediately. Exactly one of three outcomes resolves it:

- COMPLETED: the operation returned; the handle carries its value
- FAILED:    the operation raised; the handle carries error_kind "internal_error"
- TIMEOUT:   the deadline passed first; the handle carries error_kind "timeout"

Whichever comes first wins. A resolved handle never changes. On timeout
the operation is cancelled only if it has not started yet. A running
operation is left to finish, and its late result is discarded.

Worker threads run the operation inside a copy of the submitter's
contextvars, so trace/request ids stay on the log lines.
"""
import asyncio
import contextvars
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, List, Optional

from spai.core.logging import get_logger
from spai.core.metrics import record_async_discarded, record_async_outcome

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_WORKERS = 8

INTERNAL_ERROR = "internal_error"
TIMEOUT = "timeout"


class AsyncStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class AsyncOutcome:
    """Terminal state of a DeferredResult."""

    status: AsyncStatus
    value: Any = None
    error_kind: Optional[str] = None
    error: Optional[BaseException] = field(default=None, compare=False, repr=False)


class DeferredResult:
    """
    Handle for a result that becomes available later, resolved exactly once.

    The set_* methods return True for the call that resolved the handle
    and False for every later call.
    """

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._resolved = threading.Event()
        self._outcome: Optional[AsyncOutcome] = None
        self._callbacks: List[Callable[[AsyncOutcome], None]] = []

    @property
    def done(self) -> bool:
        return self._resolved.is_set()

    @property
    def outcome(self) -> Optional[AsyncOutcome]:
        return self._outcome

    @property
    def status(self) -> AsyncStatus:
        outcome = self._outcome
        return outcome.status if outcome is not None else AsyncStatus.PENDING

    def _resolve(self, outcome: AsyncOutcome) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
            callbacks, self._callbacks = self._callbacks, []
        self._resolved.set()
        for callback in callbacks:
            self._run_callback(callback, outcome)
        return True

    @staticmethod
    def _run_callback(callback: Callable[[AsyncOutcome], None], outcome: AsyncOutcome) -> None:
        try:
            callback(outcome)
        except Exception as e:
            logger.error(
                "deferred_callback_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def set_result(self, value: Any) -> bool:
        return self._resolve(AsyncOutcome(AsyncStatus.COMPLETED, value=value))

    def set_error(self, error: BaseException, error_kind: str = INTERNAL_ERROR) -> bool:
        return self._resolve(AsyncOutcome(AsyncStatus.FAILED, error_kind=error_kind, error=error))

    def set_timeout(self) -> bool:
        return self._resolve(AsyncOutcome(AsyncStatus.TIMEOUT, error_kind=TIMEOUT))

    def add_done_callback(self, callback: Callable[[AsyncOutcome], None]) -> None:
        """Run callback with the outcome once resolved (immediately if already resolved)."""
        with self._lock:
            if self._outcome is None:
                self._callbacks.append(callback)
                return
            outcome = self._outcome
        self._run_callback(callback, outcome)

    def wait(self, timeout: Optional[float] = None) -> Optional[AsyncOutcome]:
        """Block until resolved (or until timeout). Returns None if still pending."""
        self._resolved.wait(timeout)
        return self._outcome

    async def wait_async(self) -> AsyncOutcome:
        """Await the outcome from a coroutine without blocking the event loop."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _transfer(outcome: AsyncOutcome) -> None:
            loop.call_soon_threadsafe(_set_if_pending, future, outcome)

        self.add_done_callback(_transfer)
        return await future


def _set_if_pending(future: "asyncio.Future", outcome: AsyncOutcome) -> None:
    if not future.done():
        future.set_result(outcome)


class AsyncGateway:
    """
    Worker pool with a wall-clock deadline per submitted operation.

    Usage:
        gateway = AsyncGateway(timeout_seconds=60)
        deferred = gateway.submit(orchestrator.recipe, "chicken, rice", "asian", "")
        outcome = await deferred.wait_async()
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self._executor = executor or self._new_executor()
        self._lock = threading.Lock()
        self._closed = False

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="async-gateway")

    def start(self) -> None:
        """Accept work again after shutdown(); a fresh worker pool replaces the old one."""
        with self._lock:
            if self._closed:
                self._executor = self._new_executor()
                self._closed = False
                logger.info("async_gateway_started", max_workers=self.max_workers)

    def submit(
        self,
        operation: Callable[..., Any],
        *args,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ) -> DeferredResult:
        """
        Schedule operation(*args, **kwargs) and return its handle without waiting.

        A gateway that is shut down resolves the handle as FAILED right away.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        deferred = DeferredResult(timeout)

        context = contextvars.copy_context()
        try:
            future = self._executor.submit(context.run, operation, *args, **kwargs)
        except RuntimeError as e:
            deferred.set_error(e)
            record_async_outcome(AsyncStatus.FAILED.value)
            logger.error("async_submit_rejected", error=str(e), error_type=type(e).__name__)
            return deferred

        timer = threading.Timer(timeout, self._expire, args=(deferred, future))
        timer.daemon = True
        timer.start()

        future.add_done_callback(partial(self._complete, deferred, timer))
        return deferred

    def _complete(self, deferred: DeferredResult, timer: threading.Timer, future: Future) -> None:
        timer.cancel()
        if future.cancelled():
            return

        error = future.exception()
        if error is None:
            resolved = deferred.set_result(future.result())
            outcome = AsyncStatus.COMPLETED
        else:
            resolved = deferred.set_error(error)
            outcome = AsyncStatus.FAILED

        if resolved:
            record_async_outcome(outcome.value)
            if error is not None:
                logger.error(
                    "async_operation_failed",
                    error=str(error),
                    error_type=type(error).__name__,
                )
        else:
            record_async_discarded()
            logger.info("async_result_discarded", late_outcome=outcome.value)

    def _expire(self, deferred: DeferredResult, future: Future) -> None:
        if deferred.set_timeout():
            cancelled = future.cancel()
            record_async_outcome(AsyncStatus.TIMEOUT.value)
            logger.warning(
                "async_operation_timeout",
                timeout_seconds=deferred.timeout_seconds,
                cancelled_before_start=cancelled,
            )

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting work; queued operations are cancelled."""
        with self._lock:
            self._closed = True
            executor = self._executor
        executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("async_gateway_shutdown")
