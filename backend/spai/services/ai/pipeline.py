"""
Ordered stage chain for orchestrated requests.

Each stage has the same shape as an HTTP middleware:

    stage(request, call_next) -> OrchestrationResult

and either short-circuits with its own result or delegates to call_next.
The chain used by the orchestrator is:

    AdmissionControl -> ResponseCaching -> ResilientCall

AdmissionControl rejects before any cache lookup or backend call.
ResponseCaching stores only SUCCESS results with non-blank text, so
fallbacks are recomputed on the next request instead of being pinned
until the next flush.
"""
import math
from functools import reduce
from typing import Callable, Mapping, Sequence

from spai.core.cache import ResponseCache, has_data
from spai.core.logging import get_logger
from spai.core.rate_limit import RateLimiter
from spai.services.ai.domains import AIRequest
from spai.services.ai.llm_client import LLMClient
from spai.services.ai.resilience import ResilientInvoker
from spai.services.ai.schema import InvocationKind, OrchestrationResult, Outcome

logger = get_logger(__name__)

Handler = Callable[[AIRequest], OrchestrationResult]
Stage = Callable[[AIRequest, Handler], OrchestrationResult]


class AdmissionControl:
    """Per-subject rate limiting."""

    def __init__(self, rate_limiter: RateLimiter):
        self.rate_limiter = rate_limiter

    def __call__(self, request: AIRequest, call_next: Handler) -> OrchestrationResult:
        if not self.rate_limiter.try_acquire(request.subject):
            retry_after = math.ceil(self.rate_limiter.seconds_until_reset(request.subject))
            return OrchestrationResult.rejected(request.domain, retry_after_seconds=max(1, retry_after))
        return call_next(request)


def _is_cacheable(result: OrchestrationResult) -> bool:
    return result.outcome == Outcome.SUCCESS and has_data(result.data)


class ResponseCaching:
    """Single-flight memoization of successful completions."""

    def __init__(self, cache: ResponseCache):
        self.cache = cache

    def __call__(self, request: AIRequest, call_next: Handler) -> OrchestrationResult:
        computed = []

        def supplier() -> OrchestrationResult:
            computed.append(True)
            return call_next(request)

        result = self.cache.get_or_compute(
            request.namespace,
            request.cache_key,
            supplier,
            is_cacheable=_is_cacheable,
        )
        if computed:
            return result
        # Served from the store or from another caller's in-flight computation.
        return result.model_copy(update={"from_cache": True})


class ResilientCall:
    """Terminal handler: one resilient backend invocation per request."""

    def __init__(self, client: LLMClient, invokers: Mapping[str, ResilientInvoker]):
        self.client = client
        self.invokers = invokers

    def __call__(self, request: AIRequest) -> OrchestrationResult:
        invoker = self.invokers[request.circuit]
        result = invoker.invoke(
            lambda: self.client.complete(request.prompt, request.options),
            request.fallback,
        )
        if result.kind == InvocationKind.SUCCESS:
            return OrchestrationResult.success(request.domain, result.text)
        if result.kind == InvocationKind.FALLBACK:
            return OrchestrationResult.fallback(request.domain, result.text)
        logger.error("invocation_failed", domain=request.domain, error_kind=result.error_kind)
        return OrchestrationResult.failed(request.domain)


class Pipeline:
    """
    Composes stages around a terminal handler.

    Usage:
        pipeline = Pipeline([AdmissionControl(limiter), ResponseCaching(cache)], ResilientCall(client, invokers))
        result = pipeline(request)
    """

    def __init__(self, stages: Sequence[Stage], handler: Handler):
        self.stages = list(stages)
        self.handler = handler
        self._chain = reduce(self._wrap, reversed(self.stages), handler)

    @staticmethod
    def _wrap(call_next: Handler, stage: Stage) -> Handler:
        def handle(request: AIRequest) -> OrchestrationResult:
            return stage(request, call_next)
        return handle

    def __call__(self, request: AIRequest) -> OrchestrationResult:
        return self._chain(request)
