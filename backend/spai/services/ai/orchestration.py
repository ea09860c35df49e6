"""
AI request orchestration.

One Orchestrator owns all shared state for the process: rate windows,
cached completions, circuit breakers and the async worker pool. Every
domain entry point runs the same steps:

1. Normalize input (InvalidInputError -> INVALID_INPUT, nothing else runs)
2. Admission control on the domain's subject (REJECTED, no cache/backend)
3. Cache lookup, single-flight per key
4. Resilient backend call (retry + circuit breaker + fallback)

The *_async variants submit steps 2-4 to the AsyncGateway and return a
DeferredResult right away; resolve() turns its outcome into an
OrchestrationResult (TIMEOUT when the deadline passed first).

Request-level outcomes are returned, never raised.
"""
from typing import Callable, Dict, Optional

from spai.core.async_gateway import AsyncGateway, AsyncStatus, DeferredResult
from spai.core.cache import CacheEvictionScheduler, ResponseCache
from spai.core.config import Settings, get_settings
from spai.core.logging import get_logger, set_domain
from spai.core.metrics import record_ai_request
from spai.core.rate_limit import RateLimiter
from spai.core.tracing import get_tracer
from spai.services.ai import domains
from spai.services.ai.domains import AIRequest, InvalidInputError
from spai.services.ai.llm_client import LLMClient, get_llm_client
from spai.services.ai.pipeline import AdmissionControl, Pipeline, ResilientCall, ResponseCaching
from spai.services.ai.resilience import ResilientInvoker
from spai.services.ai.schema import OrchestrationResult, Outcome

logger = get_logger(__name__)

CIRCUITS = (domains.CHAT, domains.CHAT_OPTIONS, domains.RECIPE, domains.TRAVEL)


class Orchestrator:
    """
    Composes admission control, caching and resilient invocation per domain.

    Usage:
        orchestrator = Orchestrator(client)
        result = orchestrator.recipe("chicken, rice", "asian", "")
        deferred = orchestrator.travel_async("Lisbon", 3)
        result = await orchestrator.resolve(domains.TRAVEL, deferred)
    """

    def __init__(
        self,
        client: LLMClient,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        gateway: Optional[AsyncGateway] = None,
        invokers: Optional[Dict[str, ResilientInvoker]] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=self.settings.rate_limit_max_requests,
            window_seconds=self.settings.rate_limit_window_seconds,
        )
        self.cache = cache or ResponseCache()
        self.gateway = gateway or AsyncGateway(
            timeout_seconds=self.settings.async_timeout_seconds,
            max_workers=self.settings.async_max_workers,
        )
        self.invokers = invokers or {
            name: ResilientInvoker.from_settings(name, self.settings) for name in CIRCUITS
        }
        self.scheduler = CacheEvictionScheduler(self.cache, self.settings.cache_clear_interval_seconds)
        self.pipeline = Pipeline(
            [AdmissionControl(self.rate_limiter), ResponseCaching(self.cache)],
            ResilientCall(client, self.invokers),
        )

    # Core entry points

    def handle(self, request: AIRequest, record: bool = True) -> OrchestrationResult:
        """
        Run one normalized request through the pipeline.

        With record=False the outcome is left out of ai_requests_total;
        async runs are counted by resolve() instead, so a run that finishes
        after its deadline is not counted twice.
        """
        set_domain(request.domain)
        with get_tracer().start_as_current_span("ai.orchestrate") as span:
            span.set_attribute("ai.domain", request.domain)
            try:
                result = self.pipeline(request)
            except Exception as exc:
                logger.error(
                    "orchestration_failed",
                    domain=request.domain,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                span.record_exception(exc)
                result = OrchestrationResult.failed(request.domain)
            span.set_attribute("ai.outcome", result.outcome.value)
            span.set_attribute("ai.from_cache", result.from_cache)

        if record:
            record_ai_request(request.domain, result.outcome.value)
        logger.info(
            "ai_request_completed",
            domain=request.domain,
            outcome=result.outcome.value,
            from_cache=result.from_cache,
        )
        return result

    def submit(self, request: AIRequest) -> DeferredResult:
        """Run handle() on the async gateway; returns immediately."""
        return self.gateway.submit(self.handle, request, record=False)

    def _run(self, domain: str, build: Callable[..., AIRequest], *args) -> OrchestrationResult:
        try:
            request = build(*args)
        except InvalidInputError as exc:
            return self._invalid(domain, exc)
        return self.handle(request)

    def _run_async(self, domain: str, build: Callable[..., AIRequest], *args) -> DeferredResult:
        try:
            request = build(*args)
        except InvalidInputError as exc:
            deferred = DeferredResult(self.gateway.timeout_seconds)
            deferred.set_result(self._invalid(domain, exc))
            return deferred
        return self.submit(request)

    @staticmethod
    def _invalid(domain: str, exc: InvalidInputError) -> OrchestrationResult:
        record_ai_request(domain, Outcome.INVALID_INPUT.value)
        logger.warning("ai_request_invalid", domain=domain, field=exc.field, error=str(exc))
        return OrchestrationResult.invalid_input(domain, str(exc))

    async def resolve(self, domain: str, deferred: DeferredResult) -> OrchestrationResult:
        """Await a deferred pipeline run and map its terminal state."""
        outcome = await deferred.wait_async()
        if outcome.status == AsyncStatus.COMPLETED:
            result = outcome.value
            if result.outcome != Outcome.INVALID_INPUT:
                record_ai_request(domain, result.outcome.value)
            return result
        if outcome.status == AsyncStatus.TIMEOUT:
            record_ai_request(domain, Outcome.TIMEOUT.value)
            return OrchestrationResult.timeout(domain)
        record_ai_request(domain, Outcome.FAILED.value)
        return OrchestrationResult.failed(domain)

    # Domains

    def chat(self, prompt: Optional[str]) -> OrchestrationResult:
        return self._run(domains.CHAT, domains.chat_request, prompt)

    def chat_async(self, prompt: Optional[str]) -> DeferredResult:
        return self._run_async(domains.CHAT, domains.chat_request, prompt)

    def chat_options(self, prompt: Optional[str], model: Optional[str] = None) -> OrchestrationResult:
        return self._run(
            domains.CHAT_OPTIONS,
            domains.chat_options_request,
            prompt,
            model,
            self.settings.llm_model,
        )

    def recipe(
        self,
        ingredients: Optional[str],
        cuisine: Optional[str] = None,
        dietary_restrictions: Optional[str] = None,
    ) -> OrchestrationResult:
        return self._run(domains.RECIPE, domains.recipe_request, ingredients, cuisine, dietary_restrictions)

    def recipe_async(
        self,
        ingredients: Optional[str],
        cuisine: Optional[str] = None,
        dietary_restrictions: Optional[str] = None,
    ) -> DeferredResult:
        return self._run_async(domains.RECIPE, domains.recipe_request, ingredients, cuisine, dietary_restrictions)

    def travel(
        self,
        destination: Optional[str],
        days,
        interests: Optional[str] = None,
        budget: Optional[str] = None,
    ) -> OrchestrationResult:
        return self._run(
            domains.TRAVEL,
            domains.travel_request,
            destination,
            days,
            interests,
            budget,
            self.settings.travel_max_days,
        )

    def travel_async(
        self,
        destination: Optional[str],
        days,
        interests: Optional[str] = None,
        budget: Optional[str] = None,
    ) -> DeferredResult:
        return self._run_async(
            domains.TRAVEL,
            domains.travel_request,
            destination,
            days,
            interests,
            budget,
            self.settings.travel_max_days,
        )

    # Operations

    def clear_cache(self) -> int:
        """Immediate full flush (same effect as the scheduled one)."""
        return self.cache.clear_all()

    def reset_circuit(self, name: str) -> None:
        """Force a circuit closed. Raises KeyError for unknown circuits."""
        self.invokers[name].circuit_breaker.reset()

    def get_stats(self) -> dict:
        return {
            "circuits": {
                name: invoker.circuit_breaker.get_metrics() for name, invoker in self.invokers.items()
            },
            "rate_limits": self.rate_limiter.get_stats(),
            "cache": self.cache.get_stats(),
            "cache_scheduler_running": self.scheduler.running,
        }

    def start(self) -> None:
        self.gateway.start()
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.gateway.shutdown(wait=False)
        logger.info("orchestrator_shutdown")


_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Global singleton accessor for the orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator(get_llm_client())
    return _orchestrator
