"""
Prometheus collectors for the orchestration service.

Groups:
- HTTP: request count, errors and latency per normalized route
- Orchestration: per-domain outcomes, admission rejections
- Cache: hits, misses, entries and full flushes per namespace
- Backend: completion attempts, latency, retries, fallbacks
- Resilience: circuit breaker state and transitions, async gateway outcomes
- Process: CPU and memory, sampled with psutil at scrape time

Everything is registered on prometheus_client's default registry and
exposed by GET /metrics.
"""
import re

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from spai.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# HTTP
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests handled, by route and status",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "HTTP responses with status >= 400",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "Wall-clock time spent handling an HTTP request",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

ai_requests_total = Counter(
    "ai_requests_total",
    "Total orchestrated AI requests by outcome",
    ["domain", "outcome"],  # outcome: success, fallback, rejected, timeout, invalid_input, failed
    registry=registry,
)

rate_limit_rejections_total = Counter(
    "rate_limit_rejections_total",
    "Total requests rejected by admission control",
    ["subject"],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Lookups answered from a cache namespace",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Lookups that ran the supplier",
    ["cache_type"],
    registry=registry,
)

cache_entries = Gauge(
    "cache_entries",
    "Number of entries currently held per cache namespace",
    ["cache_type"],
    registry=registry,
)

cache_flushes_total = Counter(
    "cache_flushes_total",
    "Total number of full cache flushes",
    registry=registry,
)

# ============================================================================
# BACKEND (LLM) METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total backend completion attempts",
    ["domain", "status"],  # status: success, error
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Backend completion latency in seconds",
    ["domain"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0],
    registry=registry,
)

llm_retries_total = Counter(
    "llm_retries_total",
    "Total backend retry attempts (excluding first attempt)",
    ["domain"],
    registry=registry,
)

llm_fallbacks_total = Counter(
    "llm_fallbacks_total",
    "Total fallback responses served",
    ["domain", "reason"],  # reason: circuit_open, backend_unavailable
    registry=registry,
)

# ============================================================================
# RESILIENCE METRICS
# ============================================================================

CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0 = closed, 1 = half-open, 2 = open)",
    ["circuit"],
    registry=registry,
)

circuit_breaker_transitions_total = Counter(
    "circuit_breaker_transitions_total",
    "Total circuit breaker state transitions",
    ["circuit", "to_state"],
    registry=registry,
)

async_requests_total = Counter(
    "async_requests_total",
    "Total async gateway submissions by terminal outcome",
    ["outcome"],  # completed, failed, timeout
    registry=registry,
)

async_discarded_results_total = Counter(
    "async_discarded_results_total",
    "Results that arrived after their handle had already timed out",
    registry=registry,
)

# ============================================================================
# PROCESS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "Host CPU utilisation, percent",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "Host memory in use, bytes",
    registry=registry,
)


# ============================================================================
# RECORDING
# ============================================================================

_ROUTE_TEMPLATES = (
    (re.compile(r"^(/api/(?:recipes|travel)/saved)/(?!search$)[^/]+$"), r"\1/{id}"),
    (re.compile(r"^(/api/chat/session)/[^/]+$"), r"\1/{session_id}"),
    (re.compile(r"^/admin/circuits/[^/]+/"), "/admin/circuits/{name}/"),
)


def normalize_endpoint(path: str) -> str:
    """
    Collapse record ids in a path so label cardinality stays bounded.

    /api/recipes/saved/42   -> /api/recipes/saved/{id}
    /api/chat/session/abc   -> /api/chat/session/{session_id}
    /admin/circuits/x/reset -> /admin/circuits/{name}/reset
    """
    path = path.partition("?")[0].rstrip("/") or "/"
    for pattern, template in _ROUTE_TEMPLATES:
        path = pattern.sub(template, path)
    return path


def record_http_request(method: str, endpoint: str, status_code: int, duration_seconds: float) -> None:
    route = normalize_endpoint(endpoint)
    status = str(status_code)
    http_requests_total.labels(method=method, endpoint=route, status=status).inc()
    http_request_duration_seconds.labels(method=method, endpoint=route).observe(duration_seconds)
    if status_code >= 400:
        http_errors_total.labels(method=method, endpoint=route, status_code=status).inc()


def record_ai_request(domain: str, outcome: str) -> None:
    ai_requests_total.labels(domain=domain, outcome=outcome).inc()


def record_rate_limit_rejection(subject: str) -> None:
    rate_limit_rejections_total.labels(subject=subject).inc()


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def update_cache_entries(cache_type: str, size: int) -> None:
    cache_entries.labels(cache_type=cache_type).set(size)


def record_cache_flush() -> None:
    cache_flushes_total.inc()


def record_llm_request(domain: str, status: str, duration_seconds: float) -> None:
    """
    Record one backend completion attempt.

    Args:
        domain: Orchestration domain that issued the call
        status: "success" or "error"
        duration_seconds: Wall-clock duration of the attempt
    """
    llm_requests_total.labels(domain=domain, status=status).inc()
    llm_request_duration_seconds.labels(domain=domain).observe(duration_seconds)


def record_llm_retry(domain: str) -> None:
    llm_retries_total.labels(domain=domain).inc()


def record_llm_fallback(domain: str, reason: str) -> None:
    llm_fallbacks_total.labels(domain=domain, reason=reason).inc()


def record_circuit_transition(circuit: str, to_state: str) -> None:
    """Record a circuit breaker transition and update the state gauge."""
    circuit_breaker_transitions_total.labels(circuit=circuit, to_state=to_state).inc()
    circuit_breaker_state.labels(circuit=circuit).set(CIRCUIT_STATE_VALUES.get(to_state, 0))


def record_async_outcome(outcome: str) -> None:
    async_requests_total.labels(outcome=outcome).inc()


def record_async_discarded() -> None:
    async_discarded_results_total.inc()


def update_resource_metrics() -> None:
    """Sample host CPU and memory. Failures are logged, never raised into a scrape."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
