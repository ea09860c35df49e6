"""
Unit tests for Prometheus metrics helpers.
"""
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from spai.core.metrics import (
    CIRCUIT_STATE_VALUES,
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_ai_request,
    record_async_outcome,
    record_cache_flush,
    record_cache_hit,
    record_cache_miss,
    record_circuit_transition,
    record_http_request,
    record_llm_fallback,
    record_llm_request,
    record_llm_retry,
    update_cache_entries,
    update_resource_metrics,
)


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api/chat/ask", "/api/chat/ask"),
        ("/api/chat/ask?prompt=hi", "/api/chat/ask"),
        ("/api/recipes/saved/42", "/api/recipes/saved/{id}"),
        ("/api/travel/saved/7", "/api/travel/saved/{id}"),
        ("/api/travel/saved/search", "/api/travel/saved/search"),
        ("/api/chat/session/abc-123", "/api/chat/session/{session_id}"),
        ("/admin/circuits/travel/reset", "/admin/circuits/{name}/reset"),
        ("/health", "/health"),
    ],
)
def test_normalize_endpoint(path, expected):
    assert normalize_endpoint(path) == expected


def test_record_http_request_counts_errors():
    labels = {"method": "GET", "endpoint": "/api/metrics-test", "status": "429"}
    before = sample("http_requests_total", labels)
    before_errors = sample(
        "http_errors_total",
        {"method": "GET", "endpoint": "/api/metrics-test", "status_code": "429"},
    )

    record_http_request("GET", "/api/metrics-test", 429, 0.01)

    assert sample("http_requests_total", labels) == before + 1
    assert sample(
        "http_errors_total",
        {"method": "GET", "endpoint": "/api/metrics-test", "status_code": "429"},
    ) == before_errors + 1


def test_record_ai_request():
    labels = {"domain": "metrics-test", "outcome": "fallback"}
    before = sample("ai_requests_total", labels)
    record_ai_request("metrics-test", "fallback")
    assert sample("ai_requests_total", labels) == before + 1


def test_cache_metrics():
    labels = {"cache_type": "metrics-test"}
    hits, misses, flushes = (
        sample("cache_hits_total", labels),
        sample("cache_misses_total", labels),
        sample("cache_flushes_total"),
    )

    record_cache_hit("metrics-test")
    record_cache_miss("metrics-test")
    record_cache_flush()
    update_cache_entries("metrics-test", 7)

    assert sample("cache_hits_total", labels) == hits + 1
    assert sample("cache_misses_total", labels) == misses + 1
    assert sample("cache_flushes_total") == flushes + 1
    assert sample("cache_entries", labels) == 7


def test_llm_metrics():
    before = sample("llm_requests_total", {"domain": "metrics-test", "status": "success"})
    retries = sample("llm_retries_total", {"domain": "metrics-test"})
    fallbacks = sample("llm_fallbacks_total", {"domain": "metrics-test", "reason": "circuit_open"})

    record_llm_request("metrics-test", "success", 0.3)
    record_llm_retry("metrics-test")
    record_llm_fallback("metrics-test", "circuit_open")

    assert sample("llm_requests_total", {"domain": "metrics-test", "status": "success"}) == before + 1
    assert sample("llm_retries_total", {"domain": "metrics-test"}) == retries + 1
    assert sample("llm_fallbacks_total", {"domain": "metrics-test", "reason": "circuit_open"}) == fallbacks + 1
    assert sample("llm_request_duration_seconds_count", {"domain": "metrics-test"}) >= 1


@pytest.mark.parametrize("state", ["closed", "half_open", "open"])
def test_circuit_state_gauge(state):
    record_circuit_transition("metrics-test", state)
    assert sample("circuit_breaker_state", {"circuit": "metrics-test"}) == CIRCUIT_STATE_VALUES[state]


def test_async_outcome_counter():
    before = sample("async_requests_total", {"outcome": "timeout"})
    record_async_outcome("timeout")
    assert sample("async_requests_total", {"outcome": "timeout"}) == before + 1


def test_resource_metrics_use_psutil():
    with patch("spai.core.metrics.psutil") as mock_psutil:
        mock_psutil.cpu_percent.return_value = 42.0
        mock_psutil.virtual_memory.return_value.used = 1024
        update_resource_metrics()

    assert sample("system_cpu_usage_percent") == 42.0
    assert sample("system_memory_usage_bytes") == 1024


def test_resource_metrics_failure_is_logged_not_raised():
    with patch("spai.core.metrics.psutil") as mock_psutil:
        mock_psutil.cpu_percent.side_effect = RuntimeError("no /proc")
        update_resource_metrics()


def test_exposition_format():
    body = get_metrics().decode()
    assert "ai_requests_total" in body
    assert "circuit_breaker_state" in body
    assert get_metrics_content_type().startswith("text/plain")
