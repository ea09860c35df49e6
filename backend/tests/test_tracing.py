"""
Unit tests for OpenTelemetry tracing helpers.

Spans are captured with an SDK provider and an in-memory exporter that
is local to each test, so the process-wide provider is never replaced.
"""
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

import spai.core.tracing as tracing
from spai.core.config import Settings
from spai.core.tracing import (
    configure_tracing,
    get_trace_id_from_context,
    record_exception,
    set_span_attribute,
    shutdown_tracing,
)
from spai.services.ai.orchestration import Orchestrator


@pytest.fixture
def exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracer(exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider.get_tracer("test")


class TestSpanHelpers:
    def test_no_trace_id_outside_span(self):
        assert get_trace_id_from_context() is None

    def test_trace_id_is_32_hex_chars(self, tracer):
        with tracer.start_as_current_span("op") as span:
            trace_id = get_trace_id_from_context()

        assert trace_id == format(span.get_span_context().trace_id, "032x")
        assert len(trace_id) == 32

    def test_set_span_attribute(self, tracer, exporter):
        with tracer.start_as_current_span("op"):
            set_span_attribute("ai.domain", "recipe")

        assert exporter.get_finished_spans()[0].attributes["ai.domain"] == "recipe"

    def test_record_exception_marks_span_failed(self, tracer, exporter):
        with tracer.start_as_current_span("op"):
            record_exception(ValueError("boom"))

        span = exporter.get_finished_spans()[0]
        assert span.status.status_code == StatusCode.ERROR
        assert any(event.name == "exception" for event in span.events)


class TestConfiguration:
    def test_otlp_exporter_only_when_endpoint_set(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        with patch.object(tracing.trace, "set_tracer_provider"), \
                patch.object(tracing, "OTLPSpanExporter") as exporter_cls:
            configure_tracing(service_name="test_service")
            exporter_cls.assert_not_called()

            configure_tracing(service_name="test_service", otlp_endpoint="http://collector:4317")
            exporter_cls.assert_called_once_with(endpoint="http://collector:4317")

        shutdown_tracing()
        assert tracing._tracer_provider is None

    def test_sampling_rate_from_environment(self, monkeypatch):
        monkeypatch.setenv("OTEL_TRACES_SAMPLER_ARG", "0.25")
        with patch.object(tracing.trace, "set_tracer_provider") as set_provider:
            configure_tracing()

        provider = set_provider.call_args[0][0]
        assert "0.25" in provider.sampler.get_description()
        shutdown_tracing()

    def test_shutdown_without_configuration_is_noop(self):
        tracing._tracer_provider = None
        shutdown_tracing()

    def test_instrumentation_failure_is_logged(self):
        with patch.object(tracing.FastAPIInstrumentor, "instrument_app", side_effect=RuntimeError("x")):
            tracing.instrument_fastapi(MagicMock())


class TestOrchestrationSpans:
    def test_orchestrate_span_attributes(self, tracer, exporter):
        class Client:
            def complete(self, prompt, options=None):
                return "text"

        orchestrator = Orchestrator(Client(), settings=Settings())
        try:
            with patch("spai.services.ai.orchestration.get_tracer", return_value=tracer):
                orchestrator.chat("hello")
        finally:
            orchestrator.shutdown()

        span = next(s for s in exporter.get_finished_spans() if s.name == "ai.orchestrate")
        assert span.attributes["ai.domain"] == "chat"
        assert span.attributes["ai.outcome"] == "success"
        assert span.attributes["ai.from_cache"] is False
