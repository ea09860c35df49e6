"""
OpenTelemetry setup and span helpers.

Spans emitted by the service:
- FastAPI request spans (auto-instrumented)
- ai.orchestrate: one per orchestrated request (ai.domain, ai.outcome, ai.from_cache)
- llm.complete: one per backend attempt (llm.model, ai.domain, llm.status)

Environment:
- OTEL_SERVICE_NAME (default spai_backend)
- OTEL_EXPORTER_OTLP_ENDPOINT: spans are exported over OTLP/gRPC only when set
- OTEL_TRACES_SAMPLER_ARG: root sampling ratio, default 1.0

Until configure_tracing() runs, the API's no-op tracer is in effect.
"""
import os
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode, Tracer

from .logging import get_logger

logger = get_logger(__name__)

TRACER_NAME = "spai"
SERVICE_VERSION = "1.0.0"

_tracer_provider: Optional[TracerProvider] = None


def _build_provider(service_name: str, sampling_rate: float) -> TracerProvider:
    resource = Resource.create({"service.name": service_name, "service.version": SERVICE_VERSION})
    return TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(sampling_rate)))


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: Optional[float] = None,
) -> None:
    """
    Install a tracer provider as the global one.

    Arguments left as None are read from the OTEL_* variables above. A
    failing exporter setup is logged and tracing continues without export.
    """
    global _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME") or "spai_backend"
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if sampling_rate is None:
        sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG") or 1.0)

    provider = _build_provider(service_name, sampling_rate)
    if otlp_endpoint:
        try:
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
            )
            otlp_endpoint = None

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_endpoint=otlp_endpoint,
    )


def get_tracer() -> Tracer:
    return trace.get_tracer(TRACER_NAME)


def get_trace_id_from_context() -> Optional[str]:
    """Hex trace id of the active span, or None outside a recorded span."""
    ctx = trace.get_current_span().get_span_context()
    return format(ctx.trace_id, "032x") if ctx.is_valid else None


def set_span_attribute(key: str, value: Any) -> None:
    trace.get_current_span().set_attribute(key, value)


def record_exception(exception: BaseException) -> None:
    """Attach the exception to the active span and mark the span as an error."""
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def instrument_fastapi(app) -> None:
    try:
        FastAPIInstrumentor.instrument_app(app)
    except Exception as e:
        logger.warning("tracing_fastapi_instrumentation_failed", error=str(e), error_type=type(e).__name__)


def shutdown_tracing() -> None:
    """Flush pending spans. Safe to call when tracing was never configured."""
    global _tracer_provider
    provider, _tracer_provider = _tracer_provider, None
    if provider is None:
        return
    try:
        provider.shutdown()
    except Exception as e:
        logger.warning("tracing_shutdown_failed", error=str(e), error_type=type(e).__name__)
