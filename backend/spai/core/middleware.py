"""
HTTP middleware that binds the request log context.

Trace id precedence: X-Trace-ID header, X-Request-ID header, the active
OpenTelemetry span (formatted as a UUID), then a fresh UUID. A request id
is always generated. Both are echoed in the response headers.

Route handlers read request.state.start_time and request.state.request_id
to fill processing_time_ms and request_id in the response envelope.
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import bind_request_context, clear_request_context, get_logger, new_id
from .metrics import record_http_request
from .tracing import get_trace_id_from_context, record_exception, set_span_attribute

logger = get_logger(__name__)

TRACE_HEADERS = ("X-Trace-ID", "X-Request-ID")


def _as_uuid(hex_id: str) -> str:
    if len(hex_id) != 32:
        return hex_id
    return "-".join((hex_id[:8], hex_id[8:12], hex_id[12:16], hex_id[16:20], hex_id[20:]))


def resolve_trace_id(request: Request) -> str:
    for header in TRACE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    otel_trace_id = get_trace_id_from_context()
    return _as_uuid(otel_trace_id) if otel_trace_id else new_id()


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Bind trace/request/user ids, log the request and record RED metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = resolve_trace_id(request)
        request_id = new_id()
        bind_request_context(
            trace_id=trace_id,
            request_id=request_id,
            user_id=request.headers.get("X-User-ID") or request.query_params.get("userId"),
        )
        request.state.start_time = time.time()
        request.state.request_id = request_id

        method, path = request.method, request.url.path
        logger.info(
            "request_started",
            method=method,
            path=path,
            client_host=request.client.host if request.client else None,
        )
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.time() - request.state.start_time
            record_exception(e)
            record_http_request(method, path, 500, elapsed)
            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int(elapsed * 1000),
                exc_info=True,
            )
            raise
        else:
            elapsed = time.time() - request.state.start_time
            set_span_attribute("http.response.latency_ms", int(elapsed * 1000))
            record_http_request(method, path, response.status_code, elapsed)
            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=response.status_code,
                latency_ms=int(elapsed * 1000),
            )
            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_request_context()
