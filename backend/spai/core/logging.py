"""
structlog setup and per-request log context.

Four context fields follow a request through the service and are merged
into every log line while they are set:

    trace_id    from X-Trace-ID / X-Request-ID, the OTel span, or generated
    request_id  generated per HTTP request
    user_id     X-User-ID header or userId query parameter
    domain      chat / chat_options / recipe / travel, set by the orchestrator

They live in ContextVars. The async gateway runs work inside a copy of the
submitting context, so worker-thread log lines keep the same ids.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor

CONTEXT_FIELDS = ("trace_id", "request_id", "user_id", "domain")

_context: Dict[str, ContextVar] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

SERVICE_NAME = "spai_backend"


def add_request_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor: copy bound context fields and the service name into the event."""
    for name, var in _context.items():
        value = var.get()
        if value:
            event_dict.setdefault(name, value)
    event_dict["service"] = SERVICE_NAME
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True,
) -> None:
    """
    Install the structlog processor chain and route output to stdout.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ...)
        service_name: Value of the "service" field (keeps the current one when None)
        json_output: JSON lines when True, coloured console output otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            add_request_context,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**fields: Optional[str]) -> None:
    """
    Set context fields for the current task or thread.

    Raises:
        KeyError: for a name outside CONTEXT_FIELDS
    """
    for name, value in fields.items():
        _context[name].set(value)


def clear_request_context() -> None:
    for var in _context.values():
        var.set(None)


def get_context_value(name: str) -> Optional[str]:
    return _context[name].get()


def get_trace_id() -> Optional[str]:
    return _context["trace_id"].get()


def set_domain(domain: Optional[str]) -> None:
    """Tag subsequent log lines and backend metrics with the orchestration domain."""
    _context["domain"].set(domain)


def get_domain() -> Optional[str]:
    return _context["domain"].get()


def new_id() -> str:
    """Random UUID4 string, used for generated trace and request ids."""
    return str(uuid.uuid4())
