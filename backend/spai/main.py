"""
FastAPI application: AI chat, recipe and travel endpoints behind the
orchestration layer.

Run: spai-backend  (or: uvicorn spai.main:app --host 0.0.0.0 --port 8000)
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    shutdown_tracing,
)
from .routes import admin, chat, health, metrics, recipes, travel
from .routes.responses import error_response
from .services.ai.llm_client import close_llm_client
from .services.ai.orchestration import get_orchestrator
from .services.history import PermissionDeniedError, RecordNotFoundError

settings = get_settings()

# JSON output in production (containerized), console output in development
configure_logging(
    log_level=settings.log_level,
    service_name=settings.service_name,
    json_output=settings.log_json,
)

logger = get_logger(__name__)

configure_tracing(service_name=settings.service_name)

app = FastAPI(
    title="SpAI API",
    description="AI chat, recipe and travel planning with resilient request orchestration",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must be added after CORS so it wraps the routes directly
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)


@app.on_event("startup")
async def start_orchestration():
    """Start the cache eviction schedule."""
    get_orchestrator().start()
    logger.info("orchestration_started", service=settings.service_name)


@app.on_event("shutdown")
async def stop_orchestration():
    """Stop the scheduler and worker pool, then release the HTTP pool and flush spans."""
    get_orchestrator().shutdown()
    close_llm_client()
    shutdown_tracing()
    logger.info("orchestration_stopped")


def _with_trace_header(response, trace_id):
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed parameters or body are a caller fault (400)."""
    errors = exc.errors()
    fields = [".".join(str(p) for p in e.get("loc", ())[1:]) for e in errors]
    logger.warning("request_validation_failed", path=request.url.path, fields=fields)
    message = "Invalid request: " + ", ".join(f for f in fields if f) if fields else "Invalid request"
    return _with_trace_header(error_response(request, 400, message), get_trace_id())


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    logger.warning("history_permission_denied", kind=exc.kind, record_id=str(exc.record_id))
    return _with_trace_header(error_response(request, 403, str(exc)), get_trace_id())


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request: Request, exc: RecordNotFoundError):
    logger.info("history_record_not_found", kind=exc.kind, record_id=str(exc.record_id))
    return _with_trace_header(error_response(request, 404, str(exc)), get_trace_id())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    response = error_response(request, exc.status_code, str(exc.detail))
    return _with_trace_header(response, get_trace_id() or get_trace_id_from_context())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Last resort: log and return a generic 500 envelope (never the raw error)."""
    trace_id = get_trace_id() or get_trace_id_from_context()
    record_exception(exc)
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = error_response(request, 500, "Internal server error")
    return _with_trace_header(response, trace_id)


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(recipes.router, prefix="/api/recipes", tags=["Recipes"])
app.include_router(travel.router, prefix="/api/travel", tags=["Travel"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


def run() -> None:
    """Console entry point: serve the app with uvicorn on HOST:PORT."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
