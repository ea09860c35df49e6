"""
Helpers that turn results into ApiResponse JSON envelopes.
"""
import time
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from spai.services.ai.schema import ApiResponse, OrchestrationResult, Outcome


def _request_meta(request: Request) -> dict:
    start_time = getattr(request.state, "start_time", None)
    processing_time_ms = int((time.time() - start_time) * 1000) if start_time else None
    return {
        "request_id": getattr(request.state, "request_id", None),
        "processing_time_ms": processing_time_ms,
    }


def orchestration_response(request: Request, result: OrchestrationResult) -> JSONResponse:
    """Map an orchestration result to status code, envelope and headers."""
    body = result.to_response(**_request_meta(request)).to_payload()
    headers = None
    if result.outcome == Outcome.REJECTED and result.retry_after_seconds is not None:
        headers = {"Retry-After": str(result.retry_after_seconds)}
    return JSONResponse(status_code=result.status_code, content=body, headers=headers)


def ok_response(request: Request, data: Any = None, message: Optional[str] = None) -> JSONResponse:
    body = ApiResponse.ok(data, message=message, **_request_meta(request)).to_payload()
    return JSONResponse(status_code=200, content=body)


def error_response(request: Request, status_code: int, error: str) -> JSONResponse:
    body = ApiResponse.fail(error, **_request_meta(request)).to_payload()
    return JSONResponse(status_code=status_code, content=body)
