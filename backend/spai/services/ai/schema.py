"""
Pydantic models for orchestration results and the HTTP envelope.

Three layers:
- InvocationResult: what one resilient backend invocation produced
  (Success / Fallback / Failure, never data and error together)
- OrchestrationResult: what one orchestrated request produced, including
  the two distinguished non-content outcomes (rejected, timeout)
- ApiResponse: the JSON envelope every endpoint returns
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InvocationKind(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    FAILURE = "failure"


class InvocationResult(BaseModel):
    """
    Tagged result of ResilientInvoker.invoke().

    SUCCESS and FALLBACK carry text; FAILURE carries error_kind only.
    """

    model_config = ConfigDict(frozen=True)

    kind: InvocationKind
    text: Optional[str] = None
    error_kind: Optional[str] = None

    @model_validator(mode="after")
    def check_tagged(self) -> "InvocationResult":
        if self.kind == InvocationKind.FAILURE:
            if self.text is not None or not self.error_kind:
                raise ValueError("failure carries error_kind and no text")
        elif self.text is None or self.error_kind is not None:
            raise ValueError(f"{self.kind.value} carries text and no error_kind")
        return self

    @classmethod
    def success(cls, text: str) -> "InvocationResult":
        return cls(kind=InvocationKind.SUCCESS, text=text)

    @classmethod
    def fallback(cls, text: str) -> "InvocationResult":
        return cls(kind=InvocationKind.FALLBACK, text=text)

    @classmethod
    def failure(cls, error_kind: str) -> "InvocationResult":
        return cls(kind=InvocationKind.FAILURE, error_kind=error_kind)


class Outcome(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    INVALID_INPUT = "invalid_input"
    FAILED = "failed"


_STATUS_CODES = {
    Outcome.SUCCESS: 200,
    Outcome.FALLBACK: 200,
    Outcome.REJECTED: 429,
    Outcome.TIMEOUT: 408,
    Outcome.INVALID_INPUT: 400,
    Outcome.FAILED: 500,
}

_ERROR_MESSAGES = {
    Outcome.REJECTED: "Too many requests",
    Outcome.TIMEOUT: "Request timeout",
    Outcome.FAILED: "Internal server error",
}


class OrchestrationResult(BaseModel):
    """Result of one orchestrated request (sync or async)."""

    domain: str
    outcome: Outcome
    data: Optional[str] = None
    error: Optional[str] = None
    from_cache: bool = False
    retry_after_seconds: Optional[int] = None

    @classmethod
    def success(cls, domain: str, text: str, from_cache: bool = False) -> "OrchestrationResult":
        return cls(domain=domain, outcome=Outcome.SUCCESS, data=text, from_cache=from_cache)

    @classmethod
    def fallback(cls, domain: str, text: str) -> "OrchestrationResult":
        return cls(domain=domain, outcome=Outcome.FALLBACK, data=text)

    @classmethod
    def rejected(cls, domain: str, retry_after_seconds: int) -> "OrchestrationResult":
        return cls(
            domain=domain,
            outcome=Outcome.REJECTED,
            error=_ERROR_MESSAGES[Outcome.REJECTED],
            retry_after_seconds=retry_after_seconds,
        )

    @classmethod
    def timeout(cls, domain: str) -> "OrchestrationResult":
        return cls(domain=domain, outcome=Outcome.TIMEOUT, error=_ERROR_MESSAGES[Outcome.TIMEOUT])

    @classmethod
    def invalid_input(cls, domain: str, message: str) -> "OrchestrationResult":
        return cls(domain=domain, outcome=Outcome.INVALID_INPUT, error=message)

    @classmethod
    def failed(cls, domain: str) -> "OrchestrationResult":
        return cls(domain=domain, outcome=Outcome.FAILED, error=_ERROR_MESSAGES[Outcome.FAILED])

    @property
    def success_flag(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.FALLBACK)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.outcome]

    def to_response(
        self,
        request_id: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> "ApiResponse":
        if self.success_flag:
            message = "Served fallback response" if self.outcome == Outcome.FALLBACK else None
            return ApiResponse.ok(
                self.data,
                message=message,
                request_id=request_id,
                processing_time_ms=processing_time_ms,
            )
        return ApiResponse.fail(
            self.error or _ERROR_MESSAGES[Outcome.FAILED],
            request_id=request_id,
            processing_time_ms=processing_time_ms,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiResponse(BaseModel):
    """JSON envelope shared by every endpoint (None fields are omitted)."""

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    request_id: Optional[str] = None
    processing_time_ms: Optional[int] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None, **kwargs) -> "ApiResponse":
        return cls(success=True, data=data, message=message, **kwargs)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None, **kwargs) -> "ApiResponse":
        return cls(success=False, error=error, message=message, **kwargs)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
