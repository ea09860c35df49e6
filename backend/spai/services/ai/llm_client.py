"""
Text-completion client for the generative backend.

Talks to an OpenAI-compatible /chat/completions API over plain HTTP
(httpx), so any compatible server works (Ollama, vLLM, OpenAI itself).
No vendor SDKs.

The client is deliberately thin: one attempt per complete() call, every
failure normalized into BackendError. Retries, circuit breaking and
fallbacks belong to the orchestration layer, not here.

Environment configuration (see spai.core.config):
- LLM_API_BASE: Base URL for API (default: http://localhost:11434/v1)
- LLM_API_KEY: Optional bearer token
- LLM_MODEL: Default model name (default: llama3.2:1b)
- LLM_TIMEOUT_SECONDS: Request timeout in seconds (default: 60)
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from spai.core.config import get_settings
from spai.core.logging import get_domain, get_logger
from spai.core.metrics import record_llm_request
from spai.core.tracing import get_tracer

logger = get_logger(__name__)


class BackendError(Exception):
    """Transport, HTTP status or payload failure from the completion backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call overrides for a completion request."""

    model: Optional[str] = None


class LLMClient:
    """Synchronous HTTP client for text completions."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str] = None,
        model: str = "llama3.2:1b",
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.api_base,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    def _build_payload(self, prompt: str, options: Optional[CompletionOptions]) -> Dict[str, Any]:
        return {
            "model": (options.model if options and options.model else self.model),
            "messages": [{"role": "user", "content": prompt}],
        }

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise BackendError("Malformed completion payload") from None
        return content or ""

    def complete(self, prompt: str, options: Optional[CompletionOptions] = None) -> str:
        """
        Request a completion for a single user prompt.

        Args:
            prompt: Prompt text
            options: Optional model override

        Returns:
            Completion text (may be empty)

        Raises:
            BackendError: on transport failure, non-2xx status or malformed payload
        """
        payload = self._build_payload(prompt, options)
        domain = get_domain() or "unknown"
        start = time.time()
        status = "error"

        with get_tracer().start_as_current_span("llm.complete") as span:
            span.set_attribute("llm.model", payload["model"])
            span.set_attribute("ai.domain", domain)
            try:
                response = self._client.post("/chat/completions", json=payload)
                response.raise_for_status()
                text = self._extract_text(response.json())
                status = "success"
                return text
            except httpx.TimeoutException as exc:
                logger.warning(
                    "llm_timeout",
                    domain=domain,
                    model=payload["model"],
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                span.record_exception(exc)
                raise BackendError(f"Completion request timed out: {exc}") from exc
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "llm_http_error",
                    domain=domain,
                    model=payload["model"],
                    status_code=exc.response.status_code,
                )
                span.record_exception(exc)
                raise BackendError(
                    f"Completion backend returned {exc.response.status_code}",
                    status_code=exc.response.status_code,
                ) from exc
            except httpx.HTTPError as exc:
                logger.warning(
                    "llm_transport_error",
                    domain=domain,
                    model=payload["model"],
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                span.record_exception(exc)
                raise BackendError(f"Completion request failed: {exc}") from exc
            except ValueError as exc:
                # Body was not JSON.
                logger.warning("llm_invalid_payload", domain=domain, error=str(exc))
                span.record_exception(exc)
                raise BackendError("Completion backend returned invalid JSON") from exc
            finally:
                record_llm_request(domain, status, time.time() - start)
                span.set_attribute("llm.status", status)

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._client.close()


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Global completion client built from settings."""
    global _llm_client
    if _llm_client is None:
        settings = get_settings()
        _llm_client = LLMClient(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )
        logger.info(
            "llm_client_initialized",
            api_base=settings.llm_api_base,
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    return _llm_client


def close_llm_client() -> None:
    """Close and forget the global client (shutdown hook)."""
    global _llm_client
    if _llm_client is not None:
        _llm_client.close()
        _llm_client = None
