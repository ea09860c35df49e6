"""
Application settings.

All tunables are read from environment variables once at startup and kept
in an immutable Settings object. Components take their values through
constructor arguments, so tests build them directly with small numbers.

Environment configuration:
- RATE_LIMIT_MAX_REQUESTS / RATE_LIMIT_WINDOW_SECONDS: admission ceiling per subject (default 10 per 60s)
- CACHE_CLEAR_INTERVAL_SECONDS: full cache flush interval (default 3600)
- RETRY_MAX_ATTEMPTS / RETRY_BASE_DELAY_SECONDS / RETRY_MAX_DELAY_SECONDS: backend retry policy
- CIRCUIT_*: circuit breaker thresholds and cool-down
- ASYNC_TIMEOUT_SECONDS / ASYNC_MAX_WORKERS: async gateway
- LLM_API_BASE / LLM_API_KEY / LLM_MODEL / LLM_TIMEOUT_SECONDS: text-completion backend
- TRAVEL_MAX_DAYS: upper bound on itinerary length (default 30)
- LOG_LEVEL / LOG_JSON / SERVICE_NAME: logging
- CORS_ORIGINS: comma separated allowed origins
- HOST / PORT: bind address for the uvicorn server started by `spai-backend`

Values from backend/.env are loaded first when the file exists; variables
already set in the process environment win.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# backend/.env, next to the spai package
ENV_PATH = Path(__file__).resolve().parents[2] / ".env"


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    return _env_str(name, "true" if default else "false").lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    # Admission control
    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: float = 60.0

    # Response cache
    cache_clear_interval_seconds: float = 3600.0

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 5.0

    # Circuit breaker
    circuit_failure_rate_threshold: float = 0.5
    circuit_window_seconds: float = 60.0
    circuit_min_calls: int = 5
    circuit_open_seconds: float = 60.0
    circuit_half_open_max_calls: int = 1
    circuit_half_open_success_threshold: int = 1

    # Async gateway
    async_timeout_seconds: float = 60.0
    async_max_workers: int = 8

    # Text-completion backend (OpenAI-compatible, e.g. Ollama)
    llm_api_base: str = "http://localhost:11434/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "llama3.2:1b"
    llm_timeout_seconds: float = 60.0

    # Travel input guard
    travel_max_days: int = 30

    # Logging / HTTP
    log_level: str = "INFO"
    log_json: bool = True
    service_name: str = "spai_backend"
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    host: str = "0.0.0.0"
    port: int = 8000

    def __post_init__(self):
        if self.rate_limit_max_requests < 1:
            raise ValueError("rate_limit_max_requests must be >= 1")
        if self.rate_limit_window_seconds <= 0:
            raise ValueError("rate_limit_window_seconds must be > 0")
        if self.cache_clear_interval_seconds <= 0:
            raise ValueError("cache_clear_interval_seconds must be > 0")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be >= 1")
        if not 0.0 < self.circuit_failure_rate_threshold <= 1.0:
            raise ValueError("circuit_failure_rate_threshold must be in (0, 1]")
        if self.circuit_min_calls < 1:
            raise ValueError("circuit_min_calls must be >= 1")
        if self.circuit_half_open_max_calls < 1 or self.circuit_half_open_success_threshold < 1:
            raise ValueError("half-open call limits must be >= 1")
        if self.async_timeout_seconds <= 0:
            raise ValueError("async_timeout_seconds must be > 0")
        if self.async_max_workers < 1:
            raise ValueError("async_max_workers must be >= 1")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (invalid values raise ValueError)."""
        origins = _env_str("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            rate_limit_max_requests=_env_int("RATE_LIMIT_MAX_REQUESTS", 10),
            rate_limit_window_seconds=_env_float("RATE_LIMIT_WINDOW_SECONDS", 60.0),
            cache_clear_interval_seconds=_env_float("CACHE_CLEAR_INTERVAL_SECONDS", 3600.0),
            retry_max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay_seconds=_env_float("RETRY_BASE_DELAY_SECONDS", 0.5),
            retry_max_delay_seconds=_env_float("RETRY_MAX_DELAY_SECONDS", 5.0),
            circuit_failure_rate_threshold=_env_float("CIRCUIT_FAILURE_RATE_THRESHOLD", 0.5),
            circuit_window_seconds=_env_float("CIRCUIT_WINDOW_SECONDS", 60.0),
            circuit_min_calls=_env_int("CIRCUIT_MIN_CALLS", 5),
            circuit_open_seconds=_env_float("CIRCUIT_OPEN_SECONDS", 60.0),
            circuit_half_open_max_calls=_env_int("CIRCUIT_HALF_OPEN_MAX_CALLS", 1),
            circuit_half_open_success_threshold=_env_int("CIRCUIT_HALF_OPEN_SUCCESS_THRESHOLD", 1),
            async_timeout_seconds=_env_float("ASYNC_TIMEOUT_SECONDS", 60.0),
            async_max_workers=_env_int("ASYNC_MAX_WORKERS", 8),
            llm_api_base=_env_str("LLM_API_BASE", "http://localhost:11434/v1"),
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            llm_model=_env_str("LLM_MODEL", "llama3.2:1b"),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 60.0),
            travel_max_days=_env_int("TRAVEL_MAX_DAYS", 30),
            log_level=_env_str("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            service_name=_env_str("SERVICE_NAME", "spai_backend"),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            host=_env_str("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH)
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (next get_settings() re-reads the environment)."""
    global _settings
    _settings = None
