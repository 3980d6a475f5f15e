"""
Environment-driven configuration for the orchestration core.

Values are read once from the process environment (after loading a local
``.env`` file, if present) into a validated ``Settings`` model and exposed
through the ``get_settings()`` accessor.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

PRODUCTION_HEALTH_TTL_SECONDS = 30 * 60
DEFAULT_HEALTH_TTL_SECONDS = 5 * 60


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Settings(BaseModel):
    """Runtime settings for providers, retry, cache, routing and observability."""

    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True

    openai_api_key: Optional[str] = None
    openai_api_base: str = "https://api.openai.com/v1"
    anthropic_api_key: Optional[str] = None
    anthropic_api_base: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    provider_timeout_seconds: float = Field(60.0, gt=0)

    retry_max_retries: int = Field(3, ge=0)
    retry_initial_delay_ms: float = Field(1000.0, ge=0)
    retry_max_delay_ms: float = Field(30000.0, ge=0)
    retry_backoff_multiplier: float = Field(2.0, ge=1.0)

    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(3600, gt=0)
    cache_prefix: str = "aicore:ai:cache"
    smart_routing_enabled: bool = True
    record_cache_hits: bool = True

    health_ttl_seconds: Optional[int] = None

    redis_url: str = "redis://localhost:6379"

    otel_service_name: str = "aicore_orchestrator"
    otel_exporter_otlp_endpoint: Optional[str] = None
    otel_traces_sampler_arg: float = Field(1.0, ge=0.0, le=1.0)

    @field_validator("openai_api_key", "anthropic_api_key", "otel_exporter_otlp_endpoint")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def effective_health_ttl_seconds(self) -> int:
        if self.health_ttl_seconds is not None:
            return self.health_ttl_seconds
        return PRODUCTION_HEALTH_TTL_SECONDS if self.is_production else DEFAULT_HEALTH_TTL_SECONDS

    @classmethod
    def from_env(cls) -> "Settings":
        health_ttl = os.getenv("AI_HEALTH_TTL_SECONDS")
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_api_base=os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_api_base=os.getenv("ANTHROPIC_API_BASE", "https://api.anthropic.com/v1"),
            anthropic_version=os.getenv("ANTHROPIC_VERSION", "2023-06-01"),
            provider_timeout_seconds=_env_float("AI_PROVIDER_TIMEOUT_SECONDS", 60.0),
            retry_max_retries=_env_int("AI_RETRY_MAX_RETRIES", 3),
            retry_initial_delay_ms=_env_float("AI_RETRY_INITIAL_DELAY_MS", 1000.0),
            retry_max_delay_ms=_env_float("AI_RETRY_MAX_DELAY_MS", 30000.0),
            retry_backoff_multiplier=_env_float("AI_RETRY_BACKOFF_MULTIPLIER", 2.0),
            cache_enabled=_env_bool("AI_CACHE_ENABLED", True),
            cache_ttl_seconds=_env_int("AI_CACHE_TTL_SECONDS", 3600),
            cache_prefix=os.getenv("AI_CACHE_PREFIX", "aicore:ai:cache"),
            smart_routing_enabled=_env_bool("AI_SMART_ROUTING_ENABLED", True),
            record_cache_hits=_env_bool("AI_RECORD_CACHE_HITS", True),
            health_ttl_seconds=int(health_ttl) if health_ttl else None,
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            otel_service_name=os.getenv("OTEL_SERVICE_NAME", "aicore_orchestrator"),
            otel_exporter_otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
            otel_traces_sampler_arg=_env_float("OTEL_TRACES_SAMPLER_ARG", 1.0),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings()`` re-reads the environment."""
    global _settings
    _settings = None
