"""
Unit tests for environment-driven settings.
"""
import pytest
from pydantic import ValidationError

from aicore.core.config import Settings, get_settings, reset_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "ENVIRONMENT",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "AI_CACHE_ENABLED",
        "AI_CACHE_TTL_SECONDS",
        "AI_RETRY_MAX_RETRIES",
        "AI_HEALTH_TTL_SECONDS",
        "AI_SMART_ROUTING_ENABLED",
        "REDIS_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield monkeypatch
    reset_settings()


def test_defaults(clean_env):
    settings = Settings.from_env()

    assert settings.environment == "development"
    assert settings.retry_max_retries == 3
    assert settings.retry_initial_delay_ms == 1000.0
    assert settings.retry_max_delay_ms == 30000.0
    assert settings.cache_enabled is True
    assert settings.cache_ttl_seconds == 3600
    assert settings.smart_routing_enabled is True
    assert settings.openai_api_key is None


def test_reads_environment(clean_env):
    clean_env.setenv("OPENAI_API_KEY", "  sk-live-abc  ")
    clean_env.setenv("ANTHROPIC_API_KEY", "   ")
    clean_env.setenv("AI_CACHE_ENABLED", "false")
    clean_env.setenv("AI_CACHE_TTL_SECONDS", "600")
    clean_env.setenv("AI_RETRY_MAX_RETRIES", "5")
    clean_env.setenv("AI_SMART_ROUTING_ENABLED", "0")
    clean_env.setenv("REDIS_URL", "redis://cache:6379/1")

    settings = Settings.from_env()

    assert settings.openai_api_key == "sk-live-abc"
    assert settings.anthropic_api_key is None
    assert settings.cache_enabled is False
    assert settings.cache_ttl_seconds == 600
    assert settings.retry_max_retries == 5
    assert settings.smart_routing_enabled is False
    assert settings.redis_url == "redis://cache:6379/1"


def test_blank_values_fall_back_to_defaults(clean_env):
    clean_env.setenv("AI_CACHE_TTL_SECONDS", "")
    clean_env.setenv("AI_CACHE_ENABLED", " ")

    settings = Settings.from_env()

    assert settings.cache_ttl_seconds == 3600
    assert settings.cache_enabled is True


def test_invalid_values_are_rejected(clean_env):
    clean_env.setenv("AI_RETRY_MAX_RETRIES", "-1")

    with pytest.raises(ValidationError):
        Settings.from_env()


@pytest.mark.parametrize(
    "environment,override,expected",
    [
        ("development", None, 300),
        ("production", None, 1800),
        ("Production", None, 1800),
        ("production", 60, 60),
    ],
)
def test_effective_health_ttl(environment, override, expected):
    settings = Settings(environment=environment, health_ttl_seconds=override)

    assert settings.effective_health_ttl_seconds == expected


def test_health_ttl_from_environment(clean_env):
    clean_env.setenv("ENVIRONMENT", "production")
    clean_env.setenv("AI_HEALTH_TTL_SECONDS", "120")

    assert Settings.from_env().effective_health_ttl_seconds == 120


def test_get_settings_is_cached_until_reset(clean_env):
    first = get_settings()
    assert get_settings() is first

    clean_env.setenv("ENVIRONMENT", "staging")
    reset_settings()

    assert get_settings().environment == "staging"
