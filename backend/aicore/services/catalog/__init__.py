"""Model catalog, static registry and provider health tracking."""

from .catalog import ModelCatalog
from .health import ProviderHealthChecker, ProviderHealthStore, ProviderStatus, validate_key_format
from .registry import ANTHROPIC, DEFAULT_MODELS, OPENAI

__all__ = [
    "ANTHROPIC",
    "DEFAULT_MODELS",
    "ModelCatalog",
    "OPENAI",
    "ProviderHealthChecker",
    "ProviderHealthStore",
    "ProviderStatus",
    "validate_key_format",
]
