"""Upstream provider adapters and the retry wrapper that guards every call."""

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderStream
from .openai import OpenAIAdapter
from .retry import RetryPolicy, is_retryable_error, retry_after_seconds, retryable, with_retry

__all__ = [
    "AnthropicAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderStream",
    "RetryPolicy",
    "is_retryable_error",
    "retry_after_seconds",
    "retryable",
    "with_retry",
]
