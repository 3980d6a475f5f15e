"""Semantic response cache for text generation."""

from .semantic_cache import SemanticCache, hash_prompt, is_cacheable, normalize_messages

__all__ = ["SemanticCache", "hash_prompt", "is_cacheable", "normalize_messages"]
