"""
Core infrastructure: configuration, errors, logging, metrics, tracing,
circuit breaking and the key-value store used by the semantic cache.
"""
