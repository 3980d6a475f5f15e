"""Complexity classification and downgrade-only model routing."""

from .complexity import ComplexityAssessment, QueryComplexity, assess_complexity, classify_complexity
from .router import SmartRouter

__all__ = [
    "ComplexityAssessment",
    "QueryComplexity",
    "SmartRouter",
    "assess_complexity",
    "classify_complexity",
]
