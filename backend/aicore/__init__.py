"""
AI request orchestration core.

Accepts capability-typed AI requests, routes them to upstream providers with
cost-saving heuristics (semantic cache, complexity-based downgrade), enforces
prepaid credit balances and plan limits, and meters the result.
"""

__version__ = "0.1.0"
