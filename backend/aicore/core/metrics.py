"""
Prometheus metrics for the orchestration core.

Metrics Categories:
- RED metrics per capability/model: request rate, errors, duration
- Upstream metrics: provider errors, retries, token volume, provider health
- Cost-saving metrics: semantic cache hits/misses, routing decisions
- Billing metrics: credits charged, credit rejections, cancelled streams

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from aicore.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# REQUEST METRICS
# ============================================================================

ai_requests_total = Counter(
    "ai_requests_total",
    "Total number of orchestrated AI requests",
    ["capability", "model", "status"],  # status: success | cached | error
    registry=registry,
)

ai_request_errors_total = Counter(
    "ai_request_errors_total",
    "Total number of orchestrated AI requests that failed",
    ["capability", "error_code"],
    registry=registry,
)

ai_request_duration_seconds = Histogram(
    "ai_request_duration_seconds",
    "End-to-end orchestrated AI request latency in seconds",
    ["capability", "provider"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=registry,
)

# ============================================================================
# UPSTREAM METRICS
# ============================================================================

ai_upstream_errors_total = Counter(
    "ai_upstream_errors_total",
    "Total number of normalized upstream provider errors",
    ["provider", "error_code"],
    registry=registry,
)

ai_upstream_retries_total = Counter(
    "ai_upstream_retries_total",
    "Total number of retried upstream calls",
    ["operation"],
    registry=registry,
)

ai_tokens_total = Counter(
    "ai_tokens_total",
    "Total tokens exchanged with upstream providers",
    ["provider", "model", "direction"],  # direction: input | output
    registry=registry,
)

ai_provider_healthy = Gauge(
    "ai_provider_healthy",
    "Provider health as last observed (1 healthy, 0 unhealthy)",
    ["provider"],
    registry=registry,
)

# ============================================================================
# COST-SAVING METRICS
# ============================================================================

ai_cache_hits_total = Counter(
    "ai_cache_hits_total",
    "Total number of semantic cache hits",
    ["scope"],  # shared | conversation
    registry=registry,
)

ai_cache_misses_total = Counter(
    "ai_cache_misses_total",
    "Total number of semantic cache misses",
    ["scope"],
    registry=registry,
)

ai_cache_errors_total = Counter(
    "ai_cache_errors_total",
    "Total number of swallowed cache store errors",
    ["operation"],
    registry=registry,
)

ai_routing_decisions_total = Counter(
    "ai_routing_decisions_total",
    "Total number of smart routing decisions",
    ["complexity", "routed"],
    registry=registry,
)

# ============================================================================
# BILLING METRICS
# ============================================================================

ai_credits_charged_total = Counter(
    "ai_credits_charged_total",
    "Total credits debited from wallets",
    ["capability", "wallet_type"],
    registry=registry,
)

ai_credit_rejections_total = Counter(
    "ai_credit_rejections_total",
    "Total number of requests rejected by the capacity check",
    ["reason"],
    registry=registry,
)

ai_stream_cancellations_total = Counter(
    "ai_stream_cancellations_total",
    "Total number of streams closed before completion (never charged)",
    ["provider"],
    registry=registry,
)


def record_request(capability: str, model: str, status: str) -> None:
    ai_requests_total.labels(capability=capability, model=model, status=status).inc()


def record_request_error(capability: str, error_code: str) -> None:
    ai_request_errors_total.labels(capability=capability, error_code=error_code).inc()


def record_request_duration(capability: str, provider: str, duration_seconds: float) -> None:
    ai_request_duration_seconds.labels(capability=capability, provider=provider).observe(duration_seconds)


def record_upstream_error(provider: str, error_code: str) -> None:
    ai_upstream_errors_total.labels(provider=provider, error_code=error_code).inc()


def record_upstream_retry(operation: str) -> None:
    ai_upstream_retries_total.labels(operation=operation).inc()


def record_tokens(provider: str, model: str, input_tokens: int, output_tokens: int) -> None:
    """Record token usage (no-op for zero counts)."""
    if input_tokens > 0:
        ai_tokens_total.labels(provider=provider, model=model, direction="input").inc(input_tokens)
    if output_tokens > 0:
        ai_tokens_total.labels(provider=provider, model=model, direction="output").inc(output_tokens)


def set_provider_health(provider: str, healthy: bool) -> None:
    ai_provider_healthy.labels(provider=provider).set(1 if healthy else 0)


def record_cache_hit(scope: str) -> None:
    ai_cache_hits_total.labels(scope=scope).inc()


def record_cache_miss(scope: str) -> None:
    ai_cache_misses_total.labels(scope=scope).inc()


def record_cache_error(operation: str) -> None:
    ai_cache_errors_total.labels(operation=operation).inc()


def record_routing_decision(complexity: str, routed: bool) -> None:
    ai_routing_decisions_total.labels(complexity=complexity, routed=str(routed).lower()).inc()


def record_credits_charged(capability: str, wallet_type: str, credits: float) -> None:
    if credits > 0:
        ai_credits_charged_total.labels(capability=capability, wallet_type=wallet_type).inc(credits)


def record_credit_rejection(reason: str) -> None:
    ai_credit_rejections_total.labels(reason=reason).inc()


def record_stream_cancellation(provider: str) -> None:
    ai_stream_cancellations_total.labels(provider=provider).inc()


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
