"""
Unit tests for Prometheus metrics helpers.

Counters are process-global, so every assertion is made on the delta
around the call under test.
"""
from prometheus_client import REGISTRY

from aicore.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_cache_hit,
    record_cache_miss,
    record_credit_rejection,
    record_credits_charged,
    record_request,
    record_request_duration,
    record_routing_decision,
    record_stream_cancellation,
    record_tokens,
    record_upstream_retry,
    set_provider_health,
)


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestRequestMetrics:
    """RED metrics for orchestrated requests."""

    def test_record_request(self):
        labels = {"capability": "text-generation", "model": "metrics-test-model", "status": "success"}
        before = sample("ai_requests_total", **labels)

        record_request("text-generation", "metrics-test-model", "success")

        assert sample("ai_requests_total", **labels) == before + 1

    def test_record_request_duration(self):
        labels = {"capability": "text-embedding", "provider": "metrics-test"}
        before = sample("ai_request_duration_seconds_count", **labels)

        record_request_duration("text-embedding", "metrics-test", 0.3)

        assert sample("ai_request_duration_seconds_count", **labels) == before + 1
        assert sample("ai_request_duration_seconds_bucket", le="0.5", **labels) >= 1


class TestUpstreamMetrics:
    def test_record_tokens_by_direction(self):
        before_in = sample("ai_tokens_total", provider="p", model="metrics-tokens", direction="input")
        before_out = sample("ai_tokens_total", provider="p", model="metrics-tokens", direction="output")

        record_tokens("p", "metrics-tokens", 120, 0)

        assert sample("ai_tokens_total", provider="p", model="metrics-tokens", direction="input") == before_in + 120
        assert sample("ai_tokens_total", provider="p", model="metrics-tokens", direction="output") == before_out

    def test_record_upstream_retry(self):
        before = sample("ai_upstream_retries_total", operation="metrics.test")

        record_upstream_retry("metrics.test")
        record_upstream_retry("metrics.test")

        assert sample("ai_upstream_retries_total", operation="metrics.test") == before + 2

    def test_provider_health_gauge(self):
        set_provider_health("metrics-provider", True)
        assert sample("ai_provider_healthy", provider="metrics-provider") == 1.0

        set_provider_health("metrics-provider", False)
        assert sample("ai_provider_healthy", provider="metrics-provider") == 0.0


class TestCostMetrics:
    def test_cache_hits_and_misses(self):
        hits = sample("ai_cache_hits_total", scope="conversation")
        misses = sample("ai_cache_misses_total", scope="conversation")

        record_cache_hit("conversation")
        record_cache_miss("conversation")
        record_cache_miss("conversation")

        assert sample("ai_cache_hits_total", scope="conversation") == hits + 1
        assert sample("ai_cache_misses_total", scope="conversation") == misses + 2

    def test_routing_decision_labels(self):
        before = sample("ai_routing_decisions_total", complexity="simple", routed="true")

        record_routing_decision("simple", True)

        assert sample("ai_routing_decisions_total", complexity="simple", routed="true") == before + 1


class TestBillingMetrics:
    def test_zero_credit_charges_are_not_counted(self):
        labels = {"capability": "speech-synthesis", "wallet_type": "personal"}
        before = sample("ai_credits_charged_total", **labels)

        record_credits_charged("speech-synthesis", "personal", 0.0)
        record_credits_charged("speech-synthesis", "personal", 2.5)

        assert sample("ai_credits_charged_total", **labels) == before + 2.5

    def test_rejections_and_cancellations(self):
        rejections = sample("ai_credit_rejections_total", reason="plan_limit")
        cancellations = sample("ai_stream_cancellations_total", provider="metrics-stream")

        record_credit_rejection("plan_limit")
        record_stream_cancellation("metrics-stream")

        assert sample("ai_credit_rejections_total", reason="plan_limit") == rejections + 1
        assert sample("ai_stream_cancellations_total", provider="metrics-stream") == cancellations + 1


def test_metrics_exposition():
    record_request("text-generation", "exposition-model", "cached")

    body = get_metrics().decode("utf-8")

    assert "ai_requests_total" in body
    assert 'model="exposition-model"' in body
    assert get_metrics_content_type().startswith("text/plain")
