"""
Unit tests for the circuit breaker.
"""
import time

import pytest

from aicore.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState


def fail():
    raise RuntimeError("upstream down")


def test_circuit_breaker_closed_state():
    """Test circuit breaker in closed state (normal operation)."""
    cb = CircuitBreaker("test", failure_threshold=0.5, time_window_seconds=60)

    assert cb.state == CircuitState.CLOSED
    assert cb.call(lambda: "success") == "success"


def test_circuit_opens_at_error_rate_threshold():
    cb = CircuitBreaker("test", failure_threshold=0.5, min_requests_for_threshold=10)

    for _ in range(5):
        cb.call(lambda: "ok")
    for _ in range(4):
        with pytest.raises(RuntimeError):
            cb.call(fail)

    # 9 requests: below the minimum sample size
    assert cb.state == CircuitState.CLOSED

    with pytest.raises(RuntimeError):
        cb.call(fail)

    assert cb.state == CircuitState.OPEN


def test_circuit_breaker_open_state():
    """Test circuit breaker in open state (bypasses service)."""
    cb = CircuitBreaker("test", failure_threshold=0.5, time_window_seconds=60)
    cb._state = CircuitState.OPEN
    cb._opened_at = time.time()

    with pytest.raises(CircuitBreakerOpenError):
        cb.call(lambda: "should not execute")


def test_open_circuit_moves_to_half_open_after_open_duration():
    cb = CircuitBreaker("test", open_duration_seconds=30)
    cb._state = CircuitState.OPEN
    cb._opened_at = time.time() - 31

    assert cb.state == CircuitState.HALF_OPEN


def test_circuit_breaker_half_open_state():
    """Only a fraction of traffic is let through while half-open."""
    cb = CircuitBreaker("test", half_open_test_percentage=0.1)
    cb._state = CircuitState.HALF_OPEN

    skipped_count = 0
    for _ in range(10):
        try:
            cb.call(lambda: "success")
        except CircuitBreakerOpenError:
            skipped_count += 1

    assert skipped_count == 9


def test_half_open_closes_after_successful_probes():
    cb = CircuitBreaker("test")
    cb._state = CircuitState.HALF_OPEN

    for _ in range(5):
        cb.record_success()

    assert cb.state == CircuitState.CLOSED


def test_half_open_reopens_after_failed_probes():
    cb = CircuitBreaker("test")
    cb._state = CircuitState.HALF_OPEN

    for _ in range(3):
        cb.record_failure()
    for _ in range(2):
        cb.record_success()

    assert cb.state == CircuitState.OPEN


def test_is_failure_predicate_filters_caller_errors():
    """Errors the predicate rejects propagate but count as healthy round trips."""
    cb = CircuitBreaker(
        "test",
        min_requests_for_threshold=2,
        is_failure=lambda exc: not isinstance(exc, ValueError),
    )

    for _ in range(3):
        with pytest.raises(ValueError):
            cb.call(lambda: int("not a number"))

    assert cb.state == CircuitState.CLOSED
    assert cb.get_metrics()["recent_failures"] == 0


@pytest.mark.asyncio
async def test_circuit_breaker_async():
    cb = CircuitBreaker("test", min_requests_for_threshold=1)

    async def async_func(value):
        return value * 2

    async def async_fail():
        raise ConnectionError("reset")

    assert await cb.call_async(async_func, 21) == 42
    with pytest.raises(ConnectionError):
        await cb.call_async(async_fail)
    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(async_func, 1)


def test_circuit_breaker_metrics():
    cb = CircuitBreaker("test")

    cb.call(lambda: "success")
    with pytest.raises(RuntimeError):
        cb.call(fail)

    metrics = cb.get_metrics()
    assert metrics["name"] == "test"
    assert metrics["state"] == "closed"
    assert metrics["recent_requests"] == 2
    assert metrics["recent_failures"] == 1
    assert metrics["error_rate"] == 0.5
