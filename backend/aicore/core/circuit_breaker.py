"""
Circuit breaker for upstream AI providers and the cache store.

Defaults:
- Failure threshold: 50% error rate over 1 minute
- Open duration: 30 seconds
- Half-open: test with 10% of traffic, close after 3 of 5 probes succeed
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional

from aicore.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, bypass upstream
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open and request is rejected."""


class CircuitBreaker:
    """
    Error-rate circuit breaker.

    ``is_failure`` decides which exceptions count against the error rate. An
    exception that is not a failure (for example a 400 caused by the caller)
    still propagates but is recorded as a healthy round trip.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        half_open_test_percentage: float = 0.1,
        min_requests_for_threshold: int = 10,
        is_failure: Optional[Callable[[BaseException], bool]] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_test_percentage = half_open_test_percentage
        self.min_requests_for_threshold = min_requests_for_threshold
        self.is_failure = is_failure or (lambda exc: True)

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._request_history: deque = deque()  # (timestamp, success: bool)
        self._opened_at: Optional[float] = None
        self._half_open_test_count = 0
        self._half_open_success_count = 0
        self._half_open_failure_count = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._update_state()
            return self._state

    def _update_state(self) -> None:
        now = time.time()

        cutoff_time = now - self.time_window_seconds
        while self._request_history and self._request_history[0][0] < cutoff_time:
            self._request_history.popleft()

        if self._state == CircuitState.OPEN:
            if self._opened_at and (now - self._opened_at) >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_test_count = 0
                self._half_open_success_count = 0
                self._half_open_failure_count = 0
                logger.info(
                    "circuit_breaker_half_open",
                    circuit_breaker=self.name,
                )

        elif self._state == CircuitState.CLOSED:
            if len(self._request_history) >= self.min_requests_for_threshold:
                failures = sum(1 for _, success in self._request_history if not success)
                total = len(self._request_history)
                error_rate = failures / total if total > 0 else 0.0

                if error_rate >= self.failure_threshold:
                    self._state = CircuitState.OPEN
                    self._opened_at = now
                    logger.warning(
                        "circuit_breaker_opened",
                        circuit_breaker=self.name,
                        error_rate=error_rate,
                        failures=failures,
                        total=total,
                    )

    def _should_test_half_open(self) -> bool:
        if self._state != CircuitState.HALF_OPEN:
            return False

        self._half_open_test_count += 1
        return (self._half_open_test_count % int(1 / self.half_open_test_percentage)) == 0

    def _record_result(self, success: bool) -> None:
        now = time.time()

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                if success:
                    self._half_open_success_count += 1
                else:
                    self._half_open_failure_count += 1

                total_tests = self._half_open_success_count + self._half_open_failure_count
                if total_tests >= 5:
                    if self._half_open_success_count >= 3:
                        self._state = CircuitState.CLOSED
                        self._opened_at = None
                        self._request_history.clear()
                        logger.info(
                            "circuit_breaker_closed",
                            circuit_breaker=self.name,
                            success_count=self._half_open_success_count,
                            failure_count=self._half_open_failure_count,
                        )
                    else:
                        self._state = CircuitState.OPEN
                        self._opened_at = now
                        logger.warning(
                            "circuit_breaker_reopened",
                            circuit_breaker=self.name,
                            success_count=self._half_open_success_count,
                            failure_count=self._half_open_failure_count,
                        )
            else:
                self._request_history.append((now, success))

    def _admit(self) -> None:
        state = self.state

        if state == CircuitState.OPEN:
            raise CircuitBreakerOpenError(
                f"Circuit breaker {self.name} is OPEN. Service unavailable."
            )

        if state == CircuitState.HALF_OPEN:
            with self._lock:
                admitted = self._should_test_half_open()
            if not admitted:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is HALF_OPEN. Skipping test request."
                )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a function with circuit breaker protection (sync)."""
        self._admit()

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            self._record_result(not self.is_failure(exc))
            raise
        self._record_result(True)
        return result

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Execute an async function with circuit breaker protection."""
        self._admit()

        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            self._record_result(not self.is_failure(exc))
            raise
        self._record_result(True)
        return result

    def record_success(self) -> None:
        """Record an outcome observed outside ``call``/``call_async`` (e.g. a finished stream)."""
        self._record_result(True)

    def record_failure(self) -> None:
        self._record_result(False)

    def get_metrics(self) -> dict:
        """Get circuit breaker metrics for monitoring."""
        with self._lock:
            self._update_state()

            now = time.time()
            cutoff_time = now - self.time_window_seconds
            recent_requests = [
                (ts, success) for ts, success in self._request_history
                if ts >= cutoff_time
            ]

            failures = sum(1 for _, success in recent_requests if not success)
            total = len(recent_requests)
            error_rate = failures / total if total > 0 else 0.0

            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": error_rate,
                "opened_at": self._opened_at,
                "half_open_tests": self._half_open_test_count,
                "half_open_successes": self._half_open_success_count,
                "half_open_failures": self._half_open_failure_count,
            }
