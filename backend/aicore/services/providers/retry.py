"""
Bounded exponential-backoff retry for upstream calls.

Delay for attempt ``n`` (0-based) is ``min(initial * multiplier**n, max)``
plus up to 25% random jitter so that concurrent callers do not retry in
lockstep. A ``Retry-After`` hint from the upstream lengthens the delay but
never past the configured cap.

Only transient failures are retried: transient network errors, HTTP-like
statuses {408, 429, 500, 502, 503, 504}, and messages that look like rate
limits, timeouts or dropped connections. Anything else propagates
immediately. When attempts run out the last error is re-raised as is.
"""
import asyncio
import errno
import functools
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from aicore.core.config import Settings
from aicore.core.logging import get_logger
from aicore.core.metrics import record_upstream_retry

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

TRANSIENT_ERRNOS = frozenset({
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.EPIPE,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ECONNABORTED,
})

TRANSIENT_EXCEPTION_TYPES = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    ConnectionError,
    asyncio.TimeoutError,
)

RETRYABLE_MESSAGE_PATTERN = re.compile(
    r"rate.?limit|too many requests|timeout|timed out|connection (?:reset|refused|error|aborted)|socket hang up",
    re.IGNORECASE,
)

JITTER_RATIO = 0.25


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay_ms=settings.retry_initial_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (worth retrying) or permanent."""
    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    if getattr(error, "errno", None) in TRANSIENT_ERRNOS:
        return True

    if isinstance(error, TRANSIENT_EXCEPTION_TYPES):
        return True

    status = _status_code(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    return bool(RETRYABLE_MESSAGE_PATTERN.search(str(error)))


def retry_after_seconds(error: BaseException) -> Optional[float]:
    """Retry hint in seconds, from ``error.retry_after`` or a ``Retry-After`` response header."""
    hint = getattr(error, "retry_after", None)
    if isinstance(hint, (int, float)) and hint >= 0:
        return float(hint)

    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def base_delay_ms(attempt: int, policy: RetryPolicy) -> float:
    """Backoff delay before jitter; non-decreasing in ``attempt`` up to the cap."""
    return min(policy.initial_delay_ms * (policy.backoff_multiplier ** attempt), policy.max_delay_ms)


def compute_delay_ms(
    attempt: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random,
) -> float:
    delay = base_delay_ms(attempt, policy)
    if policy.jitter:
        delay += delay * JITTER_RATIO * rng()
    return delay


def _retry_wait(policy: RetryPolicy) -> Callable[[RetryCallState], float]:
    """Tenacity wait: jittered backoff, lengthened by a Retry-After hint up to the cap."""

    def wait(retry_state: RetryCallState) -> float:
        delay_ms = compute_delay_ms(retry_state.attempt_number - 1, policy)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        hint = retry_after_seconds(error) if error is not None else None
        if hint is not None:
            delay_ms = min(max(delay_ms, hint * 1000.0), policy.max_delay_ms)
        return delay_ms / 1000.0

    return wait


def _log_before_sleep(operation_name: str, total_attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay_seconds = retry_state.next_action.sleep if retry_state.next_action else 0.0
        record_upstream_retry(operation_name)
        logger.info(
            "upstream_retry",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            max_attempts=total_attempts,
            delay_ms=round(delay_seconds * 1000.0, 1),
            error=str(error),
            error_type=type(error).__name__,
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    operation_name: str = "upstream_call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with up to ``policy.max_retries`` retries.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Backoff policy (defaults to RetryPolicy())
        is_retryable: Custom classifier (defaults to is_retryable_error)
        operation_name: Label for logs and metrics
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The first successful result.
    """
    policy = policy or RetryPolicy()
    classify = is_retryable or is_retryable_error
    total_attempts = policy.max_retries + 1
    attempts = 0

    async def attempt_once() -> T:
        nonlocal attempts
        attempts += 1
        return await operation()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(total_attempts),
        wait=_retry_wait(policy),
        retry=retry_if_exception(classify),
        before_sleep=_log_before_sleep(operation_name, total_attempts),
        sleep=sleep,
        reraise=True,
    )

    try:
        return await retrying(attempt_once)
    except Exception as error:
        if attempts > 1:
            logger.warning(
                "upstream_retry_exhausted" if attempts == total_attempts else "upstream_retry_aborted",
                operation=operation_name,
                attempts=attempts,
                error=str(error),
                error_type=type(error).__name__,
            )
        raise


def retryable(
    policy: Optional[RetryPolicy] = None,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
):
    """Decorator form of ``with_retry`` for async functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await with_retry(
                lambda: func(*args, **kwargs),
                policy=policy,
                is_retryable=is_retryable,
                operation_name=func.__qualname__,
            )

        return wrapper

    return decorator
