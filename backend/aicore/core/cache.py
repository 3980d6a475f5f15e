"""
Key-value store used by the semantic cache.

``CacheStore`` is the collaborator contract (get/set/scan/delete over string
values). ``RedisCacheStore`` implements it on ``redis.asyncio`` with a shared
connection pool and circuit breaker protection. Every store error is logged
and reported as a miss; the cache never fails a request.
"""
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from aicore.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from aicore.core.config import get_settings
from aicore.core.logging import get_logger

logger = get_logger(__name__)

_redis_pool: Optional[aioredis.Redis] = None
_cache_circuit_breaker: Optional[CircuitBreaker] = None


@runtime_checkable
class CacheStore(Protocol):
    """Key-value store reachable over get/set/scan/delete."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        ...

    async def keys_matching(self, pattern: str) -> List[str]:
        ...

    async def delete(self, keys: Sequence[str]) -> int:
        ...


async def initialize_redis(redis_url: Optional[str] = None) -> bool:
    """
    Initialize the Redis connection pool.

    Returns:
        True if initialization successful, False otherwise
    """
    global _redis_pool, _cache_circuit_breaker

    redis_url = redis_url or get_settings().redis_url
    try:
        logger.info("redis_initializing", url=redis_url)

        _redis_pool = aioredis.from_url(
            redis_url,
            max_connections=20,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            decode_responses=True,
        )
        await _redis_pool.ping()

        _cache_circuit_breaker = CircuitBreaker(
            name="redis_cache",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            half_open_test_percentage=0.1,
        )

        logger.info("redis_initialized")
        return True

    except Exception as e:
        logger.error(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _redis_pool = None
        return False


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool

    if _redis_pool:
        try:
            await _redis_pool.aclose()
            logger.info("redis_closed")
        except Exception as e:
            logger.error(
                "redis_close_failed",
                error=str(e),
                exc_info=True,
            )
        finally:
            _redis_pool = None


def get_redis_client() -> Optional[aioredis.Redis]:
    return _redis_pool


class RedisCacheStore:
    """
    ``CacheStore`` backed by Redis.

    Without a client (Redis not initialized) every read is a miss and every
    write is dropped, which keeps the request path working in local setups.
    """

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._client = client
        self._circuit_breaker = circuit_breaker

    @property
    def client(self) -> Optional[aioredis.Redis]:
        return self._client if self._client is not None else get_redis_client()

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._circuit_breaker if self._circuit_breaker is not None else _cache_circuit_breaker

    @circuit_breaker.setter
    def circuit_breaker(self, value: Optional[CircuitBreaker]) -> None:
        self._circuit_breaker = value

    def _circuit_open(self) -> bool:
        return self.circuit_breaker is not None and self.circuit_breaker.state == CircuitState.OPEN

    async def _call(self, func, *args, **kwargs):
        if self.circuit_breaker:
            return await self.circuit_breaker.call_async(func, *args, **kwargs)
        return await func(*args, **kwargs)

    async def get(self, key: str) -> Optional[str]:
        client = self.client
        if client is None:
            return None
        if self._circuit_open():
            logger.debug("cache_circuit_breaker_open", key=key)
            return None

        try:
            value = await self._call(client.get, key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return None
        except RedisError as e:
            logger.warning(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        except Exception as e:
            logger.error(
                "cache_get_unexpected_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return None

        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        client = self.client
        if client is None:
            return False
        if self._circuit_open():
            logger.debug("cache_circuit_breaker_open", key=key)
            return False

        try:
            await self._call(client.setex, key, ttl_seconds, value)
            return True
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return False
        except RedisError as e:
            logger.warning(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        except Exception as e:
            logger.error(
                "cache_set_unexpected_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

    async def keys_matching(self, pattern: str) -> List[str]:
        """Find keys with SCAN (never KEYS, which blocks the server)."""
        client = self.client
        if client is None or self._circuit_open():
            return []

        keys: List[str] = []
        try:
            async for key in client.scan_iter(match=pattern, count=100):
                keys.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        except RedisError as e:
            logger.warning(
                "cache_scan_error",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []
        return keys

    async def delete(self, keys: Sequence[str]) -> int:
        client = self.client
        if client is None or not keys or self._circuit_open():
            return 0

        try:
            return int(await self._call(client.delete, *keys))
        except CircuitBreakerOpenError:
            return 0
        except RedisError as e:
            logger.warning(
                "cache_delete_error",
                keys=len(keys),
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

    def get_circuit_breaker_metrics(self) -> Optional[dict]:
        if self.circuit_breaker:
            return self.circuit_breaker.get_metrics()
        return None


_cache_store: Optional[RedisCacheStore] = None


def get_cache_store() -> RedisCacheStore:
    """Get global Redis-backed cache store instance."""
    global _cache_store
    if _cache_store is None:
        _cache_store = RedisCacheStore()
    return _cache_store
