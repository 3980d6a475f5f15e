"""
Provider health tracking.

``ProviderHealthStore`` is the single owner of provider health state. It is
created once and passed into the catalog (which lists only healthy providers'
models) and the health checker (which refreshes it). Nothing here is module
global, so tests and multiple orchestrators can hold independent stores.

Health checks validate API keys cheaply: a well-formed key is required, then
an authenticated model-listing request is made. A 429 still proves the key is
valid. Check failures are logged and mark the provider unhealthy; they are
never raised to callers.
"""
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, List, Optional

import httpx

from aicore.core.config import Settings, get_settings
from aicore.core.logging import get_logger
from aicore.core.metrics import set_provider_health
from aicore.services.catalog.registry import ANTHROPIC, OPENAI

logger = get_logger(__name__)

KNOWN_PROVIDERS = (OPENAI, ANTHROPIC)


@dataclass
class ProviderStatus:
    provider: str
    healthy: bool
    checked_at: Optional[float] = None  # None = never validated upstream
    error: Optional[str] = None
    latency_ms: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "healthy": self.healthy,
            "checked_at": self.checked_at,
            "error": self.error,
            "latency_ms": self.latency_ms,
        }


@dataclass
class ProviderHealthStore:
    ttl_seconds: float = 300.0
    clock: Callable[[], float] = time.time
    _statuses: Dict[str, ProviderStatus] = field(default_factory=dict, init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def set_status(
        self,
        provider: str,
        healthy: bool,
        error: Optional[str] = None,
        latency_ms: Optional[float] = None,
        validated: bool = True,
    ) -> ProviderStatus:
        status = ProviderStatus(
            provider=provider,
            healthy=healthy,
            checked_at=self.clock() if validated else None,
            error=error,
            latency_ms=latency_ms,
        )
        with self._lock:
            previous = self._statuses.get(provider)
            self._statuses[provider] = status
        set_provider_health(provider, healthy)
        if previous is None or previous.healthy != healthy:
            logger.info(
                "provider_health_changed",
                provider=provider,
                healthy=healthy,
                error=error,
            )
        return status

    def get(self, provider: str) -> Optional[ProviderStatus]:
        with self._lock:
            return self._statuses.get(provider)

    def is_healthy(self, provider: str) -> bool:
        status = self.get(provider)
        return bool(status and status.healthy)

    def is_stale(self, provider: str) -> bool:
        status = self.get(provider)
        if status is None or status.checked_at is None:
            return True
        return (self.clock() - status.checked_at) >= self.ttl_seconds

    def healthy_providers(self) -> List[str]:
        with self._lock:
            return sorted(p for p, status in self._statuses.items() if status.healthy)

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            return {p: status.to_dict() for p, status in self._statuses.items()}

    def clear(self) -> None:
        with self._lock:
            self._statuses.clear()


def validate_key_format(provider: str, api_key: Optional[str]) -> Optional[str]:
    """Return an error code when the key is missing or malformed, else None."""
    if not api_key:
        return "not_configured"
    if provider == OPENAI:
        if not api_key.startswith("sk-") or len(api_key) < 20:
            return "invalid_key_format"
    elif provider == ANTHROPIC:
        if not api_key.startswith("sk-ant-"):
            return "invalid_key_format"
    return None


class ProviderHealthChecker:
    """Validates provider credentials and records the outcome in a ``ProviderHealthStore``."""

    def __init__(
        self,
        store: ProviderHealthStore,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: float = 10.0,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self._transport = transport
        self.timeout_seconds = timeout_seconds

    def _api_key(self, provider: str) -> Optional[str]:
        if provider == OPENAI:
            return self.settings.openai_api_key
        if provider == ANTHROPIC:
            return self.settings.anthropic_api_key
        return None

    def seed(self) -> None:
        """
        Record key-format health for every known provider without network I/O.

        Seeded entries are marked never-validated, so the next ``refresh()``
        checks them upstream.
        """
        for provider in KNOWN_PROVIDERS:
            error = validate_key_format(provider, self._api_key(provider))
            self.store.set_status(provider, healthy=error is None, error=error, validated=False)

    def _validation_request(self, provider: str, api_key: str) -> httpx.Request:
        if provider == OPENAI:
            return httpx.Request(
                "GET",
                f"{self.settings.openai_api_base.rstrip('/')}/models",
                headers={"Authorization": f"Bearer {api_key}"},
            )
        return httpx.Request(
            "GET",
            f"{self.settings.anthropic_api_base.rstrip('/')}/models",
            headers={
                "x-api-key": api_key,
                "anthropic-version": self.settings.anthropic_version,
            },
        )

    async def check_provider(self, provider: str) -> ProviderStatus:
        api_key = self._api_key(provider)
        format_error = validate_key_format(provider, api_key)
        if format_error:
            return self.store.set_status(provider, healthy=False, error=format_error)

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.send(self._validation_request(provider, api_key))
        except httpx.HTTPError as exc:
            logger.warning(
                "provider_health_check_failed",
                provider=provider,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self.store.set_status(provider, healthy=False, error=type(exc).__name__)

        latency_ms = (time.perf_counter() - start) * 1000.0

        if response.status_code == 200 or response.status_code == 429:
            return self.store.set_status(provider, healthy=True, latency_ms=latency_ms)
        if response.status_code in (401, 403):
            error = "invalid_api_key"
        else:
            error = f"http_{response.status_code}"
        logger.warning(
            "provider_health_check_rejected",
            provider=provider,
            status_code=response.status_code,
        )
        return self.store.set_status(provider, healthy=False, error=error, latency_ms=latency_ms)

    async def refresh(self, force: bool = False) -> Dict[str, ProviderStatus]:
        """Re-validate every known provider whose status is stale (or all when ``force``)."""
        results: Dict[str, ProviderStatus] = {}
        for provider in KNOWN_PROVIDERS:
            if not force and not self.store.is_stale(provider):
                results[provider] = self.store.get(provider)
                continue
            try:
                results[provider] = await self.check_provider(provider)
            except Exception as exc:
                logger.error(
                    "provider_health_check_unexpected_error",
                    provider=provider,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                results[provider] = self.store.set_status(provider, healthy=False, error="check_failed")
        logger.info(
            "provider_health_refreshed",
            healthy=[p for p, s in results.items() if s.healthy],
        )
        return results
