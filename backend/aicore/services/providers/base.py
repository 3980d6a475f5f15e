"""
Provider adapter contract.

An adapter translates one upstream AI service to the core's capability-typed
requests and results. Adapters never touch credits, cache or routing. Upstream
failures are normalized into ``aicore.core.errors`` classes.

Design constraints:
- Do NOT use vendor SDKs; talk to the HTTP APIs with httpx
- One pooled ``httpx.AsyncClient`` per adapter, closed with ``aclose()``
- Circuit breaker around every upstream call; only upstream-side failures count
"""
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, FrozenSet, Optional, Union

import httpx

from aicore.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from aicore.core.errors import (
    AIError,
    InvalidRequestError,
    ProviderCircuitOpenError,
    ProviderError,
    RequestTimeoutError,
)
from aicore.core.logging import get_logger
from aicore.core.metrics import record_tokens, record_upstream_error
from aicore.core.tracing import set_span_attribute, start_span
from aicore.models import AIRequest, Capability, ProviderResult, StreamChunk, TextGenerationRequest, Usage

logger = get_logger(__name__)

StreamEvent = Union[StreamChunk, Usage]


def is_upstream_failure(error: BaseException) -> bool:
    """Failures that say something about provider health (not caller mistakes)."""
    if isinstance(error, AIError):
        return error.status_code >= 500 or error.status_code in (408, 429)
    return True


class ProviderStream:
    """
    Single-pass stream of ``StreamChunk`` from an upstream provider.

    The final ``Usage`` is not part of the chunk sequence: it becomes
    available on ``usage`` only after iteration has been exhausted. A stream
    that is closed early never reports usage.
    """

    def __init__(
        self,
        provider_id: str,
        model: str,
        events: AsyncIterator[StreamEvent],
        on_complete: Optional[Callable[[Usage], None]] = None,
    ):
        self.provider_id = provider_id
        self.model = model
        self._events = events
        self._on_complete = on_complete
        self._usage: Optional[Usage] = None
        self._iterating = False
        self._exhausted = False
        self._closed = False

    def __aiter__(self) -> "ProviderStream":
        if self._iterating or self._closed:
            raise RuntimeError("ProviderStream is single-pass and cannot be restarted")
        self._iterating = True
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed or self._exhausted:
            raise StopAsyncIteration
        while True:
            try:
                event = await self._events.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                if self._usage is None:
                    self._usage = Usage()
                if self._on_complete is not None:
                    self._on_complete(self._usage)
                raise
            if isinstance(event, Usage):
                self._usage = event
                continue
            return event

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def usage(self) -> Optional[Usage]:
        """Final usage; None until the stream has been fully drained."""
        return self._usage if self._exhausted else None

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._events, "aclose", None)
        if aclose is not None:
            await aclose()


class ProviderAdapter(ABC):
    """Base class for upstream provider adapters."""

    provider_id: str = ""
    supported_capabilities: FrozenSet[Capability] = frozenset()

    def __init__(
        self,
        api_key: str,
        api_base: str,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name=f"provider_{self.provider_id}",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            half_open_test_percentage=0.1,
            is_failure=is_upstream_failure,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
                headers=self._default_headers(),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def supports(self, capability: Capability) -> bool:
        return capability in self.supported_capabilities

    @abstractmethod
    def _default_headers(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def _map_status_error(self, response: httpx.Response, body: Dict[str, Any]) -> AIError:
        """Translate a non-2xx upstream response into the error taxonomy."""

    @abstractmethod
    def _handlers(self) -> Dict[Capability, Callable[[Any], Awaitable[ProviderResult]]]:
        ...

    async def generate(self, request: AIRequest) -> ProviderResult:
        """Execute a blocking call for any supported capability."""
        handler = self._handlers().get(request.capability)
        if handler is None:
            raise InvalidRequestError(
                f"Provider '{self.provider_id}' does not support {request.capability.value}",
                details={"provider": self.provider_id, "capability": request.capability.value},
            )

        start = time.perf_counter()
        with start_span(
            "ai.provider.generate",
            provider=self.provider_id,
            capability=request.capability.value,
            model=request.model,
        ):
            result = await self._guarded(handler, request)
            set_span_attribute("ai.input_tokens", result.usage.input_tokens)
            set_span_attribute("ai.output_tokens", result.usage.output_tokens)

        record_tokens(self.provider_id, result.model, result.usage.input_tokens, result.usage.output_tokens)
        logger.debug(
            "provider_call_completed",
            provider=self.provider_id,
            capability=request.capability.value,
            model=result.model,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 1),
        )
        return result

    async def generate_stream(self, request: TextGenerationRequest) -> ProviderStream:
        """
        Open an upstream stream and return a handle for draining it.

        Errors while opening (bad status, connection failure) are raised here,
        so callers can retry the open. Errors while draining surface from the
        iterator and are never retried.
        """
        if not self.supports(Capability.TEXT_GENERATION):
            raise InvalidRequestError(f"Provider '{self.provider_id}' does not support streaming")

        response = await self._guarded(self._open_stream, request)
        events = self._guard_events(self._stream_events(response, request), response)

        def on_complete(usage: Usage) -> None:
            record_tokens(self.provider_id, request.model or "", usage.input_tokens, usage.output_tokens)

        return ProviderStream(self.provider_id, request.model or "", events, on_complete=on_complete)

    @abstractmethod
    async def _open_stream(self, request: TextGenerationRequest) -> httpx.Response:
        ...

    @abstractmethod
    def _stream_events(self, response: httpx.Response, request: TextGenerationRequest) -> AsyncIterator[StreamEvent]:
        ...

    async def _guard_events(
        self,
        events: AsyncIterator[StreamEvent],
        response: httpx.Response,
    ) -> AsyncIterator[StreamEvent]:
        try:
            async for event in events:
                yield event
        except AIError as error:
            if is_upstream_failure(error):
                self.circuit_breaker.record_failure()
            record_upstream_error(self.provider_id, error.code.value)
            raise
        except httpx.HTTPError as exc:
            error = self._map_transport_error(exc)
            self.circuit_breaker.record_failure()
            record_upstream_error(self.provider_id, error.code.value)
            raise error from exc
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
            await response.aclose()

    async def _guarded(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Run an upstream call behind the circuit breaker with errors normalized."""
        try:
            return await self.circuit_breaker.call_async(self._normalized, func, *args)
        except CircuitBreakerOpenError:
            logger.warning("provider_circuit_open", provider=self.provider_id)
            record_upstream_error(self.provider_id, "circuit_open")
            raise ProviderCircuitOpenError(self.provider_id)

    async def _normalized(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await func(*args)
        except AIError as error:
            record_upstream_error(self.provider_id, error.code.value)
            logger.warning(
                "provider_error",
                provider=self.provider_id,
                error_code=error.code.value,
                status_code=error.status_code,
                error=error.message,
            )
            raise
        except httpx.HTTPError as exc:
            error = self._map_transport_error(exc)
            record_upstream_error(self.provider_id, error.code.value)
            logger.warning(
                "provider_transport_error",
                provider=self.provider_id,
                error_code=error.code.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise error from exc

    def _map_transport_error(self, exc: httpx.HTTPError) -> AIError:
        if isinstance(exc, httpx.TimeoutException):
            return RequestTimeoutError(
                f"{self.provider_id} request timed out",
                details={"provider": self.provider_id},
            )
        return ProviderError(
            f"Connection error talking to {self.provider_id}: {exc}",
            status_code=503,
            details={"provider": self.provider_id},
            retryable=True,
        )

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(f"{self.api_base}{path}", json=payload)
        self._raise_for_status(response)
        return response.json()

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise self._map_status_error(response, self._error_body(response))

    @staticmethod
    def _error_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        raw = response.headers.get("retry-after")
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    async def _send_stream(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        request = self.client.build_request("POST", f"{self.api_base}{path}", json=payload)
        response = await self.client.send(request, stream=True)
        if not response.is_success:
            await response.aread()
            await response.aclose()
            self._raise_for_status(response)
        return response
