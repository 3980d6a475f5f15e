"""
AI orchestration service.

Single entry point for capability-typed AI requests. Per request:

    resolve model -> cache lookup -> routing -> capacity check
        -> upstream call (with retry) -> cache write-back -> metering

A cache hit short-circuits straight to the response with zero credits. A
failure anywhere before metering propagates and nothing is debited.
Streaming follows the same sequence, except the upstream call spans the
whole drain of the chunk stream; metering uses the provider's final usage
report, and a stream closed before completion is never charged.
"""
import time
from typing import AsyncIterator, Callable, Dict, List, Mapping, Optional

from aicore.core.cache import CacheStore, get_cache_store
from aicore.core.config import Settings, get_settings
from aicore.core.errors import AIError, ModelUnavailableError
from aicore.core.logging import bind_request_context, get_logger
from aicore.core.metrics import (
    record_request,
    record_request_duration,
    record_request_error,
    record_stream_cancellation,
)
from aicore.core.tracing import set_span_attribute, start_span
from aicore.models import (
    CACHEABLE_CAPABILITIES,
    AIRequest,
    AIResponse,
    Capability,
    ModelDescriptor,
    OwnerRef,
    ProviderResult,
    RoutingDecision,
    SpeechRecognitionResult,
    StreamChunk,
    TextGenerationRequest,
    TextGenerationResult,
    Usage,
)
from aicore.services.cache import SemanticCache
from aicore.services.catalog import (
    ANTHROPIC,
    OPENAI,
    ModelCatalog,
    ProviderHealthChecker,
    ProviderHealthStore,
)
from aicore.services.credits import CreditMeter, UsageLedger, WalletService
from aicore.services.providers import (
    AnthropicAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    ProviderStream,
    RetryPolicy,
    with_retry,
)
from aicore.services.routing import SmartRouter

logger = get_logger(__name__)


def _content_of(result: ProviderResult) -> Optional[str]:
    if isinstance(result, TextGenerationResult):
        return result.content
    if isinstance(result, SpeechRecognitionResult):
        return result.text
    return None


class OrchestratedStream:
    """
    Caller-facing streaming handle.

    Iterate it to receive ``StreamChunk``s; once exhausted, ``response``
    holds the metered ``AIResponse``. Closing it early stops the upstream
    drain and nothing is charged.
    """

    def __init__(
        self,
        source: Callable[[Callable[[AIResponse], None]], AsyncIterator[StreamChunk]],
        provider_stream: Optional[ProviderStream] = None,
        provider_id: str = "cache",
    ):
        self._response: Optional[AIResponse] = None
        self._events = source(self._complete)
        self._provider_stream = provider_stream
        self._provider_id = provider_id
        self._started = False
        self._closed = False

    def _complete(self, response: AIResponse) -> None:
        self._response = response

    def __aiter__(self) -> "OrchestratedStream":
        return self

    async def __anext__(self) -> StreamChunk:
        self._started = True
        return await self._events.__anext__()

    @property
    def response(self) -> Optional[AIResponse]:
        """Final response; None until the stream has been fully drained."""
        return self._response

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._events.aclose()
        if self._provider_stream is not None:
            await self._provider_stream.aclose()
        if not self._started and self._response is None:
            record_stream_cancellation(self._provider_id)
            logger.info("ai_stream_cancelled", provider=self._provider_id, chunks=0)


class AIOrchestrationService:
    """Orchestrates cache, routing, credits, retry and provider adapters."""

    def __init__(
        self,
        catalog: ModelCatalog,
        adapters: Mapping[str, ProviderAdapter],
        meter: CreditMeter,
        cache: Optional[SemanticCache] = None,
        router: Optional[SmartRouter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
        health_checker: Optional[ProviderHealthChecker] = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.adapters: Dict[str, ProviderAdapter] = dict(adapters)
        self.meter = meter
        self.cache = cache
        self.router = router or SmartRouter(catalog)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.health_checker = health_checker

    # ------------------------------------------------------------------
    # Catalog / health accessors
    # ------------------------------------------------------------------

    def list_models(self, capability: Optional[Capability] = None) -> List[ModelDescriptor]:
        """Models callers can use right now (healthy providers with a configured adapter)."""
        return [m for m in self.catalog.list_models(capability) if m.provider_id in self.adapters]

    def providers_status(self) -> Dict[str, dict]:
        status: Dict[str, dict] = {}
        snapshot = self.catalog.health_store.snapshot()
        for provider in sorted(set(snapshot) | set(self.adapters)):
            entry = dict(snapshot.get(provider) or {"provider": provider, "healthy": False})
            entry["configured"] = provider in self.adapters
            adapter = self.adapters.get(provider)
            if adapter is not None:
                entry["circuit_breaker"] = adapter.circuit_breaker.get_metrics()
            status[provider] = entry
        return status

    async def refresh_provider_health(self, force: bool = False) -> Dict[str, dict]:
        if self.health_checker is None:
            return self.providers_status()
        await self.health_checker.refresh(force=force)
        return self.providers_status()

    async def aclose(self) -> None:
        for adapter in self.adapters.values():
            await adapter.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cache_applies(self, request: AIRequest) -> bool:
        return (
            self.cache is not None
            and self.settings.cache_enabled
            and request.capability in CACHEABLE_CAPABILITIES
        )

    def _route(self, request: AIRequest, model_id: str) -> Optional[RoutingDecision]:
        if request.capability != Capability.TEXT_GENERATION:
            return None
        return self.router.decide(
            model_id,
            request.messages,
            allow_downgrade=request.smart_routing and self.settings.smart_routing_enabled,
            capability=request.capability,
        )

    def _adapter_for(self, model_id: str, capability: Capability) -> ProviderAdapter:
        model = self.catalog.get(model_id)
        adapter = self.adapters.get(model.provider_id) if model is not None else None
        if adapter is None or not adapter.supports(capability):
            alternatives = [m.id for m in self.list_models(capability)]
            raise ModelUnavailableError.with_alternatives(model_id, alternatives)
        return adapter

    async def _current_balance(self, owner: OwnerRef) -> Optional[float]:
        try:
            return await self.meter.balance(owner)
        except Exception as e:
            logger.warning(
                "wallet_balance_lookup_failed",
                owner_id=owner.owner_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _cached_response(
        self,
        request: AIRequest,
        owner: OwnerRef,
        model_id: str,
        content: str,
    ) -> AIResponse:
        await self.meter.record_cache_hit(owner, request.capability, model_id, request_id=request.request_id)
        record_request(request.capability.value, model_id, "cached")
        logger.info(
            "ai_request_cache_hit",
            capability=request.capability.value,
            model=model_id,
            conversation_id=request.conversation_id,
        )
        return AIResponse(
            request_id=request.request_id,
            capability=request.capability,
            model=model_id,
            requested_model=request.model or model_id,
            content=content,
            result=TextGenerationResult(
                id=f"cache-{request.request_id}",
                model=model_id,
                content=content,
                finish_reason="stop",
            ),
            usage=Usage(),
            credits_used=0.0,
            new_balance=await self._current_balance(owner),
            cached=True,
        )

    def _record_failure(self, request: AIRequest, model_label: str, error: Exception) -> None:
        code = error.code.value if isinstance(error, AIError) else "INTERNAL"
        record_request(request.capability.value, model_label, "error")
        record_request_error(request.capability.value, code)
        if isinstance(error, AIError):
            logger.warning(
                "ai_request_failed",
                capability=request.capability.value,
                model=model_label,
                error_code=code,
                status_code=error.status_code,
                error=error.message,
            )
        else:
            logger.error(
                "ai_request_unexpected_error",
                capability=request.capability.value,
                model=model_label,
                error=str(error),
                error_type=type(error).__name__,
                exc_info=True,
            )

    def _bind_context(self, request: AIRequest) -> OwnerRef:
        bind_request_context(
            request_id=request.request_id,
            user_id=request.identity.user_id,
            organization_id=request.identity.organization_id,
        )
        return OwnerRef.for_identity(request.identity)

    # ------------------------------------------------------------------
    # Blocking requests
    # ------------------------------------------------------------------

    async def execute(self, request: AIRequest) -> AIResponse:
        """Run a blocking AI request end to end and return the metered response."""
        owner = self._bind_context(request)
        capability = request.capability
        model_label = request.model or "default"
        provider = "none"
        start = time.perf_counter()

        with start_span(
            "ai.orchestrate",
            capability=capability.value,
            request_id=request.request_id,
            wallet_type=owner.wallet_type.value,
        ):
            try:
                model_id = self.catalog.resolve_model_id(request.model, capability)
                model_label = model_id

                if self._cache_applies(request):
                    cached = await self.cache.get(model_id, request.messages, request.conversation_id)
                    if cached is not None:
                        set_span_attribute("ai.cached", True)
                        return await self._cached_response(request, owner, model_id, cached)

                decision = self._route(request, model_id)
                routed_model = decision.model_id if decision is not None else model_id
                adapter = self._adapter_for(routed_model, capability)
                provider = adapter.provider_id
                routed_request = request.model_copy(update={"model": routed_model})
                set_span_attribute("ai.model", routed_model)
                set_span_attribute("ai.provider", provider)

                await self.meter.ensure_capacity(owner, self.meter.estimate(routed_request, routed_model))

                result = await with_retry(
                    lambda: adapter.generate(routed_request),
                    policy=self.retry_policy,
                    operation_name=f"{provider}.{capability.value}",
                )

                content = _content_of(result)
                if self._cache_applies(request) and content:
                    await self.cache.set(
                        model_id,
                        request.messages,
                        content,
                        ttl_seconds=self.settings.cache_ttl_seconds,
                        conversation_id=request.conversation_id,
                    )

                deduction = await self.meter.charge(
                    owner,
                    capability,
                    routed_model,
                    result.usage,
                    request_id=request.request_id,
                )
            except Exception as error:
                self._record_failure(request, model_label, error)
                raise
            finally:
                record_request_duration(capability.value, provider, time.perf_counter() - start)

        record_request(capability.value, routed_model, "success")
        logger.info(
            "ai_request_completed",
            capability=capability.value,
            model=routed_model,
            requested_model=model_id,
            routed=bool(decision and decision.was_routed),
            credits=round(deduction.credits_charged, 6),
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
        )
        return AIResponse(
            request_id=request.request_id,
            capability=capability,
            model=routed_model,
            requested_model=request.model or model_id,
            content=content,
            result=result,
            usage=result.usage,
            credits_used=deduction.credits_charged,
            new_balance=deduction.new_balance,
            cached=False,
            routing=decision,
        )

    # ------------------------------------------------------------------
    # Streaming requests
    # ------------------------------------------------------------------

    async def stream(self, request: TextGenerationRequest) -> OrchestratedStream:
        """
        Start a streaming text generation.

        Model resolution, cache lookup, routing, the capacity check and
        opening the upstream stream (with retry) happen before this returns,
        so their errors are raised here. Metering happens when the returned
        handle is drained to completion.
        """
        owner = self._bind_context(request)
        capability = request.capability
        model_label = request.model or "default"
        if capability != Capability.TEXT_GENERATION:
            raise ValueError("Streaming is only supported for text generation")

        try:
            model_id = self.catalog.resolve_model_id(request.model, capability)
            model_label = model_id

            if self._cache_applies(request):
                cached = await self.cache.get(model_id, request.messages, request.conversation_id)
                if cached is not None:
                    response = await self._cached_response(request, owner, model_id, cached)
                    return OrchestratedStream(lambda complete: self._replay_cached(complete, response))

            decision = self._route(request, model_id)
            routed_model = decision.model_id if decision is not None else model_id
            adapter = self._adapter_for(routed_model, capability)
            routed_request = request.model_copy(update={"model": routed_model, "stream": True})

            await self.meter.ensure_capacity(owner, self.meter.estimate(routed_request, routed_model))

            provider_stream = await with_retry(
                lambda: adapter.generate_stream(routed_request),
                policy=self.retry_policy,
                operation_name=f"{adapter.provider_id}.stream",
            )
        except Exception as error:
            self._record_failure(request, model_label, error)
            raise

        logger.info(
            "ai_stream_started",
            model=routed_model,
            requested_model=model_id,
            provider=adapter.provider_id,
        )
        return OrchestratedStream(
            lambda complete: self._drain(
                complete,
                provider_stream,
                request,
                owner,
                model_id,
                decision,
                time.perf_counter(),
            ),
            provider_stream=provider_stream,
            provider_id=adapter.provider_id,
        )

    async def _replay_cached(
        self,
        complete: Callable[[AIResponse], None],
        response: AIResponse,
    ) -> AsyncIterator[StreamChunk]:
        yield StreamChunk(id=response.result.id, delta=response.content or "", finish_reason="stop")
        complete(response)

    async def _drain(
        self,
        complete: Callable[[AIResponse], None],
        provider_stream: ProviderStream,
        request: TextGenerationRequest,
        owner: OwnerRef,
        model_id: str,
        decision: Optional[RoutingDecision],
        started: float,
    ) -> AsyncIterator[StreamChunk]:
        routed_model = provider_stream.model or model_id
        parts: List[str] = []
        chunk_count = 0
        finished = False
        failed = False

        try:
            async for chunk in provider_stream:
                parts.append(chunk.delta)
                chunk_count += 1
                yield chunk
            finished = True
        except Exception as error:
            failed = True
            self._record_failure(request, routed_model, error)
            raise
        finally:
            if not finished:
                await provider_stream.aclose()
                record_request_duration(request.capability.value, provider_stream.provider_id, time.perf_counter() - started)
                if not failed:
                    record_stream_cancellation(provider_stream.provider_id)
                    logger.info(
                        "ai_stream_cancelled",
                        provider=provider_stream.provider_id,
                        model=routed_model,
                        chunks=chunk_count,
                    )

        usage = provider_stream.usage or Usage()
        content = "".join(parts)

        try:
            if self._cache_applies(request) and content:
                await self.cache.set(
                    model_id,
                    request.messages,
                    content,
                    ttl_seconds=self.settings.cache_ttl_seconds,
                    conversation_id=request.conversation_id,
                )
            deduction = await self.meter.charge(
                owner,
                request.capability,
                routed_model,
                usage,
                request_id=request.request_id,
            )
        except Exception as error:
            self._record_failure(request, routed_model, error)
            raise
        finally:
            record_request_duration(request.capability.value, provider_stream.provider_id, time.perf_counter() - started)

        record_request(request.capability.value, routed_model, "success")
        logger.info(
            "ai_stream_completed",
            model=routed_model,
            requested_model=model_id,
            chunks=chunk_count,
            credits=round(deduction.credits_charged, 6),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        complete(AIResponse(
            request_id=request.request_id,
            capability=request.capability,
            model=routed_model,
            requested_model=request.model or model_id,
            content=content,
            result=TextGenerationResult(
                id=f"stream-{request.request_id}",
                model=routed_model,
                content=content,
                finish_reason="stop",
            ),
            usage=usage,
            credits_used=deduction.credits_charged,
            new_balance=deduction.new_balance,
            cached=False,
            routing=decision,
        ))


def create_orchestration_service(
    wallet_service: WalletService,
    usage_ledger: UsageLedger,
    cache_store: Optional[CacheStore] = None,
    settings: Optional[Settings] = None,
    health_store: Optional[ProviderHealthStore] = None,
) -> AIOrchestrationService:
    """
    Wire an orchestration service from settings.

    Adapters are created only for providers with a well-formed API key; the
    health store is seeded from key formats and refreshed upstream later via
    ``refresh_provider_health``.
    """
    settings = settings or get_settings()
    health_store = health_store or ProviderHealthStore(ttl_seconds=settings.effective_health_ttl_seconds)
    checker = ProviderHealthChecker(health_store, settings=settings)
    checker.seed()

    catalog = ModelCatalog(health_store)
    adapters: Dict[str, ProviderAdapter] = {}
    if health_store.is_healthy(OPENAI):
        adapters[OPENAI] = OpenAIAdapter(
            api_key=settings.openai_api_key,
            api_base=settings.openai_api_base,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    if health_store.is_healthy(ANTHROPIC):
        adapters[ANTHROPIC] = AnthropicAdapter(
            api_key=settings.anthropic_api_key,
            api_base=settings.anthropic_api_base,
            timeout_seconds=settings.provider_timeout_seconds,
            api_version=settings.anthropic_version,
        )

    cache = SemanticCache(
        cache_store or get_cache_store(),
        enabled=settings.cache_enabled,
        default_ttl_seconds=settings.cache_ttl_seconds,
        prefix=settings.cache_prefix,
    )
    meter = CreditMeter(
        wallet_service,
        usage_ledger,
        catalog=catalog,
        record_cache_hits=settings.record_cache_hits,
    )

    logger.info(
        "ai_orchestration_service_created",
        providers=sorted(adapters),
        cache_enabled=settings.cache_enabled,
        smart_routing_enabled=settings.smart_routing_enabled,
    )
    return AIOrchestrationService(
        catalog=catalog,
        adapters=adapters,
        meter=meter,
        cache=cache,
        settings=settings,
        health_checker=checker,
    )


_orchestration_service: Optional[AIOrchestrationService] = None


def set_orchestration_service(service: Optional[AIOrchestrationService]) -> None:
    """Install the process-wide service (done once by the hosting application)."""
    global _orchestration_service
    _orchestration_service = service


def get_orchestration_service() -> AIOrchestrationService:
    if _orchestration_service is None:
        raise RuntimeError("AI orchestration service has not been configured")
    return _orchestration_service
