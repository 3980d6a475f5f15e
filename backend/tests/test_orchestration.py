"""
Unit tests for AIOrchestrationService (blocking requests).

Providers, wallets, ledger and cache store are in-memory stand-ins from
conftest; no HTTP calls are made.
"""
import pytest

from aicore.core.errors import (
    InsufficientCreditsError,
    InvalidRequestError,
    ModelUnavailableError,
    PlanLimitExceededError,
    ProviderCircuitOpenError,
    ProviderError,
    RateLimitedError,
    WalletNotFoundError,
)
from aicore.core.config import Settings
from aicore.models import CallerIdentity, Capability, TextEmbeddingRequest
from aicore.services.catalog import ANTHROPIC, OPENAI, ProviderHealthStore
from aicore.services.orchestration import (
    AIOrchestrationService,
    create_orchestration_service,
    get_orchestration_service,
    set_orchestration_service,
)
from conftest import ScriptedAdapter, text_request


@pytest.mark.asyncio
async def test_execute_charges_personal_wallet(service, wallets, personal_owner, openai_adapter):
    """A plain request is executed once and debited from the caller's personal wallet."""
    request = text_request(model="gpt-4o", smart_routing=False)

    response = await service.execute(request)

    assert response.cached is False
    assert response.model == "gpt-4o"
    assert response.content == openai_adapter.content
    assert response.credits_used == pytest.approx(100 * 0.0025 + 200 * 0.01)
    assert response.new_balance == pytest.approx(1000.0 - response.credits_used)
    assert len(openai_adapter.calls) == 1

    assert len(wallets.records) == 1
    record = wallets.records[0]
    assert record.owner_id == personal_owner.owner_id
    assert record.model_id == "gpt-4o"
    assert record.cached is False


@pytest.mark.asyncio
async def test_execute_bills_only_organization_wallet(service, wallets, personal_owner, org_owner):
    """Organization context bills the organization wallet and never the personal one."""
    request = text_request(
        model="gpt-4o",
        smart_routing=False,
        identity=CallerIdentity(user_id="user-1", organization_id="org-1"),
    )

    response = await service.execute(request)

    assert wallets.balance_of(org_owner) == pytest.approx(5000.0 - response.credits_used)
    assert wallets.balance_of(personal_owner) == pytest.approx(1000.0)
    assert [r.owner_id for r in wallets.records] == ["org-1"]
    assert wallets.records[0].user_id == "user-1"


@pytest.mark.asyncio
async def test_cache_hit_skips_provider_and_debit(service, wallets, ledger, openai_adapter):
    """Repeating a cacheable request is served from cache for zero credits."""
    first = await service.execute(text_request("What is the capital of France", model="gpt-4o"))
    second = await service.execute(text_request("what is the capital of france?", model="gpt-4o"))

    assert first.cached is False
    assert second.cached is True
    assert second.content == first.content
    assert second.credits_used == 0
    assert second.usage.total_tokens == 0
    assert second.new_balance == pytest.approx(1000.0 - first.credits_used)
    assert len(openai_adapter.calls) == 1

    # Only the first request was debited; the hit left a zero-credit ledger entry
    assert len(wallets.records) == 1
    assert len(ledger.records) == 1
    assert ledger.records[0].cached is True
    assert ledger.records[0].credits_charged == 0


@pytest.mark.asyncio
async def test_cache_is_keyed_by_requested_model(service, cache_store):
    """Routed requests are cached under the model the caller asked for."""
    response = await service.execute(text_request("What is the capital of France", model="gpt-4o"))

    assert response.routing is not None
    assert response.routing.was_routed is True
    assert response.model == "gpt-4o-mini"
    assert response.requested_model == "gpt-4o"
    assert any(":shared:gpt-4o:" in key for key in cache_store.data)


@pytest.mark.asyncio
async def test_conversation_cache_is_isolated(service, openai_adapter):
    """An entry cached for one conversation is not visible outside it."""
    await service.execute(text_request("Summarize our plan", model="gpt-4o", conversation_id="c-1"))
    await service.execute(text_request("Summarize our plan", model="gpt-4o"))
    await service.execute(text_request("Summarize our plan", model="gpt-4o", conversation_id="c-1"))

    assert len(openai_adapter.calls) == 2


@pytest.mark.asyncio
async def test_cache_failures_never_fail_request(service, cache_store, wallets):
    """A broken cache store degrades to a miss."""
    cache_store.fail = True

    response = await service.execute(text_request("What is the capital of France", model="gpt-4o"))

    assert response.cached is False
    assert len(wallets.records) == 1


@pytest.mark.asyncio
async def test_time_sensitive_request_is_not_cached(service, cache_store):
    await service.execute(text_request("What is the weather today", model="gpt-4o"))

    assert cache_store.calls == []


@pytest.mark.asyncio
async def test_smart_routing_downgrades_simple_anthropic_request(service, anthropic_adapter):
    """A greeting sent to a mid-tier model is served by the provider's cheapest tier."""
    response = await service.execute(text_request("Hi!", model="claude-3-5-sonnet-20241022"))

    assert response.model == "claude-3-haiku-20240307"
    assert response.routing.original_model == "claude-3-5-sonnet-20241022"
    assert response.routing.complexity == "simple"
    assert anthropic_adapter.calls[0].model == "claude-3-haiku-20240307"


@pytest.mark.asyncio
async def test_smart_routing_opt_out_keeps_requested_model(service, openai_adapter):
    response = await service.execute(text_request("Hi!", model="gpt-4o", smart_routing=False))

    assert response.model == "gpt-4o"
    assert response.routing.was_routed is False
    assert openai_adapter.calls[0].model == "gpt-4o"


@pytest.mark.asyncio
async def test_routing_never_upgrades(service, openai_adapter):
    """Complex work on the cheapest model stays on the cheapest model."""
    prompt = "Implement a comprehensive step by step refactor of this algorithm:\n```def f(): pass```"

    response = await service.execute(text_request(prompt, model="gpt-4o-mini"))

    assert response.model == "gpt-4o-mini"
    assert response.routing.complexity == "complex"
    assert response.routing.was_routed is False


@pytest.mark.asyncio
async def test_default_model_is_cheapest_available(service, openai_adapter):
    response = await service.execute(text_request(smart_routing=False))

    assert response.model == "gpt-4o-mini"
    assert response.requested_model == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_unknown_model_lists_alternatives(service, wallets):
    with pytest.raises(ModelUnavailableError) as exc_info:
        await service.execute(text_request(model="gpt-5-ultra"))

    alternatives = exc_info.value.details["available_models"]
    assert "gpt-4o" in alternatives
    assert "claude-3-haiku-20240307" in alternatives
    assert wallets.records == []


@pytest.mark.asyncio
async def test_unhealthy_provider_models_are_unavailable(service, health_store, anthropic_adapter):
    health_store.set_status(ANTHROPIC, healthy=False, error="invalid_api_key")

    with pytest.raises(ModelUnavailableError) as exc_info:
        await service.execute(text_request(model="claude-3-5-sonnet-20241022"))

    assert all(not m.startswith("claude") for m in exc_info.value.details["available_models"])
    assert anthropic_adapter.calls == []


@pytest.mark.asyncio
async def test_wrong_capability_model_is_rejected(service):
    request = TextEmbeddingRequest(identity=CallerIdentity(user_id="user-1"), input="hello", model="gpt-4o")

    with pytest.raises(ModelUnavailableError):
        await service.execute(request)


@pytest.mark.asyncio
async def test_missing_adapter_is_model_unavailable(catalog, meter, semantic_cache, settings, no_retry_delay):
    service = AIOrchestrationService(
        catalog=catalog,
        adapters={OPENAI: ScriptedAdapter(OPENAI)},
        meter=meter,
        cache=semantic_cache,
        retry_policy=no_retry_delay,
        settings=settings,
    )

    with pytest.raises(ModelUnavailableError) as exc_info:
        await service.execute(text_request(model="claude-3-5-sonnet-20241022", smart_routing=False))

    assert all(not m.startswith("claude") for m in exc_info.value.details["available_models"])


@pytest.mark.asyncio
async def test_insufficient_credits_rejected_before_upstream(service, wallets, personal_owner, openai_adapter):
    wallets.add_wallet(personal_owner, balance=0.0001)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await service.execute(text_request(model="gpt-4o", smart_routing=False))

    assert exc_info.value.status_code == 402
    assert exc_info.value.details["available"] == pytest.approx(0.0001)
    assert openai_adapter.calls == []
    assert wallets.records == []


@pytest.mark.asyncio
async def test_plan_limit_reported_even_with_balance(service, wallets, personal_owner, openai_adapter):
    """Hitting the monthly ceiling is a plan-limit error, not an insufficient-balance one."""
    wallets.add_wallet(personal_owner, balance=1000.0, monthly_used=100.0, plan_limit=100.0)

    with pytest.raises(PlanLimitExceededError) as exc_info:
        await service.execute(text_request(model="gpt-4o", smart_routing=False))

    assert exc_info.value.details["limit"] == 100.0
    assert exc_info.value.details["used"] == 100.0
    assert openai_adapter.calls == []


@pytest.mark.asyncio
async def test_missing_wallet_is_rejected(service, openai_adapter):
    request = text_request(model="gpt-4o", identity=CallerIdentity(user_id="ghost"))

    with pytest.raises(WalletNotFoundError):
        await service.execute(request)

    assert openai_adapter.calls == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried_and_charged_once(service, wallets, openai_adapter):
    openai_adapter.failures = [RateLimitedError("Rate limit exceeded"), ProviderError("bad gateway", status_code=502)]

    response = await service.execute(text_request(model="gpt-4o", smart_routing=False))

    assert response.content == openai_adapter.content
    assert len(openai_adapter.calls) == 3
    assert len(wallets.records) == 1


@pytest.mark.asyncio
async def test_retries_exhausted_raises_last_error(service, wallets, openai_adapter):
    error = ProviderError("upstream down", status_code=503)
    openai_adapter.failures = [error] * 4

    with pytest.raises(ProviderError) as exc_info:
        await service.execute(text_request(model="gpt-4o", smart_routing=False))

    assert exc_info.value is error
    assert len(openai_adapter.calls) == 4
    assert wallets.records == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        InvalidRequestError("max_tokens is too large"),
        ProviderCircuitOpenError(OPENAI),
        RateLimitedError("You exceeded your current quota", retryable=False),
    ],
)
async def test_permanent_failure_is_not_retried(service, wallets, openai_adapter, error):
    openai_adapter.failures = [error]

    with pytest.raises(type(error)):
        await service.execute(text_request(model="gpt-4o", smart_routing=False))

    assert len(openai_adapter.calls) == 1
    assert wallets.records == []


@pytest.mark.asyncio
async def test_embedding_request_is_charged_and_not_cached(service, cache_store, wallets):
    request = TextEmbeddingRequest(identity=CallerIdentity(user_id="user-1"), input=["hello", "world"])

    response = await service.execute(request)

    assert response.capability == Capability.TEXT_EMBEDDING
    assert response.model == "text-embedding-3-small"
    assert response.routing is None
    assert response.content is None
    assert response.credits_used == pytest.approx(100 * 0.00002)
    assert cache_store.calls == []
    assert wallets.records[0].capability == Capability.TEXT_EMBEDDING


def test_list_models_hides_providers_without_adapter(catalog, meter, settings):
    service = AIOrchestrationService(
        catalog=catalog,
        adapters={OPENAI: ScriptedAdapter(OPENAI)},
        meter=meter,
        settings=settings,
    )

    models = service.list_models(Capability.TEXT_GENERATION)

    assert models
    assert {m.provider_id for m in models} == {OPENAI}


def test_providers_status_reports_health_and_breaker(service):
    status = service.providers_status()

    assert status[OPENAI]["healthy"] is True
    assert status[OPENAI]["configured"] is True
    assert status[OPENAI]["circuit_breaker"]["state"] == "closed"
    assert status[ANTHROPIC]["healthy"] is True


@pytest.mark.asyncio
async def test_aclose_closes_adapters(service, openai_adapter, anthropic_adapter):
    await service.aclose()

    assert openai_adapter.closed is True
    assert anthropic_adapter.closed is True


def test_create_orchestration_service_builds_adapters_for_valid_keys(wallets, ledger, cache_store):
    settings = Settings(
        openai_api_key="sk-test-0123456789abcdefghij",
        anthropic_api_key="not-an-anthropic-key",
    )
    health_store = ProviderHealthStore()

    service = create_orchestration_service(
        wallets,
        ledger,
        cache_store=cache_store,
        settings=settings,
        health_store=health_store,
    )

    assert set(service.adapters) == {OPENAI}
    assert health_store.is_healthy(OPENAI) is True
    assert health_store.get(ANTHROPIC).error == "invalid_key_format"
    assert health_store.is_stale(OPENAI) is True
    assert service.cache.prefix == settings.cache_prefix


def test_orchestration_service_accessor(service):
    set_orchestration_service(None)
    with pytest.raises(RuntimeError):
        get_orchestration_service()

    set_orchestration_service(service)
    try:
        assert get_orchestration_service() is service
    finally:
        set_orchestration_service(None)
