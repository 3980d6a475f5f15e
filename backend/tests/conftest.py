"""
Shared fixtures: in-memory wallets, ledger and cache store, plus scripted
provider adapters. Nothing here performs network I/O.
"""
import asyncio
import fnmatch
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from aicore.core.circuit_breaker import CircuitBreaker
from aicore.core.config import Settings
from aicore.models import (
    Capability,
    CallerIdentity,
    ConversationMessage,
    CreditCheck,
    Deduction,
    EmbeddingResult,
    MessagePart,
    MessageRole,
    OwnerRef,
    StreamChunk,
    TextGenerationRequest,
    TextGenerationResult,
    Usage,
    UsageRecord,
    WalletBalance,
    WalletType,
)
from aicore.services.cache import SemanticCache
from aicore.services.catalog import ANTHROPIC, OPENAI, ModelCatalog, ProviderHealthStore
from aicore.services.credits import CreditMeter
from aicore.services.orchestration import AIOrchestrationService
from aicore.services.providers import ProviderStream, RetryPolicy


class InMemoryCacheStore:
    """Dict-backed CacheStore that records every call."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail = False

    def _maybe_fail(self):
        if self.fail:
            raise ConnectionError("cache store unreachable")

    async def get(self, key: str) -> Optional[str]:
        self.calls.append(("get", key))
        self._maybe_fail()
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        self.calls.append(("set", key))
        self._maybe_fail()
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return True

    async def keys_matching(self, pattern: str) -> List[str]:
        self.calls.append(("scan", pattern))
        self._maybe_fail()
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    async def delete(self, keys: Sequence[str]) -> int:
        self.calls.append(("delete", ",".join(keys)))
        self._maybe_fail()
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                deleted += 1
        return deleted


class InMemoryWalletService:
    """WalletService with per-owner balances; debit and record append happen under one lock."""

    def __init__(self):
        self.wallets: Dict[Tuple[WalletType, str], Dict[str, Optional[float]]] = {}
        self.records: List[UsageRecord] = []
        self._lock = asyncio.Lock()

    def add_wallet(
        self,
        owner: OwnerRef,
        balance: float,
        monthly_used: float = 0.0,
        plan_limit: Optional[float] = None,
    ) -> None:
        self.wallets[(owner.wallet_type, owner.owner_id)] = {
            "balance": balance,
            "monthly_used": monthly_used,
            "plan_limit": plan_limit,
        }

    def balance_of(self, owner: OwnerRef) -> float:
        return self.wallets[(owner.wallet_type, owner.owner_id)]["balance"]

    async def check_credits(self, owner: OwnerRef, estimated_credits: float) -> Optional[CreditCheck]:
        wallet = self.wallets.get((owner.wallet_type, owner.owner_id))
        if wallet is None:
            return None
        plan_limit = wallet["plan_limit"]
        within = plan_limit is None or wallet["monthly_used"] + estimated_credits <= plan_limit
        return CreditCheck(
            has_credits=wallet["balance"] >= estimated_credits,
            within_plan_limit=within,
            balance=wallet["balance"],
            monthly_used=wallet["monthly_used"],
            plan_limit=plan_limit,
        )

    async def debit(self, owner: OwnerRef, record: UsageRecord) -> Deduction:
        async with self._lock:
            wallet = self.wallets[(owner.wallet_type, owner.owner_id)]
            wallet["balance"] -= record.credits_charged
            wallet["monthly_used"] += record.credits_charged
            self.records.append(record)
            return Deduction(
                credits_charged=record.credits_charged,
                new_balance=wallet["balance"],
                usage_record_id=record.id,
            )

    async def get_balance(self, owner: OwnerRef) -> Optional[WalletBalance]:
        wallet = self.wallets.get((owner.wallet_type, owner.owner_id))
        if wallet is None:
            return None
        return WalletBalance(
            balance=wallet["balance"],
            monthly_used=wallet["monthly_used"],
            plan_limit=wallet["plan_limit"],
        )


class InMemoryUsageLedger:
    def __init__(self):
        self.records: List[UsageRecord] = []
        self.fail = False

    async def append(self, record: UsageRecord) -> str:
        if self.fail:
            raise RuntimeError("ledger unavailable")
        self.records.append(record)
        return record.id

    async def list_records(self, owner: OwnerRef, billing_period: Optional[str] = None) -> List[UsageRecord]:
        return [
            r for r in self.records
            if r.wallet_type == owner.wallet_type
            and r.owner_id == owner.owner_id
            and (billing_period is None or r.billing_period == billing_period)
        ]


class ScriptedAdapter:
    """
    Stand-in provider adapter.

    ``failures`` are raised, in order, by the first calls; afterwards calls
    succeed with ``content``/``usage`` (or ``stream_deltas`` when streaming).
    """

    def __init__(
        self,
        provider_id: str,
        content: str = "Hello! How can I help you today?",
        usage: Optional[Usage] = None,
        stream_deltas: Sequence[str] = ("Hello", ", ", "world"),
        failures: Sequence[Exception] = (),
        mid_stream_error: Optional[Exception] = None,
        capabilities: Optional[Sequence[Capability]] = None,
    ):
        self.provider_id = provider_id
        self.content = content
        self.usage = usage or Usage(input_tokens=100, output_tokens=200)
        self.stream_deltas = list(stream_deltas)
        self.failures = list(failures)
        self.mid_stream_error = mid_stream_error
        self.capabilities = set(capabilities or Capability)
        self.circuit_breaker = CircuitBreaker(f"provider_{provider_id}")
        self.calls: List = []
        self.streams_closed = 0
        self.closed = False

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    async def generate(self, request):
        self.calls.append(request)
        if self.failures:
            raise self.failures.pop(0)
        if request.capability == Capability.TEXT_EMBEDDING:
            return EmbeddingResult(
                id="emb-1",
                model=request.model,
                embeddings=[[0.1, 0.2, 0.3] for _ in request.input],
                usage=Usage(input_tokens=self.usage.input_tokens),
            )
        return TextGenerationResult(
            id="gen-1",
            model=request.model,
            content=self.content,
            finish_reason="stop",
            usage=self.usage,
        )

    async def generate_stream(self, request) -> ProviderStream:
        self.calls.append(request)
        if self.failures:
            raise self.failures.pop(0)

        async def events():
            try:
                for index, delta in enumerate(self.stream_deltas):
                    if index == 1 and self.mid_stream_error is not None:
                        raise self.mid_stream_error
                    yield StreamChunk(id="stream-1", delta=delta)
                yield StreamChunk(id="stream-1", finish_reason="stop")
                yield self.usage
            finally:
                self.streams_closed += 1

        return ProviderStream(self.provider_id, request.model, events())

    async def aclose(self) -> None:
        self.closed = True


def user_message(text: str) -> ConversationMessage:
    return ConversationMessage(role=MessageRole.USER, content=text)


def image_message(text: str, image_url: str) -> ConversationMessage:
    return ConversationMessage(
        role=MessageRole.USER,
        content=text,
        parts=[MessagePart(type="image_url", image_url=image_url)],
    )


def text_request(text: str = "Explain how a hash map works", **kwargs) -> TextGenerationRequest:
    kwargs.setdefault("identity", CallerIdentity(user_id="user-1"))
    kwargs.setdefault("messages", [user_message(text)])
    return TextGenerationRequest(**kwargs)


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        log_json=False,
        retry_max_retries=3,
        retry_initial_delay_ms=0,
        retry_max_delay_ms=0,
    )


@pytest.fixture
def health_store():
    store = ProviderHealthStore(ttl_seconds=300)
    store.set_status(OPENAI, healthy=True)
    store.set_status(ANTHROPIC, healthy=True)
    return store


@pytest.fixture
def catalog(health_store):
    return ModelCatalog(health_store)


@pytest.fixture
def cache_store():
    return InMemoryCacheStore()


@pytest.fixture
def semantic_cache(cache_store):
    return SemanticCache(cache_store)


@pytest.fixture
def personal_owner():
    return OwnerRef.personal("user-1")


@pytest.fixture
def org_owner():
    return OwnerRef.organization("org-1", "user-1")


@pytest.fixture
def wallets(personal_owner, org_owner):
    service = InMemoryWalletService()
    service.add_wallet(personal_owner, balance=1000.0)
    service.add_wallet(org_owner, balance=5000.0)
    return service


@pytest.fixture
def ledger():
    return InMemoryUsageLedger()


@pytest.fixture
def meter(wallets, ledger, catalog):
    return CreditMeter(wallets, ledger, catalog=catalog)


@pytest.fixture
def openai_adapter():
    return ScriptedAdapter(OPENAI)


@pytest.fixture
def anthropic_adapter():
    return ScriptedAdapter(ANTHROPIC, capabilities=[Capability.TEXT_GENERATION])


@pytest.fixture
def no_retry_delay():
    return RetryPolicy(max_retries=3, initial_delay_ms=0, max_delay_ms=0, jitter=False)


@pytest.fixture
def service(catalog, openai_adapter, anthropic_adapter, meter, semantic_cache, settings, no_retry_delay):
    return AIOrchestrationService(
        catalog=catalog,
        adapters={OPENAI: openai_adapter, ANTHROPIC: anthropic_adapter},
        meter=meter,
        cache=semantic_cache,
        retry_policy=no_retry_delay,
        settings=settings,
    )
