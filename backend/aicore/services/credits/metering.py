"""
Credit metering and enforcement.

Every request is billed to exactly one wallet (see ``OwnerRef.for_identity``).
Before the upstream call the estimated cost is checked against that wallet;
after it the actual usage is priced and debited together with its usage
record in one wallet operation. Cache hits cost nothing and only leave a
zero-credit record for analytics.
"""
from typing import Optional

from aicore.core.errors import InsufficientCreditsError, PlanLimitExceededError, WalletNotFoundError
from aicore.core.logging import get_logger
from aicore.core.metrics import record_credit_rejection, record_credits_charged
from aicore.models import AIRequest, Capability, CreditCheck, Deduction, OwnerRef, Usage, UsageRecord
from aicore.services.catalog import ModelCatalog
from aicore.services.credits.interfaces import UsageLedger, WalletService
from aicore.services.credits.pricing import calculate_credits, estimate_usage
from aicore.services.credits.usage import current_billing_period

logger = get_logger(__name__)


class CreditMeter:
    def __init__(
        self,
        wallet_service: WalletService,
        usage_ledger: UsageLedger,
        catalog: Optional[ModelCatalog] = None,
        record_cache_hits: bool = True,
    ):
        self.wallet_service = wallet_service
        self.usage_ledger = usage_ledger
        self.catalog = catalog
        self.record_cache_hits = record_cache_hits

    def price(self, capability: Capability, model_id: str, usage: Usage) -> float:
        return calculate_credits(capability, model_id, usage, self.catalog)

    def estimate(self, request: AIRequest, model_id: str) -> float:
        return self.price(request.capability, model_id, estimate_usage(request))

    async def ensure_capacity(self, owner: OwnerRef, estimated_credits: float) -> CreditCheck:
        """
        Reject the request unless ``owner``'s wallet can cover ``estimated_credits``.

        Raises:
            WalletNotFoundError: the owner has no wallet
            PlanLimitExceededError: the monthly plan ceiling would be exceeded,
                reported even when the balance would cover the request
            InsufficientCreditsError: the balance is too low
        """
        check = await self.wallet_service.check_credits(owner, estimated_credits)
        if check is None:
            record_credit_rejection("wallet_not_found")
            logger.warning(
                "credit_wallet_not_found",
                wallet_type=owner.wallet_type.value,
                owner_id=owner.owner_id,
            )
            raise WalletNotFoundError(owner.wallet_type.value, owner.owner_id)

        if not check.within_plan_limit:
            record_credit_rejection("plan_limit_exceeded")
            logger.info(
                "credit_plan_limit_exceeded",
                wallet_type=owner.wallet_type.value,
                owner_id=owner.owner_id,
                limit=check.plan_limit,
                used=check.monthly_used,
                required=estimated_credits,
            )
            raise PlanLimitExceededError(
                limit=check.plan_limit,
                used=check.monthly_used,
                required=estimated_credits,
            )

        if not check.has_credits:
            record_credit_rejection("insufficient_credits")
            logger.info(
                "credit_insufficient",
                wallet_type=owner.wallet_type.value,
                owner_id=owner.owner_id,
                required=estimated_credits,
                available=check.balance,
            )
            raise InsufficientCreditsError(required=estimated_credits, available=check.balance)

        return check

    def build_record(
        self,
        owner: OwnerRef,
        capability: Capability,
        model_id: str,
        usage: Usage,
        credits: float,
        cached: bool = False,
        request_id: Optional[str] = None,
    ) -> UsageRecord:
        return UsageRecord(
            wallet_type=owner.wallet_type,
            owner_id=owner.owner_id,
            user_id=owner.user_id,
            capability=capability,
            model_id=model_id,
            usage=usage,
            credits_charged=credits,
            billing_period=current_billing_period(),
            cached=cached,
            request_id=request_id,
        )

    async def charge(
        self,
        owner: OwnerRef,
        capability: Capability,
        model_id: str,
        usage: Usage,
        request_id: Optional[str] = None,
    ) -> Deduction:
        """Price the actual usage and debit it, with its usage record, from ``owner``'s wallet."""
        credits = self.price(capability, model_id, usage)
        record = self.build_record(owner, capability, model_id, usage, credits, request_id=request_id)
        deduction = await self.wallet_service.debit(owner, record)

        record_credits_charged(capability.value, owner.wallet_type.value, deduction.credits_charged)
        logger.info(
            "credits_charged",
            wallet_type=owner.wallet_type.value,
            owner_id=owner.owner_id,
            capability=capability.value,
            model=model_id,
            credits=round(deduction.credits_charged, 6),
            new_balance=deduction.new_balance,
            usage_record_id=deduction.usage_record_id or record.id,
        )
        return deduction

    async def record_cache_hit(
        self,
        owner: OwnerRef,
        capability: Capability,
        model_id: str,
        request_id: Optional[str] = None,
    ) -> Optional[str]:
        """Append a zero-credit record for a cache hit; failures are logged, never raised."""
        if not self.record_cache_hits:
            return None
        record = self.build_record(owner, capability, model_id, Usage(), 0.0, cached=True, request_id=request_id)
        try:
            return await self.usage_ledger.append(record)
        except Exception as e:
            logger.warning(
                "cache_hit_record_failed",
                owner_id=owner.owner_id,
                model=model_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def balance(self, owner: OwnerRef) -> Optional[float]:
        wallet = await self.wallet_service.get_balance(owner)
        return wallet.balance if wallet is not None else None
