"""
Wallet and ledger types.

A request is billed to exactly one wallet: the organization's when the caller
acts in an organization context, otherwise the caller's personal wallet.
There is no fallback from one to the other.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from aicore.models.capabilities import Capability
from aicore.models.requests import CallerIdentity
from aicore.models.results import Usage


class WalletType(str, Enum):
    PERSONAL = "personal"
    ORGANIZATION = "organization"


class OwnerRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    wallet_type: WalletType
    owner_id: str
    user_id: str

    @classmethod
    def personal(cls, user_id: str) -> "OwnerRef":
        return cls(wallet_type=WalletType.PERSONAL, owner_id=user_id, user_id=user_id)

    @classmethod
    def organization(cls, organization_id: str, user_id: str) -> "OwnerRef":
        return cls(wallet_type=WalletType.ORGANIZATION, owner_id=organization_id, user_id=user_id)

    @classmethod
    def for_identity(cls, identity: CallerIdentity) -> "OwnerRef":
        if identity.organization_id:
            return cls.organization(identity.organization_id, identity.user_id)
        return cls.personal(identity.user_id)


class CreditCheck(BaseModel):
    has_credits: bool
    within_plan_limit: bool
    balance: float
    monthly_used: float = 0.0
    plan_limit: Optional[float] = None  # None = unlimited


class WalletBalance(BaseModel):
    balance: float
    monthly_used: float = 0.0
    plan_limit: Optional[float] = None


class Deduction(BaseModel):
    credits_charged: float
    new_balance: float
    usage_record_id: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def billing_period_for(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


class UsageRecord(BaseModel):
    """Immutable ledger entry for one billed (or free, cached) AI invocation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    wallet_type: WalletType
    owner_id: str
    user_id: str
    capability: Capability
    model_id: str
    usage: Usage
    credits_charged: float = Field(0.0, ge=0)
    billing_period: str
    cached: bool = False
    request_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
