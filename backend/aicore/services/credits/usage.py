"""Usage reporting over ledger records (off the request path)."""
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from pydantic import BaseModel, Field

from aicore.models import OwnerRef, UsageRecord, billing_period_for
from aicore.services.credits.interfaces import UsageLedger


def current_billing_period(now: Optional[datetime] = None) -> str:
    """Billing period (``YYYY-MM``, UTC) containing ``now``."""
    return billing_period_for(now or datetime.now(timezone.utc))


class UsageBucket(BaseModel):
    requests: int = 0
    cached_requests: int = 0
    credits: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0


class UsageSummary(BaseModel):
    billing_period: Optional[str] = None
    totals: UsageBucket = Field(default_factory=UsageBucket)
    by_capability: Dict[str, UsageBucket] = Field(default_factory=dict)
    by_model: Dict[str, UsageBucket] = Field(default_factory=dict)
    by_day: Dict[str, UsageBucket] = Field(default_factory=dict)


def _add(bucket: UsageBucket, record: UsageRecord) -> None:
    bucket.requests += 1
    if record.cached:
        bucket.cached_requests += 1
    bucket.credits += record.credits_charged
    bucket.input_tokens += record.usage.input_tokens
    bucket.output_tokens += record.usage.output_tokens


def summarize_usage(records: Iterable[UsageRecord], billing_period: Optional[str] = None) -> UsageSummary:
    """Aggregate records (optionally restricted to one billing period)."""
    summary = UsageSummary(billing_period=billing_period)
    for record in records:
        if billing_period and record.billing_period != billing_period:
            continue
        _add(summary.totals, record)
        _add(summary.by_capability.setdefault(record.capability.value, UsageBucket()), record)
        _add(summary.by_model.setdefault(record.model_id, UsageBucket()), record)
        _add(summary.by_day.setdefault(record.created_at.date().isoformat(), UsageBucket()), record)
    return summary


async def get_usage_summary(
    ledger: UsageLedger,
    owner: OwnerRef,
    billing_period: Optional[str] = None,
) -> UsageSummary:
    period = billing_period or current_billing_period()
    records = await ledger.list_records(owner, period)
    return summarize_usage(records, period)
