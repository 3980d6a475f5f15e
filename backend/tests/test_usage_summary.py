"""
Unit tests for usage reporting over ledger records.
"""
from datetime import datetime, timezone

import pytest

from aicore.models import Capability, OwnerRef, Usage, UsageRecord, WalletType
from aicore.services.credits import current_billing_period, get_usage_summary, summarize_usage


def record(model_id, credits, day, capability=Capability.TEXT_GENERATION, cached=False, owner_id="user-1", **usage):
    created_at = datetime(2026, 3, day, 12, 0, tzinfo=timezone.utc)
    return UsageRecord(
        wallet_type=WalletType.PERSONAL,
        owner_id=owner_id,
        user_id="user-1",
        capability=capability,
        model_id=model_id,
        usage=Usage(**usage),
        credits_charged=credits,
        billing_period="2026-03",
        cached=cached,
        created_at=created_at,
    )


def test_current_billing_period():
    assert current_billing_period(datetime(2026, 1, 31, 23, 59, tzinfo=timezone.utc)) == "2026-01"
    assert len(current_billing_period()) == 7


def test_summarize_groups_by_capability_model_and_day():
    records = [
        record("gpt-4o", 3.5, 1, input_tokens=100, output_tokens=300),
        record("gpt-4o", 0.0, 1, cached=True),
        record("claude-3-haiku-20240307", 0.5, 2, input_tokens=40, output_tokens=60),
        record("dall-e-3", 40.0, 2, capability=Capability.IMAGE_GENERATION, image_count=1),
    ]

    summary = summarize_usage(records)

    assert summary.totals.requests == 4
    assert summary.totals.cached_requests == 1
    assert summary.totals.credits == pytest.approx(44.0)
    assert summary.totals.input_tokens == 140
    assert summary.by_model["gpt-4o"].requests == 2
    assert summary.by_model["gpt-4o"].credits == pytest.approx(3.5)
    assert summary.by_capability["image-generation"].credits == 40.0
    assert summary.by_day["2026-03-01"].requests == 2
    assert summary.by_day["2026-03-02"].credits == pytest.approx(40.5)


def test_summarize_filters_billing_period():
    summary = summarize_usage([record("gpt-4o", 1.0, 5)], billing_period="2026-04")

    assert summary.billing_period == "2026-04"
    assert summary.totals.requests == 0
    assert summary.by_model == {}


@pytest.mark.asyncio
async def test_get_usage_summary_reads_owner_records(ledger):
    await ledger.append(record("gpt-4o", 2.0, 3))
    await ledger.append(record("gpt-4o", 9.0, 3, owner_id="user-2"))

    summary = await get_usage_summary(ledger, OwnerRef.personal("user-1"), billing_period="2026-03")

    assert summary.totals.requests == 1
    assert summary.totals.credits == 2.0
