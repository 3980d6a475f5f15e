"""Credit pricing, capacity enforcement, metering and usage reporting."""

from .interfaces import UsageLedger, WalletService
from .metering import CreditMeter
from .pricing import DEFAULT_PRICING, calculate_credits, estimate_tokens, estimate_usage, get_pricing
from .usage import UsageSummary, current_billing_period, get_usage_summary, summarize_usage

__all__ = [
    "CreditMeter",
    "DEFAULT_PRICING",
    "UsageLedger",
    "UsageSummary",
    "WalletService",
    "calculate_credits",
    "current_billing_period",
    "estimate_tokens",
    "estimate_usage",
    "get_pricing",
    "get_usage_summary",
    "summarize_usage",
]
