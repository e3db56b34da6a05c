"""Currency services: rate store and usage tracking."""

from money_tracker.services.currency.store import ExchangeRateStore
from money_tracker.services.currency.usage import UsageSinkInterface, UsageTracker

__all__ = [
    "ExchangeRateStore",
    "UsageSinkInterface",
    "UsageTracker",
]
