"""Token and cost accounting."""

from gentree.usage.ledger import (
    UNBOUNDED,
    LedgerTotals,
    ProviderUsage,
    UsageLedger,
    UsageLevel,
    classify_usage,
)

__all__ = [
    "UNBOUNDED",
    "LedgerTotals",
    "ProviderUsage",
    "UsageLedger",
    "UsageLevel",
    "classify_usage",
]
