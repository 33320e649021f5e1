"""Usage ledger: per-provider and session-wide token/cost accounting.

The ledger is pure accounting. It never enforces limits; callers read
usage_ratio() and decide what to show with classify_usage().
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from gentree.logging import VERBOSE, get_logger

log = get_logger("ledger")

# usage_ratio() result when a provider has no (or a zero) limit
UNBOUNDED = math.inf


class UsageLevel(Enum):
    """Display classification of a usage ratio."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    UNBOUNDED = "unbounded"

    def __str__(self) -> str:
        return self.value


@dataclass
class ProviderUsage:
    """Accumulated usage for one provider.

    Attributes:
        provider: Provider name
        tokens_used: Output tokens recorded
        cost: Monetary cost recorded
        current_usage: Quantity measured against usage_limit
        usage_limit: Limit for ratio display; None means no limit
    """

    provider: str
    tokens_used: int = 0
    cost: float = 0.0
    current_usage: float = 0.0
    usage_limit: float | None = None


@dataclass(frozen=True, slots=True)
class LedgerTotals:
    """Session-wide totals."""

    tokens_used: int = 0
    total_cost: float = 0.0
    generation_count: int = 0
    success_count: int = 0
    failure_count: int = 0

    @property
    def success_rate(self) -> float:
        """Percentage of finished generations that succeeded (100 before any)."""
        finished = self.success_count + self.failure_count
        if finished == 0:
            return 100.0
        return self.success_count / finished * 100.0


def classify_usage(
    ratio: float, warning: float = 0.75, critical: float = 0.90
) -> UsageLevel:
    """Classify a usage ratio against display thresholds."""
    if math.isinf(ratio):
        return UsageLevel.UNBOUNDED
    if ratio > critical:
        return UsageLevel.CRITICAL
    if ratio > warning:
        return UsageLevel.WARNING
    return UsageLevel.OK


class UsageLedger:
    """Running totals of tokens and cost.

    Totals only grow; there is no per-call undo. reset() starts a new
    session.

    Usage:
        ledger = UsageLedger(limits={"openai": 50.0})
        ledger.record_usage("openai", 1200, 0.03)
        ledger.usage_ratio("openai")  # 0.0006
    """

    def __init__(self, limits: dict[str, float] | None = None) -> None:
        self._providers: dict[str, ProviderUsage] = {}
        self._totals = LedgerTotals()
        for provider, limit in (limits or {}).items():
            self.set_limit(provider, limit)

    def _entry(self, provider: str) -> ProviderUsage:
        entry = self._providers.get(provider)
        if entry is None:
            entry = ProviderUsage(provider=provider)
            self._providers[provider] = entry
        return entry

    def record_usage(self, provider: str, tokens: int, cost: float) -> None:
        """Add one completed generation's tokens and cost.

        Raises:
            ValueError: ``tokens`` or ``cost`` is negative.
        """
        if tokens < 0 or cost < 0:
            raise ValueError(f"Usage must be non-negative (tokens={tokens}, cost={cost})")

        entry = self._entry(provider)
        entry.tokens_used += tokens
        entry.cost += cost
        entry.current_usage += cost

        totals = self._totals
        self._totals = LedgerTotals(
            tokens_used=totals.tokens_used + tokens,
            total_cost=totals.total_cost + cost,
            generation_count=totals.generation_count,
            success_count=totals.success_count,
            failure_count=totals.failure_count,
        )
        log.log(
            VERBOSE,
            "Usage for %s: +%d tokens, +%.4f cost (session %d tokens, %.4f)",
            provider, tokens, cost, self._totals.tokens_used, self._totals.total_cost,
        )

    def record_outcome(self, success: bool) -> None:
        """Count a finished generation toward the success rate."""
        totals = self._totals
        self._totals = LedgerTotals(
            tokens_used=totals.tokens_used,
            total_cost=totals.total_cost,
            generation_count=totals.generation_count + 1,
            success_count=totals.success_count + (1 if success else 0),
            failure_count=totals.failure_count + (0 if success else 1),
        )

    def set_limit(self, provider: str, limit: float | None) -> None:
        if limit is not None and limit < 0:
            raise ValueError(f"Usage limit must be non-negative, got {limit}")
        self._entry(provider).usage_limit = limit

    def usage_ratio(self, provider: str) -> float:
        """current_usage / usage_limit, or UNBOUNDED without a positive limit."""
        entry = self._providers.get(provider)
        if entry is None or not entry.usage_limit:
            return UNBOUNDED
        return entry.current_usage / entry.usage_limit

    def provider(self, name: str) -> ProviderUsage | None:
        return self._providers.get(name)

    def providers(self) -> list[ProviderUsage]:
        return list(self._providers.values())

    def totals(self) -> LedgerTotals:
        return self._totals

    def reset(self) -> None:
        """Zero all counters, keeping configured limits."""
        for entry in self._providers.values():
            entry.tokens_used = 0
            entry.cost = 0.0
            entry.current_usage = 0.0
        self._totals = LedgerTotals()
        log.debug("Ledger reset")

    def to_dict(self) -> dict[str, Any]:
        totals = self._totals
        return {
            "providers": [asdict(entry) for entry in self._providers.values()],
            "totals": {
                "tokensUsed": totals.tokens_used,
                "totalCost": totals.total_cost,
                "generationCount": totals.generation_count,
                "successCount": totals.success_count,
                "failureCount": totals.failure_count,
                "successRate": totals.success_rate,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageLedger:
        ledger = cls()
        for entry in data.get("providers", []):
            usage = ProviderUsage(**entry)
            ledger._providers[usage.provider] = usage
        totals = data.get("totals") or {}
        ledger._totals = LedgerTotals(
            tokens_used=totals.get("tokensUsed", 0),
            total_cost=totals.get("totalCost", 0.0),
            generation_count=totals.get("generationCount", 0),
            success_count=totals.get("successCount", 0),
            failure_count=totals.get("failureCount", 0),
        )
        return ledger
