"""
Pricing resolution and cost calculations.

Maps (provider, model) pairs to per-million-token rates and computes
exact Decimal costs. Missing pricing is reported, never raised.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Set, Tuple

from tutor_analytics.storage.models import InteractionEvent, PricingEntry

from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

ONE_MILLION = Decimal("1000000")
ZERO = Decimal("0")

# Precision used when presenting monetary totals
MONEY_QUANTUM = Decimal("0.000001")


def quantize_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to presentation precision."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token pricing for a specific model."""
    input_cost_per_million: Decimal
    output_cost_per_million: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Active pricing snapshot keyed by (provider, model_name).

    Provider names are matched case-insensitively; model names exactly.
    """
    prices: Dict[Tuple[str, str], ModelPricing]

    @classmethod
    def from_entries(cls, entries: Iterable[PricingEntry]) -> "PricingTable":
        """Build a table from catalog entries, skipping inactive ones."""
        prices = {}
        for entry in entries:
            if not entry.is_active:
                continue
            prices[(entry.provider.lower(), entry.model_name)] = ModelPricing(
                input_cost_per_million=entry.input_cost_per_million,
                output_cost_per_million=entry.output_cost_per_million,
            )
        return cls(prices)

    def get_pricing(self, provider: str, model: str) -> Optional[ModelPricing]:
        """Get pricing for a (provider, model) pair.

        Args:
            provider: Provider name
            model: Model identifier

        Returns:
            ModelPricing, or None when no active entry exists
        """
        return self.prices.get((provider.lower(), model))


@dataclass(frozen=True)
class CostResult:
    """Cost of one usage record. `known` is False when the model is unpriced."""
    amount: Decimal
    known: bool


def calculate_cost(provider: str, model: str, usage: TokenUsage, table: PricingTable) -> CostResult:
    """Calculate the exact cost of model usage.

    amount = input/1M * input_rate + output/1M * output_rate, with no
    intermediate rounding, so cost is linear in each token count.

    Args:
        provider: Provider name
        model: Model identifier
        usage: Token usage data
        table: Active pricing snapshot

    Returns:
        CostResult; amount is zero and known is False for unpriced models
    """
    pricing = table.get_pricing(provider, model)
    if pricing is None:
        return CostResult(amount=ZERO, known=False)

    input_cost = (Decimal(usage.input_tokens) / ONE_MILLION) * pricing.input_cost_per_million
    output_cost = (Decimal(usage.output_tokens) / ONE_MILLION) * pricing.output_cost_per_million
    return CostResult(amount=input_cost + output_cost, known=True)


def event_cost(event: InteractionEvent, table: PricingTable) -> CostResult:
    usage = TokenUsage(input_tokens=event.input_tokens, output_tokens=event.output_tokens)
    return calculate_cost(event.provider, event.model_name, usage, table)


@dataclass(frozen=True)
class UnpricedUsage:
    """Usage that could not be priced, kept visible to operators."""
    events: int = 0
    tokens: int = 0
    models: Tuple[str, ...] = ()


@dataclass
class CostTally:
    """Running cost total that keeps unpriced usage separate."""
    table: PricingTable
    total: Decimal = ZERO
    priced_events: int = 0
    unpriced_events: int = 0
    unpriced_tokens: int = 0
    unpriced_models: Set[str] = field(default_factory=set)

    def add(self, event: InteractionEvent) -> CostResult:
        result = event_cost(event, self.table)
        if result.known:
            self.total += result.amount
            self.priced_events += 1
        else:
            self.unpriced_events += 1
            self.unpriced_tokens += event.total_tokens
            self.unpriced_models.add(f"{event.provider}/{event.model_name}")
        return result

    def add_all(self, events: Iterable[InteractionEvent]) -> "CostTally":
        for event in events:
            self.add(event)
        return self

    def unpriced(self) -> UnpricedUsage:
        return UnpricedUsage(
            events=self.unpriced_events,
            tokens=self.unpriced_tokens,
            models=tuple(sorted(self.unpriced_models)),
        )


def log_unpriced(unpriced: UnpricedUsage) -> None:
    if unpriced.events:
        logger.warning(
            "%d events (%d tokens) have no active pricing: %s",
            unpriced.events,
            unpriced.tokens,
            ", ".join(unpriced.models),
        )


def rates_for(table: PricingTable, provider: str, model: str) -> Tuple[Decimal, Decimal]:
    """Unit prices applied to a model, zero when unpriced."""
    pricing = table.get_pricing(provider, model)
    if pricing is None:
        return ZERO, ZERO
    return pricing.input_cost_per_million, pricing.output_cost_per_million

