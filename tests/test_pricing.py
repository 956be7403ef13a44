"""
Unit tests for pricing resolution and cost calculations.
"""

from decimal import Decimal

import pytest

from tutor_analytics.core.pricing import (
    CostTally,
    PricingTable,
    calculate_cost,
    quantize_money,
    rates_for,
)
from tutor_analytics.core.token_counter import TokenUsage
from tutor_analytics.storage.models import PricingEntry

from conftest import PRICING, make_event


@pytest.fixture
def table() -> PricingTable:
    return PricingTable.from_entries(PRICING)


class TestCalculateCost:
    """Test exact per-event cost calculation."""

    def test_known_pricing(self, table):
        """1,000 input and 500 output tokens at $2.50/$10.00 per million cost $0.0075."""
        result = calculate_cost("openai", "gpt-4o", TokenUsage(1000, 500), table)

        assert result.known is True
        assert result.amount == Decimal("0.0075")

    def test_cost_is_linear_in_tokens(self, table):
        """Doubling both token counts doubles the cost."""
        single = calculate_cost("openai", "gpt-4o", TokenUsage(1000, 500), table)
        double = calculate_cost("openai", "gpt-4o", TokenUsage(2000, 1000), table)

        assert double.amount == single.amount * 2

    def test_provider_matched_case_insensitively(self, table):
        """Provider names differ in case between events and pricing."""
        result = calculate_cost("OpenAI", "gpt-4o", TokenUsage(1000, 500), table)
        assert result.known is True

    def test_unknown_model_is_reported_not_raised(self, table):
        """An unpriced model yields a zero, unknown cost."""
        result = calculate_cost("openai", "mystery-model", TokenUsage(1000, 500), table)

        assert result.known is False
        assert result.amount == Decimal("0")

    def test_inactive_pricing_is_ignored(self, table):
        """Inactive pricing entries never price an event."""
        result = calculate_cost("openai", "gpt-3.5-turbo", TokenUsage(1000, 500), table)
        assert result.known is False

    def test_zero_tokens_cost_nothing(self, table):
        result = calculate_cost("openai", "gpt-4o", TokenUsage(0, 0), table)
        assert result.amount == Decimal("0")
        assert result.known is True


class TestCostTally:
    """Test running totals with unpriced usage kept separate."""

    def test_unpriced_usage_is_tracked(self, table):
        """Unpriced events are counted but excluded from the total."""
        tally = CostTally(table).add_all([
            make_event("m1"),
            make_event("m2", model_name="mystery-model", input_tokens=10, output_tokens=20),
        ])

        assert tally.total == Decimal("0.0075")
        unpriced = tally.unpriced()
        assert unpriced.events == 1
        assert unpriced.tokens == 30
        assert unpriced.models == ("openai/mystery-model",)

    def test_empty_tally(self, table):
        tally = CostTally(table)
        assert tally.total == Decimal("0")
        assert tally.unpriced().events == 0


class TestHelpers:
    """Test rounding and rate lookups."""

    def test_quantize_rounds_half_up(self):
        """Presentation rounding uses six decimals, half up."""
        assert quantize_money(Decimal("0.0000005")) == Decimal("0.000001")
        assert quantize_money(Decimal("0.0075")) == Decimal("0.007500")

    def test_rates_for_priced_and_unpriced(self, table):
        assert rates_for(table, "openai", "gpt-4o") == (Decimal("2.50"), Decimal("10.00"))
        assert rates_for(table, "openai", "unknown") == (Decimal("0"), Decimal("0"))

    def test_later_entries_override_earlier(self):
        """The last active entry for a pair wins."""
        table = PricingTable.from_entries([
            PricingEntry("openai", "gpt-4o", Decimal("1"), Decimal("1")),
            PricingEntry("openai", "gpt-4o", Decimal("2"), Decimal("3")),
        ])
        assert rates_for(table, "openai", "gpt-4o") == (Decimal("2"), Decimal("3"))


class TestTokenUsage:
    """Test token usage validation and legacy splits."""

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            TokenUsage(input_tokens=-1, output_tokens=10)

    def test_legacy_split_preserves_total(self):
        """A combined count is split 25/75 without losing tokens."""
        usage = TokenUsage.from_total(1001)

        assert usage.input_tokens == 250
        assert usage.output_tokens == 751
        assert usage.total_tokens == 1001
