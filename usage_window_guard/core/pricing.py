"""
Pricing calculations for cost estimates.

Approximate list prices used to attach a dollar figure to per-model
usage. Estimates only; nothing is billed from these numbers.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_per_million: Decimal  # USD per 1M input tokens
    output_per_million: Decimal  # USD per 1M output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table with a default tier for unknown models."""
    prices: Dict[str, ModelPricing]
    default: ModelPricing

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model.

        Exact ids match first, then the longest known family name
        contained in the id (so dated ids such as
        ``claude-3-opus-20240229`` resolve), then the default tier.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model
        """
        if model in self.prices:
            return self.prices[model]
        for family in sorted(self.prices, key=len, reverse=True):
            if family in (model or ""):
                return self.prices[family]
        return self.default


PRICING_TABLE = PricingTable(
    prices={
        "claude-3-5-sonnet": ModelPricing(Decimal("3.00"), Decimal("15.00")),
        "claude-3-5-haiku": ModelPricing(Decimal("0.25"), Decimal("1.25")),
        "claude-3-opus": ModelPricing(Decimal("15.00"), Decimal("75.00")),
        "claude-3-sonnet": ModelPricing(Decimal("3.00"), Decimal("15.00")),
        "claude-3-haiku": ModelPricing(Decimal("0.25"), Decimal("1.25")),
    },
    default=ModelPricing(Decimal("3.00"), Decimal("15.00")),
)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate the cost of token usage for a model.

    Args:
        model: Model identifier
        input_tokens: Input tokens consumed
        output_tokens: Output tokens generated

    Returns:
        Estimated cost in USD, rounded half-up to cents
    """
    pricing = PRICING_TABLE.get_pricing(model)
    million = Decimal("1000000")

    input_cost = (Decimal(input_tokens) / million) * pricing.input_per_million
    output_cost = (Decimal(output_tokens) / million) * pricing.output_per_million

    total_cost = input_cost + output_cost
    return float(total_cost.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
