"""
Pricing engine for the AI gateway.

Maps (provider, model, usage units) to a raw provider cost, and a raw
cost to a billed amount through markup and upward rounding. The module
functions are pure and safe to call concurrently.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from .errors import PricingError
from .models import PricingRule

logger = logging.getLogger(__name__)


# Applied when neither the model nor its provider has a pricing rule.
DEFAULT_PRICING_RULE = PricingRule(
    provider="*",
    model="*",
    input_cost_per_1m=15.0,
    output_cost_per_1m=75.0,
)


def _to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def price(cost: float, markup: float, increment: float) -> float:
    """
    Apply markup to a provider cost and round UP to the billing increment.

        billed = ceil(cost * markup / increment) * increment

    Arithmetic is done in Decimal on the decimal representation of the
    inputs, so the result is an exact multiple of ``increment`` and never
    below ``cost * markup``.

    Raises:
        PricingError: If cost < 0, markup < 1 or increment <= 0
    """
    if cost < 0:
        raise PricingError(f"cost cannot be negative, got {cost}")
    if markup < 1:
        raise PricingError(f"markup must be >= 1, got {markup}")
    if increment <= 0:
        raise PricingError(f"increment must be > 0, got {increment}")

    step = _to_decimal(increment)
    marked_up = _to_decimal(cost) * _to_decimal(markup)
    steps = (marked_up / step).to_integral_value(rounding=ROUND_CEILING)
    return float(steps * step)


def margin(cost: float, billed: float) -> float:
    """
    Margin percentage: (price - cost) / price * 100.

    Defined as 0 when the price is 0.
    """
    if billed == 0:
        return 0.0
    return float((_to_decimal(billed) - _to_decimal(cost)) / _to_decimal(billed) * 100)


@dataclass(frozen=True)
class BillingBreakdown:
    provider_cost: float
    billed_amount: float
    margin_percent: float


def apply_billing_markup(cost: float, markup: float, increment: float) -> BillingBreakdown:
    """Compute billed amount and margin for a provider cost."""
    billed = price(cost, markup, increment)
    return BillingBreakdown(
        provider_cost=cost,
        billed_amount=billed,
        margin_percent=margin(cost, billed),
    )


class PricingEngine:
    """
    计费引擎 - 根据使用量实时计算成本。

    Holds a read-only pricing table (provider -> model -> PricingRule).
    An unlisted model is priced with the most expensive rule known for its
    provider, or DEFAULT_PRICING_RULE when the provider has no rules, so
    billing never silently breaks for a new model.
    """

    def __init__(
        self,
        pricing: dict[str, dict[str, PricingRule]] | None = None,
        default_rule: PricingRule = DEFAULT_PRICING_RULE,
    ):
        self._pricing = {provider: dict(rules) for provider, rules in (pricing or {}).items()}
        self._default_rule = default_rule

    @classmethod
    def from_config(cls, config_manager) -> "PricingEngine":
        return cls(config_manager.get_pricing_rules())

    def get_pricing_rule(self, provider: str, model: str) -> PricingRule:
        """
        Get the pricing rule for a provider/model, falling back to a
        conservative rule for unknown models.
        """
        rules = self._pricing.get(provider, {})
        if model in rules:
            return rules[model]

        if rules:
            fallback = max(rules.values(), key=lambda rule: rule.weight)
        else:
            fallback = self._default_rule
        logger.warning(
            "No pricing rule for %s/%s, billing with fallback rule %s/%s",
            provider, model, fallback.provider, fallback.model,
        )
        return fallback

    def has_pricing_rule(self, provider: str, model: str) -> bool:
        return model in self._pricing.get(provider, {})

    def cost(
        self,
        provider: str,
        model: str,
        input_units: int | float,
        output_units: int | float = 0,
    ) -> float:
        """
        Calculate provider cost for a given usage.

        Token models: cost = (input / 1_000_000) * input_cost_per_1m +
                             (output / 1_000_000) * output_cost_per_1m
        Unit models:  cost = units * cost_per_unit

        Returns:
            Cost in USD (non-negative float)

        Raises:
            PricingError: If units are negative
        """
        if input_units < 0:
            raise PricingError("input_units cannot be negative")
        if output_units < 0:
            raise PricingError("output_units cannot be negative")

        return self.get_pricing_rule(provider, model).calculate_cost(input_units, output_units)

    def list_models_for_provider(self, provider: str) -> list[str]:
        """
        Raises:
            PricingError: If provider has no pricing rules
        """
        if provider not in self._pricing:
            raise PricingError(f"No pricing rules for provider: {provider}")
        return list(self._pricing[provider].keys())
