"""
Property-based tests for the pricing engine.

Feature: ai-gateway
Property 1: 计费公式正确性
Property 2: 加价取整 (markup and upward rounding)
Property 3: 未知模型的兜底定价
"""

from decimal import Decimal, localcontext

import pytest
from hypothesis import given, strategies as st, settings

from ai_gateway.errors import PricingError
from ai_gateway.models import PricingRule
from ai_gateway.pricing import (
    DEFAULT_PRICING_RULE,
    PricingEngine,
    apply_billing_markup,
    margin,
    price,
)


cost_strategy = st.floats(min_value=0.0, max_value=1000.0, allow_nan=False, allow_infinity=False)
markup_strategy = st.floats(min_value=1.0, max_value=10.0, allow_nan=False, allow_infinity=False)
increment_strategy = st.sampled_from([0.01, 0.05, 0.1, 0.25, 0.5, 1.0])


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


class TestBillingFormulaCorrectness:
    """
    Property 1: 计费公式正确性

    For any token usage and pricing rule the cost equals
    (input / 1M) * input_cost_per_1m + (output / 1M) * output_cost_per_1m,
    and unit-metered rules charge units * cost_per_unit.
    """

    @settings(max_examples=100)
    @given(
        input_tokens=st.integers(min_value=0, max_value=100_000_000),
        output_tokens=st.integers(min_value=0, max_value=100_000_000),
        input_cost_per_1m=st.floats(min_value=0.0, max_value=1000.0, allow_nan=False, allow_infinity=False),
        output_cost_per_1m=st.floats(min_value=0.0, max_value=1000.0, allow_nan=False, allow_infinity=False),
    )
    def test_token_cost_formula(self, input_tokens, output_tokens, input_cost_per_1m, output_cost_per_1m):
        """
        Property 1: 计费公式正确性

        Token rules follow the per-million formula and are never negative.
        """
        rule = PricingRule(
            provider="test_provider",
            model="test_model",
            input_cost_per_1m=input_cost_per_1m,
            output_cost_per_1m=output_cost_per_1m,
        )
        engine = PricingEngine({"test_provider": {"test_model": rule}})

        cost = engine.cost("test_provider", "test_model", input_tokens, output_tokens)

        expected = (input_tokens / 1_000_000) * input_cost_per_1m + (output_tokens / 1_000_000) * output_cost_per_1m
        assert cost >= 0
        assert abs(cost - expected) < 1e-9 * max(1.0, abs(expected))

    @settings(max_examples=100)
    @given(
        units=st.integers(min_value=0, max_value=100_000),
        cost_per_unit=st.floats(min_value=0.0, max_value=10.0, allow_nan=False, allow_infinity=False),
        unit=st.sampled_from(["images", "seconds", "characters"]),
    )
    def test_unit_cost_formula(self, units, cost_per_unit, unit):
        """Unit-metered rules charge units * cost_per_unit."""
        rule = PricingRule(provider="p", model="m", cost_per_unit=cost_per_unit, unit=unit)
        engine = PricingEngine({"p": {"m": rule}})

        cost = engine.cost("p", "m", units)

        assert cost >= 0
        assert abs(cost - units * cost_per_unit) < 1e-9 * max(1.0, units * cost_per_unit)

    def test_negative_units_rejected(self):
        engine = PricingEngine()
        with pytest.raises(PricingError):
            engine.cost("openai", "gpt-4o", -1, 0)
        with pytest.raises(PricingError):
            engine.cost("openai", "gpt-4o", 0, -5)

    def test_known_model_prices(self):
        """claude-3-5-sonnet at $3/$15 per 1M: 1000 in + 500 out = $0.0105"""
        engine = PricingEngine({
            "anthropic": {
                "claude-3-5-sonnet-20241022": PricingRule(
                    "anthropic", "claude-3-5-sonnet-20241022", input_cost_per_1m=3.0, output_cost_per_1m=15.0
                )
            }
        })
        assert engine.cost("anthropic", "claude-3-5-sonnet-20241022", 1000, 500) == pytest.approx(0.0105)


class TestMarkupRounding:
    """
    Property 2: 加价取整

    billed = ceil(cost * markup / increment) * increment, so the billed
    amount is a multiple of the increment, never below cost * markup, and
    less than one increment above it.
    """

    @settings(max_examples=100)
    @given(cost=cost_strategy, markup=markup_strategy, increment=increment_strategy)
    def test_billed_is_multiple_of_increment(self, cost, markup, increment):
        billed = price(cost, markup, increment)
        assert _dec(billed) % _dec(increment) == 0

    @settings(max_examples=100)
    @given(cost=cost_strategy, markup=markup_strategy, increment=increment_strategy)
    def test_billed_never_below_marked_up_cost(self, cost, markup, increment):
        billed = price(cost, markup, increment)
        # exact comparison even for subnormal costs such as 5e-324
        with localcontext() as ctx:
            ctx.prec = 800
            marked_up = _dec(cost) * _dec(markup)
            assert _dec(billed) >= marked_up
            assert _dec(billed) - marked_up < _dec(increment)

    def test_subnormal_cost_bills_one_increment(self):
        assert price(5e-324, 1.0, 0.01) == 0.01

    @settings(max_examples=100)
    @given(cost=cost_strategy, markup=markup_strategy, increment=increment_strategy)
    def test_price_is_deterministic(self, cost, markup, increment):
        assert price(cost, markup, increment) == price(cost, markup, increment)

    def test_small_cost_rounds_up_to_one_increment(self):
        # 0.0173 * 5 = 0.0865 -> 0.25
        assert price(0.0173, 5, 0.25) == 0.25

    def test_exact_multiple_is_not_bumped(self):
        assert price(0.05, 5, 0.25) == 0.25
        assert price(0.1, 5, 0.25) == 0.5

    def test_zero_cost_bills_zero(self):
        assert price(0.0, 5, 0.25) == 0.0

    @pytest.mark.parametrize(
        "cost,markup,increment",
        [(-0.01, 5, 0.25), (1.0, 0.5, 0.25), (1.0, 5, 0), (1.0, 5, -0.25)],
    )
    def test_invalid_inputs_rejected(self, cost, markup, increment):
        with pytest.raises(PricingError):
            price(cost, markup, increment)


class TestMargin:
    """Margin percentage: (price - cost) / price * 100."""

    def test_margin_of_zero_price_is_zero(self):
        assert margin(0, 0) == 0.0

    def test_margin_example(self):
        assert margin(0.0173, 0.25) == pytest.approx(93.08)

    @settings(max_examples=100)
    @given(cost=st.floats(min_value=0.0001, max_value=1000.0, allow_nan=False, allow_infinity=False),
           markup=markup_strategy, increment=increment_strategy)
    def test_margin_at_least_markup_margin(self, cost, markup, increment):
        """Rounding up only adds margin: margin >= (1 - 1/markup) * 100."""
        breakdown = apply_billing_markup(cost, markup, increment)
        assert breakdown.provider_cost == cost
        assert breakdown.margin_percent >= (1 - 1 / markup) * 100 - 1e-6


class TestFallbackPricing:
    """
    Property 3: 未知模型的兜底定价

    An unlisted model is priced with the most expensive rule of its
    provider, or the default rule when the provider has no rules.
    """

    def _engine(self) -> PricingEngine:
        return PricingEngine({
            "openai": {
                "gpt-4o-mini": PricingRule("openai", "gpt-4o-mini", 0.15, 0.6),
                "gpt-4": PricingRule("openai", "gpt-4", 30.0, 60.0),
                "gpt-4o": PricingRule("openai", "gpt-4o", 2.5, 10.0),
            }
        })

    def test_unknown_model_uses_most_expensive_provider_rule(self):
        rule = self._engine().get_pricing_rule("openai", "gpt-5-preview")
        assert rule.model == "gpt-4"

    def test_unknown_provider_uses_default_rule(self):
        rule = self._engine().get_pricing_rule("mystery", "model-x")
        assert rule is DEFAULT_PRICING_RULE

    @settings(max_examples=100)
    @given(
        input_tokens=st.integers(min_value=0, max_value=10_000_000),
        output_tokens=st.integers(min_value=0, max_value=10_000_000),
    )
    def test_fallback_never_cheaper_than_known_models(self, input_tokens, output_tokens):
        engine = self._engine()
        fallback = engine.cost("openai", "unlisted-model", input_tokens, output_tokens)
        for model in engine.list_models_for_provider("openai"):
            assert fallback >= engine.cost("openai", model, input_tokens, output_tokens)

    def test_has_pricing_rule(self):
        engine = self._engine()
        assert engine.has_pricing_rule("openai", "gpt-4o")
        assert not engine.has_pricing_rule("openai", "gpt-5")

    def test_list_models_for_unknown_provider_raises(self):
        with pytest.raises(PricingError):
            self._engine().list_models_for_provider("mystery")
