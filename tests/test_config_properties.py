"""
Property-based tests for configuration management.

Feature: ai-gateway
Property 5: 配置加载一致性
Property 6: 无效配置错误处理
"""

import os
import tempfile

import pytest
import yaml
from hypothesis import assume, given, strategies as st, settings

from ai_gateway.config import ConfigManager, GatewayConfig
from ai_gateway.errors import ConfigurationError, NotFoundError
from ai_gateway.models import ProviderType


model_name_strategy = st.from_regex(r"[a-z][a-z0-9\-]{2,20}", fullmatch=True)
price_strategy = st.floats(min_value=0.0, max_value=100.0, allow_nan=False, allow_infinity=False)


@st.composite
def provider_models_strategy(draw):
    """Generate a models mapping for one LLM provider."""
    names = draw(st.lists(model_name_strategy, min_size=1, max_size=5, unique=True))
    return {
        name: {
            "input_cost_per_1m": draw(price_strategy),
            "output_cost_per_1m": draw(price_strategy),
        }
        for name in names
    }


def _write_temp_yaml(content: str) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False, encoding="utf-8") as f:
        f.write(content)
        return f.name


class TestConfigLoading:
    """
    Property 5: 配置加载一致性

    Models and prices written to a config file are what the manager
    reports, merged on top of the built-in catalog.
    """

    @settings(max_examples=50)
    @given(models=provider_models_strategy())
    def test_yaml_models_round_trip(self, models):
        raw = {
            "builtin_catalog": False,
            "providers": {"llm": {"openai": {"api_key": "sk-test", "models": models}}},
        }
        path = _write_temp_yaml(yaml.safe_dump(raw))
        try:
            manager = ConfigManager(path)
            assert set(manager.get_provider_models("llm", "openai")) == set(models)

            rules = manager.get_pricing_rules()["openai"]
            for name, prices in models.items():
                assert abs(rules[name].input_cost_per_1m - prices["input_cost_per_1m"]) < 1e-9
                assert abs(rules[name].output_cost_per_1m - prices["output_cost_per_1m"]) < 1e-9
        finally:
            os.unlink(path)

    def test_builtin_catalog_without_file(self):
        manager = ConfigManager(raw_config={})
        providers = manager.get_available_providers()
        assert set(providers) == {"llm", "image", "video", "voice"}
        assert {"openai", "anthropic", "google"} <= set(providers["llm"])
        assert "fal" in providers["image"]
        assert "fal-video" in providers["video"]
        assert "elevenlabs" in providers["voice"]

    def test_config_extends_builtin_catalog(self):
        manager = ConfigManager(raw_config={
            "providers": {"llm": {"openai": {"models": {"gpt-4.1": {"input_cost_per_1m": 2, "output_cost_per_1m": 8}}}}}
        })
        models = manager.get_provider_models("llm", "openai")
        assert "gpt-4.1" in models
        assert "gpt-4o" in models

    def test_disabled_provider_is_not_listed(self):
        manager = ConfigManager(raw_config={"providers": {"image": {"stability": {"enabled": False}}}})
        assert "stability" not in manager.get_available_providers()["image"]
        with pytest.raises(NotFoundError):
            manager.get_provider_models("image", "stability")

    def test_missing_api_key_keeps_provider_listed(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        manager = ConfigManager(raw_config={})
        assert "anthropic" in manager.get_available_providers()["llm"]
        assert manager.get_provider_config(ProviderType.LLM, "anthropic").api_key is None

    def test_env_var_substitution(self, monkeypatch):
        monkeypatch.setenv("TEST_GATEWAY_OPENAI_KEY", "sk-from-env")
        manager = ConfigManager(raw_config={
            "providers": {"llm": {"openai": {"api_key": "${TEST_GATEWAY_OPENAI_KEY}"}}}
        })
        assert manager.get_provider_config("llm", "openai").api_key == "sk-from-env"

    def test_proxy_url(self):
        manager = ConfigManager(raw_config={"proxy": {"enable": True, "host": "http://127.0.0.1", "port": 7890}})
        assert manager.get_proxy_url() == "http://127.0.0.1:7890"
        assert ConfigManager(raw_config={}).get_proxy_url() is None

    def test_unknown_provider_type_lookup(self):
        with pytest.raises(NotFoundError):
            ConfigManager(raw_config={}).get_provider_config("hologram", "openai")


class TestGatewayConfig:

    def test_defaults(self):
        config = GatewayConfig()
        assert config.billing_markup == 5.0
        assert config.billing_increment == 0.25
        assert config.default_llm == "anthropic"

    @settings(max_examples=100)
    @given(markup=st.floats(max_value=0.999, allow_nan=False, allow_infinity=False))
    def test_markup_below_one_rejected(self, markup):
        with pytest.raises(ConfigurationError):
            GatewayConfig(billing_markup=markup)

    @pytest.mark.parametrize("increment", [0, -0.25])
    def test_non_positive_increment_rejected(self, increment):
        with pytest.raises(ConfigurationError):
            GatewayConfig(billing_increment=increment)

    def test_env_overrides(self):
        config = GatewayConfig().with_env_overrides({
            "AI_GATEWAY_BILLING_MARKUP": "3",
            "AI_GATEWAY_DEFAULT_LLM": "openai",
        })
        assert config.billing_markup == 3.0
        assert config.default_llm == "openai"

    def test_env_override_must_be_numeric(self):
        with pytest.raises(ConfigurationError):
            GatewayConfig().with_env_overrides({"AI_GATEWAY_BILLING_INCREMENT": "a quarter"})

    def test_gateway_section_from_file(self):
        manager = ConfigManager(raw_config={"gateway": {"billing_markup": 2.5, "unknown_key": 1}})
        assert manager.gateway_config.billing_markup == 2.5


class TestInvalidConfigErrorHandling:
    """
    Property 6: 无效配置错误处理

    Malformed configuration raises ConfigurationError rather than crashing
    or returning a partial configuration.
    """

    @settings(max_examples=100)
    @given(content=st.text(alphabet=st.characters(whitelist_categories=("L", "N", "P", "S", "Z"), max_codepoint=127), min_size=1, max_size=200))
    def test_invalid_yaml_raises_config_error(self, content: str):
        try:
            parsed = yaml.safe_load(content)
        except (yaml.YAMLError, ValueError):
            parsed = None
        # any mapping, even an empty one, is a valid configuration
        assume(not isinstance(parsed, dict))

        path = _write_temp_yaml(content)
        try:
            with pytest.raises(ConfigurationError):
                ConfigManager(path).load()
        finally:
            os.unlink(path)

    def test_missing_file_raises_config_error(self):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigManager("/nonexistent/path/config.yaml").load()

    def test_empty_file_raises_config_error(self):
        path = _write_temp_yaml("")
        try:
            with pytest.raises(ConfigurationError, match="empty"):
                ConfigManager(path).load()
        finally:
            os.unlink(path)

    def test_non_dict_yaml_raises_config_error(self):
        path = _write_temp_yaml("- item1\n- item2\n")
        try:
            with pytest.raises(ConfigurationError, match="mapping"):
                ConfigManager(path).load()
        finally:
            os.unlink(path)

    def test_missing_env_var_in_gateway_section(self, monkeypatch):
        monkeypatch.delenv("NONEXISTENT_VAR_12345", raising=False)
        with pytest.raises(ConfigurationError, match="not set"):
            ConfigManager(raw_config={"gateway": {"default_llm": "${NONEXISTENT_VAR_12345}"}}).load()

    def test_unknown_provider_type(self):
        with pytest.raises(ConfigurationError, match="Unknown provider type"):
            ConfigManager(raw_config={"providers": {"hologram": {}}}).load()

    def test_invalid_markup_in_file(self):
        with pytest.raises(ConfigurationError):
            ConfigManager(raw_config={"gateway": {"billing_markup": 0.5}}).load()

    def test_unknown_pricing_unit(self):
        with pytest.raises(ConfigurationError, match="pricing unit"):
            ConfigManager(raw_config={
                "providers": {"image": {"fal": {"models": {"x": {"unit": "pixels"}}}}}
            }).load()

    def test_default_model_must_exist(self):
        with pytest.raises(ConfigurationError, match="default_model"):
            ConfigManager(raw_config={
                "builtin_catalog": False,
                "providers": {"llm": {"openai": {"default_model": "gpt-9", "models": {"gpt-4o": {}}}}},
            }).load()
