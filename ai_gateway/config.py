"""
Configuration management for the AI gateway.
Supports YAML configuration loading with environment variable substitution.
"""

import copy
import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .catalog import DEFAULT_GATEWAY, DEFAULT_PROVIDERS
from .errors import ConfigurationError, NotFoundError
from .models import PricingRule, ProviderType

logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    """
    Gateway-wide defaults and billing parameters.

    Invariants: billing_markup >= 1 (never bills below cost) and
    billing_increment > 0.
    """
    default_llm: str = DEFAULT_GATEWAY["default_llm"]
    default_llm_model: str = DEFAULT_GATEWAY["default_llm_model"]
    default_image: str = DEFAULT_GATEWAY["default_image"]
    default_video: str = DEFAULT_GATEWAY["default_video"]
    default_voice: str = DEFAULT_GATEWAY["default_voice"]
    billing_markup: float = DEFAULT_GATEWAY["billing_markup"]
    billing_increment: float = DEFAULT_GATEWAY["billing_increment"]
    request_timeout: float = DEFAULT_GATEWAY["request_timeout"]
    usage_timeout: float = DEFAULT_GATEWAY["usage_timeout"]

    ENV_PREFIX = "AI_GATEWAY_"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.billing_markup < 1:
            raise ConfigurationError(
                f"billing_markup must be >= 1, got {self.billing_markup}"
            )
        if self.billing_increment <= 0:
            raise ConfigurationError(
                f"billing_increment must be > 0, got {self.billing_increment}"
            )
        if self.request_timeout <= 0 or self.usage_timeout <= 0:
            raise ConfigurationError("timeouts must be > 0")

    def default_provider(self, provider_type: ProviderType) -> str:
        return {
            ProviderType.LLM: self.default_llm,
            ProviderType.IMAGE: self.default_image,
            ProviderType.VIDEO: self.default_video,
            ProviderType.VOICE: self.default_voice,
        }[provider_type]

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "GatewayConfig":
        """Build from a mapping, ignoring unknown keys."""
        known = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        for key, value in raw.items():
            if key not in known or value is None:
                continue
            kwargs[key] = _coerce(key, value, known[key])
        return cls(**kwargs)

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> "GatewayConfig":
        """
        Return a copy with ``AI_GATEWAY_<FIELD>`` environment values applied.

        Example: AI_GATEWAY_BILLING_MARKUP=3.0
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(self):
            value = environ.get(f"{self.ENV_PREFIX}{f.name.upper()}")
            if value:
                overrides[f.name] = _coerce(f.name, value, f.type)
        return replace(self, **overrides) if overrides else self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "GatewayConfig":
        return cls().with_env_overrides(environ)


def _coerce(key: str, value: Any, type_name: Any) -> Any:
    try:
        if type_name in (float, "float"):
            return float(value)
        return str(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}")


@dataclass
class ModelConfig:
    """One model offered by a provider."""
    name: str
    pricing: PricingRule
    capabilities: tuple[str, ...] = ()
    rate_limit_rpm: int | None = None


@dataclass
class ProviderConfig:
    """Configuration for a single upstream provider"""
    name: str
    type: ProviderType
    api_key: str | None = None
    base_url: str | None = None
    enabled: bool = True
    default_model: str | None = None
    rate_limit_rpm: int | None = None
    models: dict[str, ModelConfig] = field(default_factory=dict)

    def model_names(self) -> list[str]:
        return list(self.models.keys())


@dataclass
class ProxyConfig:
    """Proxy configuration for outbound HTTP requests"""
    enable: bool = False
    host: str | None = None
    port: int | None = None


@dataclass
class HttpClientConfig:
    """HTTP client connection pool configuration"""
    max_connections: int = 100
    max_keepalive_connections: int = 20
    timeout: float = 60.0


@dataclass
class Config:
    """Complete system configuration"""
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    providers: dict[ProviderType, dict[str, ProviderConfig]] = field(default_factory=dict)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    http_client: HttpClientConfig = field(default_factory=HttpClientConfig)


class ConfigManager:
    """
    Configuration manager for the AI gateway.

    Supports:
    - Loading configuration from YAML files
    - Environment variable substitution (${VAR_NAME} syntax)
    - A built-in provider catalog that config files extend or override
    - AI_GATEWAY_* environment overrides for gateway defaults

    Without an explicit path, ``config.yaml`` in the working directory is
    used when present; otherwise the built-in catalog alone is loaded.
    """

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')
    DEFAULT_CONFIG_FILE = "config.yaml"

    def __init__(
        self,
        config_path: str | Path | None = None,
        raw_config: dict | None = None,
    ):
        """
        Initialize ConfigManager.

        Args:
            config_path: Path to YAML configuration file
            raw_config: Already-parsed configuration mapping; takes precedence
                over config_path (useful in tests and embedding)
        """
        self._config: Config | None = None
        self._explicit_path = config_path is not None
        self._config_path = Path(config_path) if config_path else Path(self.DEFAULT_CONFIG_FILE)
        self._raw_config = raw_config

    @property
    def config(self) -> Config:
        """Get the loaded configuration, loading it if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    def load(self, config_path: str | Path | None = None) -> Config:
        """
        Load configuration.

        Raises:
            ConfigurationError: If the configuration file is invalid or an
                explicitly requested file does not exist
        """
        if self._raw_config is not None and config_path is None:
            return self._parse_config(copy.deepcopy(self._raw_config))

        path = Path(config_path) if config_path else self._config_path
        explicit = self._explicit_path or config_path is not None

        self._load_env_file_if_present(path)

        if not path.exists():
            if explicit:
                raise ConfigurationError(f"Configuration file not found: {path}")
            logger.debug("No %s found, using built-in provider catalog", path)
            return self._parse_config({})

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw_config = yaml.safe_load(f)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}")

        if raw_config is None:
            raise ConfigurationError("Configuration file is empty")

        if not isinstance(raw_config, dict):
            raise ConfigurationError("Configuration must be a YAML mapping")

        return self._parse_config(raw_config)

    def _load_env_file_if_present(self, config_path: Path) -> None:
        search_root = config_path if config_path.is_dir() else config_path.parent
        env_path: Path | None = None
        for candidate_dir in [search_root, *search_root.resolve().parents]:
            candidate = candidate_dir / ".env"
            if candidate.exists():
                env_path = candidate
                break

        if env_path is None:
            return

        try:
            lines = env_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning("Could not read %s: %s", env_path, e)
            return

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if not key:
                continue
            if key not in os.environ or os.environ.get(key, "") == "":
                os.environ[key] = value

    def _substitute_env_vars(self, obj: Any, skip_missing: bool = False) -> Any:
        """
        Recursively substitute environment variables in configuration.

        Supports ${VAR_NAME} syntax. If an environment variable is not set,
        returns None when skip_missing=True, otherwise raises ConfigurationError.
        """
        if isinstance(obj, str):
            def replace_env_var(match: re.Match) -> str:
                var_name = match.group(1)
                value = os.environ.get(var_name)
                if value is None:
                    if skip_missing:
                        return ""
                    raise ConfigurationError(f"Environment variable not set: {var_name}")
                return value

            result = self.ENV_VAR_PATTERN.sub(replace_env_var, obj)
            # If the entire string was an env var that wasn't set, return None
            if skip_missing and result == "" and self.ENV_VAR_PATTERN.search(obj):
                return None
            return result
        elif isinstance(obj, dict):
            return {k: self._substitute_env_vars(v, skip_missing) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._substitute_env_vars(item, skip_missing) for item in obj]
        return obj

    @staticmethod
    def _merge(base: dict, override: dict) -> dict:
        merged = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = ConfigManager._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _parse_config(self, raw: dict) -> Config:
        """Parse raw configuration dictionary into Config object."""
        config = Config()

        gateway_raw = raw.get('gateway', {}) or {}
        if not isinstance(gateway_raw, dict):
            raise ConfigurationError("'gateway' section must be a mapping")
        gateway_raw = self._substitute_env_vars(gateway_raw)
        config.gateway = GatewayConfig.from_mapping(gateway_raw).with_env_overrides()

        # Parse proxy config
        if 'proxy' in raw:
            proxy_raw = raw['proxy']
            if not isinstance(proxy_raw, dict):
                raise ConfigurationError("'proxy' section must be a mapping")
            proxy_raw = self._substitute_env_vars(proxy_raw, skip_missing=True)
            port = proxy_raw.get('port')
            try:
                port_value = int(port) if port is not None else None
            except (TypeError, ValueError):
                raise ConfigurationError("'proxy.port' must be an integer")
            config.proxy = ProxyConfig(
                enable=bool(proxy_raw.get('enable', False)),
                host=proxy_raw.get('host'),
                port=port_value,
            )

        # Parse HTTP client config
        if 'http_client' in raw:
            http_client_raw = raw['http_client']
            if not isinstance(http_client_raw, dict):
                raise ConfigurationError("'http_client' section must be a mapping")
            config.http_client = HttpClientConfig(
                max_connections=int(http_client_raw.get('max_connections', 100)),
                max_keepalive_connections=int(http_client_raw.get('max_keepalive_connections', 20)),
                timeout=float(http_client_raw.get('timeout', 60.0)),
            )

        providers_raw = raw.get('providers', {}) or {}
        if not isinstance(providers_raw, dict):
            raise ConfigurationError("'providers' section must be a mapping")
        if raw.get('builtin_catalog', True):
            providers_raw = self._merge(DEFAULT_PROVIDERS, providers_raw)

        for type_name, providers in providers_raw.items():
            try:
                provider_type = ProviderType(type_name)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown provider type '{type_name}'; "
                    f"expected one of: {', '.join(t.value for t in ProviderType)}"
                )
            if not isinstance(providers, dict):
                raise ConfigurationError(f"'providers.{type_name}' must be a mapping")

            parsed: dict[str, ProviderConfig] = {}
            for provider_name, provider_data in providers.items():
                provider_config = self._parse_provider(provider_type, provider_name, provider_data)
                if provider_config.enabled:
                    parsed[provider_name] = provider_config
            config.providers[provider_type] = parsed

        return config

    def _parse_provider(
        self, provider_type: ProviderType, provider_name: str, provider_data: Any
    ) -> ProviderConfig:
        if not isinstance(provider_data, dict):
            raise ConfigurationError(f"Provider '{provider_name}' configuration must be a mapping")

        # Missing keys leave the provider listed; dispatch reports the missing key
        provider_data = self._substitute_env_vars(provider_data, skip_missing=True)

        api_key = provider_data.get('api_key')
        if isinstance(api_key, str) and not api_key.strip():
            api_key = None

        models: dict[str, ModelConfig] = {}
        models_raw = provider_data.get('models', {}) or {}
        if not isinstance(models_raw, dict):
            raise ConfigurationError(f"'models' for provider '{provider_name}' must be a mapping")
        for model_name, model_data in models_raw.items():
            model_data = model_data or {}
            if not isinstance(model_data, dict):
                raise ConfigurationError(
                    f"Model '{provider_name}/{model_name}' configuration must be a mapping"
                )
            unit = model_data.get('unit', 'tokens')
            if unit not in ("tokens", "images", "seconds", "characters"):
                raise ConfigurationError(f"Unknown pricing unit '{unit}' for {provider_name}/{model_name}")
            try:
                pricing = PricingRule(
                    provider=provider_name,
                    model=model_name,
                    input_cost_per_1m=float(model_data.get('input_cost_per_1m', 0)),
                    output_cost_per_1m=float(model_data.get('output_cost_per_1m', 0)),
                    cost_per_unit=float(model_data.get('cost_per_unit', 0)),
                    unit=unit,
                )
            except (TypeError, ValueError):
                raise ConfigurationError(f"Pricing for '{provider_name}/{model_name}' must be numeric")
            rpm = model_data.get('rate_limit_rpm')
            models[model_name] = ModelConfig(
                name=model_name,
                pricing=pricing,
                capabilities=tuple(model_data.get('capabilities') or ()),
                rate_limit_rpm=int(rpm) if rpm is not None else None,
            )

        rpm = provider_data.get('rate_limit_rpm')
        default_model = provider_data.get('default_model')
        if default_model and models and default_model not in models:
            raise ConfigurationError(
                f"default_model '{default_model}' is not a model of provider '{provider_name}'"
            )

        return ProviderConfig(
            name=provider_name,
            type=provider_type,
            api_key=api_key,
            base_url=provider_data.get('base_url'),
            enabled=bool(provider_data.get('enabled', True)),
            default_model=default_model,
            rate_limit_rpm=int(rpm) if rpm is not None else None,
            models=models,
        )

    @property
    def gateway_config(self) -> GatewayConfig:
        return self.config.gateway

    def get_provider_config(self, provider_type: ProviderType | str, provider: str) -> ProviderConfig:
        """
        Get configuration for a specific provider.

        Raises:
            NotFoundError: If the type/provider combination is not configured
        """
        try:
            provider_type = ProviderType(provider_type)
        except ValueError:
            raise NotFoundError(f"Unknown provider type: {provider_type}")
        providers = self.config.providers.get(provider_type, {})
        if provider not in providers:
            raise NotFoundError(f"Provider not configured: {provider_type.value}/{provider}")
        return providers[provider]

    def get_pricing_rules(self) -> dict[str, dict[str, PricingRule]]:
        """
        Get all pricing rules.

        Returns:
            Dictionary mapping provider -> model -> PricingRule
        """
        pricing: dict[str, dict[str, PricingRule]] = {}
        for providers in self.config.providers.values():
            for name, provider_config in providers.items():
                rules = pricing.setdefault(name, {})
                for model_name, model_config in provider_config.models.items():
                    rules[model_name] = model_config.pricing
        return pricing

    def get_available_providers(self) -> dict[str, list[str]]:
        """Get configured provider names grouped by modality type."""
        return {
            provider_type.value: list(self.config.providers.get(provider_type, {}).keys())
            for provider_type in ProviderType
        }

    def get_provider_models(self, provider_type: ProviderType | str, provider: str) -> list[str]:
        """
        Get all models for a provider.

        Raises:
            NotFoundError: If provider is not configured
        """
        return self.get_provider_config(provider_type, provider).model_names()

    def get_proxy_url(self) -> str | None:
        """Get proxy URL if proxy is enabled, otherwise None."""
        proxy = self.config.proxy
        if not proxy.enable or not proxy.host:
            return None
        host = proxy.host.rstrip("/")
        if proxy.port:
            return f"{host}:{proxy.port}"
        return host
