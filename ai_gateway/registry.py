"""
Provider dispatch.

Each modality has a closed set of provider names. Every name maps either
to an adapter class or to ``None`` (declared, no integration yet). The
tables are checked for exhaustiveness at import time, so adding a name
without deciding how it dispatches fails immediately.
"""

from enum import Enum

from .adapters import (
    AnthropicAdapter,
    ElevenLabsAdapter,
    FalImageAdapter,
    FalVideoAdapter,
    GoogleAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    StabilityAdapter,
)
from .errors import ConfigurationError, ProviderNotImplementedError
from .models import ProviderType


class LLMProviderName(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class ImageProviderName(str, Enum):
    FAL = "fal"
    STABILITY = "stability"
    LEONARDO = "leonardo"
    REPLICATE = "replicate"


class VideoProviderName(str, Enum):
    FAL_VIDEO = "fal-video"
    RUNWAY = "runway"
    PIKA = "pika"


class VoiceProviderName(str, Enum):
    ELEVENLABS = "elevenlabs"
    OPENAI_TTS = "openai-tts"


PROVIDER_NAMES: dict[ProviderType, type[Enum]] = {
    ProviderType.LLM: LLMProviderName,
    ProviderType.IMAGE: ImageProviderName,
    ProviderType.VIDEO: VideoProviderName,
    ProviderType.VOICE: VoiceProviderName,
}


# Provider adapter class mapping; None = declared but not implemented
PROVIDER_ADAPTERS: dict[Enum, type[ProviderAdapter] | None] = {
    LLMProviderName.OPENAI: OpenAIAdapter,
    LLMProviderName.ANTHROPIC: AnthropicAdapter,
    LLMProviderName.GOOGLE: GoogleAdapter,
    ImageProviderName.FAL: FalImageAdapter,
    ImageProviderName.STABILITY: StabilityAdapter,
    ImageProviderName.LEONARDO: None,
    ImageProviderName.REPLICATE: None,
    VideoProviderName.FAL_VIDEO: FalVideoAdapter,
    VideoProviderName.RUNWAY: None,
    VideoProviderName.PIKA: None,
    VoiceProviderName.ELEVENLABS: ElevenLabsAdapter,
    VoiceProviderName.OPENAI_TTS: None,
}


def _check_exhaustive() -> None:
    for provider_type, names in PROVIDER_NAMES.items():
        missing = [name.value for name in names if name not in PROVIDER_ADAPTERS]
        if missing:
            raise RuntimeError(
                f"No dispatch entry for {provider_type.value} providers: {', '.join(missing)}"
            )


_check_exhaustive()


def parse_provider_name(provider_type: ProviderType, provider: str) -> Enum:
    """
    Raises:
        ConfigurationError: If the name is not a known provider of this modality
    """
    names = PROVIDER_NAMES[ProviderType(provider_type)]
    try:
        return names(provider)
    except ValueError:
        known = ", ".join(name.value for name in names)
        raise ConfigurationError(
            f"Unknown {ProviderType(provider_type).value} provider '{provider}'; "
            f"expected one of: {known}"
        )


def adapter_class_for(provider_type: ProviderType, provider: str) -> type[ProviderAdapter]:
    """
    Resolve the adapter class for a provider.

    Raises:
        ConfigurationError: Unknown provider name
        ProviderNotImplementedError: Declared provider without an integration
    """
    name = parse_provider_name(provider_type, provider)
    adapter_class = PROVIDER_ADAPTERS[name]
    if adapter_class is None:
        raise ProviderNotImplementedError(ProviderType(provider_type).value, name.value)
    return adapter_class


def implemented_providers(provider_type: ProviderType) -> list[str]:
    return [
        name.value
        for name in PROVIDER_NAMES[ProviderType(provider_type)]
        if PROVIDER_ADAPTERS[name] is not None
    ]
