"""
Provider adapters for LLM, image, video and voice platforms.
"""

from .base import (
    ProviderAdapter,
    LLMProvider,
    ImageProvider,
    VideoProvider,
    VoiceProvider,
)
from .openai import OpenAIAdapter
from .anthropic import AnthropicAdapter
from .google import GoogleAdapter
from .fal import FalImageAdapter
from .fal_video import FalVideoAdapter
from .stability import StabilityAdapter
from .elevenlabs import ElevenLabsAdapter

__all__ = [
    "ProviderAdapter",
    "LLMProvider",
    "ImageProvider",
    "VideoProvider",
    "VoiceProvider",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "GoogleAdapter",
    "FalImageAdapter",
    "FalVideoAdapter",
    "StabilityAdapter",
    "ElevenLabsAdapter",
]
