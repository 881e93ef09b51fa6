"""
Built-in provider catalog.

Same shape as the ``providers`` section of config.yaml; entries in a
config file are merged on top of these. Token prices are USD per 1M
tokens, unit prices are USD per image / second / character.
"""

_CHAT = ["chat", "streaming", "tools"]
_CHAT_VISION = ["chat", "streaming", "tools", "vision"]


DEFAULT_PROVIDERS: dict = {
    "llm": {
        "anthropic": {
            "api_key": "${ANTHROPIC_API_KEY}",
            "rate_limit_rpm": 50,
            "default_model": "claude-3-5-sonnet-20241022",
            "models": {
                "claude-sonnet-4-20250514": {"input_cost_per_1m": 3.0, "output_cost_per_1m": 15.0, "capabilities": _CHAT_VISION},
                "claude-opus-4-20250514": {"input_cost_per_1m": 15.0, "output_cost_per_1m": 75.0, "capabilities": _CHAT_VISION},
                "claude-3-5-sonnet-20241022": {"input_cost_per_1m": 3.0, "output_cost_per_1m": 15.0, "capabilities": _CHAT_VISION},
                "claude-3-5-haiku-20241022": {"input_cost_per_1m": 0.8, "output_cost_per_1m": 4.0, "capabilities": _CHAT},
                "claude-3-opus-20240229": {"input_cost_per_1m": 15.0, "output_cost_per_1m": 75.0, "capabilities": _CHAT_VISION},
                "claude-3-sonnet-20240229": {"input_cost_per_1m": 3.0, "output_cost_per_1m": 15.0, "capabilities": _CHAT_VISION},
                "claude-3-haiku-20240307": {"input_cost_per_1m": 0.25, "output_cost_per_1m": 1.25, "capabilities": _CHAT},
            },
        },
        "openai": {
            "api_key": "${OPENAI_API_KEY}",
            "rate_limit_rpm": 500,
            "default_model": "gpt-4o",
            "models": {
                "gpt-4o": {"input_cost_per_1m": 2.5, "output_cost_per_1m": 10.0, "capabilities": _CHAT_VISION},
                "gpt-4o-mini": {"input_cost_per_1m": 0.15, "output_cost_per_1m": 0.6, "capabilities": _CHAT_VISION},
                "gpt-4-turbo": {"input_cost_per_1m": 10.0, "output_cost_per_1m": 30.0, "capabilities": _CHAT_VISION},
                "gpt-4": {"input_cost_per_1m": 30.0, "output_cost_per_1m": 60.0, "capabilities": _CHAT},
                "gpt-3.5-turbo": {"input_cost_per_1m": 0.5, "output_cost_per_1m": 1.5, "capabilities": _CHAT},
                "o1": {"input_cost_per_1m": 15.0, "output_cost_per_1m": 60.0, "capabilities": ["chat", "streaming"]},
                "o1-mini": {"input_cost_per_1m": 3.0, "output_cost_per_1m": 12.0, "capabilities": ["chat", "streaming"]},
            },
        },
        "google": {
            "api_key": "${GOOGLE_API_KEY}",
            "rate_limit_rpm": 60,
            "default_model": "gemini-1.5-flash",
            "models": {
                "gemini-2.5-flash": {"input_cost_per_1m": 0.3, "output_cost_per_1m": 2.5, "capabilities": _CHAT_VISION},
                "gemini-2.0-flash": {"input_cost_per_1m": 0.1, "output_cost_per_1m": 0.4, "capabilities": _CHAT_VISION},
                "gemini-1.5-pro": {"input_cost_per_1m": 1.25, "output_cost_per_1m": 5.0, "capabilities": _CHAT_VISION},
                "gemini-1.5-flash": {"input_cost_per_1m": 0.075, "output_cost_per_1m": 0.3, "capabilities": _CHAT_VISION},
            },
        },
    },
    "image": {
        "fal": {
            "api_key": "${FAL_API_KEY}",
            "rate_limit_rpm": 60,
            "default_model": "fal-ai/flux/dev",
            "models": {
                "fal-ai/flux/schnell": {"cost_per_unit": 0.003, "unit": "images", "capabilities": ["text_to_image"]},
                "fal-ai/flux/dev": {"cost_per_unit": 0.025, "unit": "images", "capabilities": ["text_to_image"]},
                "fal-ai/flux-pro": {"cost_per_unit": 0.05, "unit": "images", "capabilities": ["text_to_image"]},
            },
        },
        "stability": {
            "api_key": "${STABILITY_API_KEY}",
            "rate_limit_rpm": 150,
            "default_model": "sd3.5-large",
            "models": {
                "sd3.5-large": {"cost_per_unit": 0.065, "unit": "images", "capabilities": ["text_to_image"]},
                "sd3.5-medium": {"cost_per_unit": 0.035, "unit": "images", "capabilities": ["text_to_image"]},
                "stable-image-ultra": {"cost_per_unit": 0.08, "unit": "images", "capabilities": ["text_to_image"]},
                "stable-image-core": {"cost_per_unit": 0.03, "unit": "images", "capabilities": ["text_to_image"]},
            },
        },
        "leonardo": {
            "api_key": "${LEONARDO_API_KEY}",
            "default_model": "leonardo-phoenix",
            "models": {
                "leonardo-phoenix": {"cost_per_unit": 0.03, "unit": "images"},
            },
        },
        "replicate": {
            "api_key": "${REPLICATE_API_KEY}",
            "default_model": "black-forest-labs/flux-schnell",
            "models": {
                "black-forest-labs/flux-schnell": {"cost_per_unit": 0.003, "unit": "images"},
            },
        },
    },
    "video": {
        "fal-video": {
            "api_key": "${FAL_API_KEY}",
            "rate_limit_rpm": 10,
            "default_model": "fal-ai/wan-i2v",
            "models": {
                "fal-ai/wan-i2v": {"cost_per_unit": 0.04, "unit": "seconds", "capabilities": ["text_to_video", "image_to_video"]},
                "fal-ai/veo2/image-to-video": {"cost_per_unit": 0.5, "unit": "seconds", "capabilities": ["image_to_video"]},
                "fal-ai/veo3/fast": {"cost_per_unit": 0.6, "unit": "seconds", "capabilities": ["text_to_video", "audio"]},
                "fal-ai/kling-video/v2/master/image-to-video": {"cost_per_unit": 0.28, "unit": "seconds", "capabilities": ["image_to_video"]},
                "fal-ai/minimax-video-01/image-to-video": {"cost_per_unit": 0.1, "unit": "seconds", "capabilities": ["image_to_video"]},
            },
        },
        "runway": {
            "api_key": "${RUNWAY_API_KEY}",
            "default_model": "gen3a_turbo",
            "models": {
                "gen3a_turbo": {"cost_per_unit": 0.05, "unit": "seconds"},
            },
        },
        "pika": {
            "api_key": "${PIKA_API_KEY}",
            "default_model": "pika-1.5",
            "models": {
                "pika-1.5": {"cost_per_unit": 0.05, "unit": "seconds"},
            },
        },
    },
    "voice": {
        "elevenlabs": {
            "api_key": "${ELEVENLABS_API_KEY}",
            "rate_limit_rpm": 100,
            "default_model": "eleven_multilingual_v2",
            "models": {
                "eleven_multilingual_v2": {"cost_per_unit": 0.00018, "unit": "characters", "capabilities": ["tts", "streaming"]},
                "eleven_turbo_v2_5": {"cost_per_unit": 0.00009, "unit": "characters", "capabilities": ["tts", "streaming"]},
                "eleven_flash_v2_5": {"cost_per_unit": 0.00009, "unit": "characters", "capabilities": ["tts", "streaming"]},
            },
        },
        "openai-tts": {
            "api_key": "${OPENAI_API_KEY}",
            "default_model": "tts-1",
            "models": {
                "tts-1": {"cost_per_unit": 0.000015, "unit": "characters"},
                "tts-1-hd": {"cost_per_unit": 0.00003, "unit": "characters"},
            },
        },
    },
}


DEFAULT_GATEWAY: dict = {
    "default_llm": "anthropic",
    "default_llm_model": "claude-3-5-sonnet-20241022",
    "default_image": "fal",
    "default_video": "fal-video",
    "default_voice": "elevenlabs",
    "billing_markup": 5.0,
    "billing_increment": 0.25,
    "request_timeout": 120.0,
    "usage_timeout": 10.0,
}
