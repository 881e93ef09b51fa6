"""
ElevenLabs text-to-speech adapter.
"""

import time
from typing import Any, AsyncIterator

from ..models import VoiceOptions, VoiceResult
from .base import VoiceProvider


# "Rachel", used when the caller asks for the default voice
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "pcm": "audio/pcm",
    "ulaw": "audio/basic",
    "opus": "audio/opus",
}


def content_type_for(output_format: str) -> str:
    return CONTENT_TYPES.get(output_format.split("_", 1)[0], "application/octet-stream")


class ElevenLabsAdapter(VoiceProvider):
    """
    Adapter for ElevenLabs API.

    Voice is metered per input character.
    """

    name: str = "elevenlabs"
    DEFAULT_BASE_URL = "https://api.elevenlabs.io/v1"

    def _headers(self) -> dict[str, str]:
        return {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/*",
        }

    @staticmethod
    def _voice_id(options: VoiceOptions) -> str:
        if not options.voice_id or options.voice_id == "default":
            return DEFAULT_VOICE_ID
        return options.voice_id

    @staticmethod
    def _body(text: str, options: VoiceOptions, model: str) -> dict[str, Any]:
        body: dict[str, Any] = {"text": text, "model_id": model}
        settings = {}
        if options.stability is not None:
            settings["stability"] = options.stability
        if options.similarity_boost is not None:
            settings["similarity_boost"] = options.similarity_boost
        if settings:
            body["voice_settings"] = settings
        return body

    async def text_to_speech(self, text: str, options: VoiceOptions, model: str) -> VoiceResult:
        started = time.time()
        result = None
        error_message = None
        try:
            with self._upstream_errors():
                response = await self._client.post(
                    f"{self.base_url}/text-to-speech/{self._voice_id(options)}",
                    params={"output_format": options.output_format},
                    headers=self._headers(),
                    json=self._body(text, options, model),
                )
                response.raise_for_status()

            result = VoiceResult(
                audio=response.content,
                content_type=response.headers.get(
                    "content-type", content_type_for(options.output_format)
                ),
                characters=len(text),
                cost=0.0,
            )
            return result
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            self._logger.log_request(
                model=model,
                operation="text_to_speech",
                prompt=text,
                response_text=None,
                input_units=len(text),
                output_units=None,
                duration_ms=(time.time() - started) * 1000,
                success=result is not None,
                error_message=error_message,
                audio_bytes=len(result.audio) if result else None,
            )

    async def stream_text_to_speech(
        self, text: str, options: VoiceOptions, model: str
    ) -> AsyncIterator[bytes]:
        """Stream audio chunks as ElevenLabs produces them."""
        with self._upstream_errors("stream"):
            async with self._client.stream(
                "POST",
                f"{self.base_url}/text-to-speech/{self._voice_id(options)}/stream",
                params={"output_format": options.output_format},
                headers=self._headers(),
                json=self._body(text, options, model),
            ) as response:
                await self._raise_for_status(response)
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
