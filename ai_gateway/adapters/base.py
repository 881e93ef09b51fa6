"""
Abstract base classes for provider adapters.

One base per modality. Adapters translate canonical requests into a
vendor's wire format and vendor responses back into canonical results.
They report raw usage (tokens, images, seconds, characters); pricing and
billing happen in the gateway.
"""

import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, AsyncIterator, Iterator

import httpx

from ..errors import GatewayTimeoutError, UpstreamError
from ..models import (
    ChatOptions,
    ImageOptions,
    JobStatus,
    LLMResult,
    MediaJob,
    Message,
    ProviderType,
    StreamToken,
    UsageInfo,
    VideoOptions,
    VoiceOptions,
    VoiceResult,
)
from ..request_logger import get_logger


class ProviderAdapter(ABC):
    """
    Shared plumbing for all adapters: one pooled httpx.AsyncClient per
    adapter instance and translation of httpx failures into gateway
    errors.

    Recognised keyword configuration:
        http_client: dict with max_connections, max_keepalive_connections, timeout
        proxy_url: outbound proxy
        transport: httpx transport (tests use httpx.MockTransport)
    """

    name: str = "base"
    provider_type: ProviderType
    DEFAULT_BASE_URL = ""

    def __init__(self, api_key: str, base_url: str | None = None, **kwargs):
        """
        Initialize the adapter.

        Args:
            api_key: API key for the provider
            base_url: Optional custom base URL (proxies, self-hosted gateways)
            **kwargs: Additional provider-specific configuration
        """
        self.api_key = api_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.config = kwargs

        # 初始化日志记录器
        self._logger = get_logger(self.name)

        http_config = self.config.get("http_client") or {}
        self.timeout = float(http_config.get("timeout", 120.0))

        client_kwargs: dict[str, Any] = {
            "timeout": self.timeout,
            "limits": httpx.Limits(
                max_connections=http_config.get("max_connections", 100),
                max_keepalive_connections=http_config.get("max_keepalive_connections", 20),
            ),
        }
        if self.config.get("transport") is not None:
            client_kwargs["transport"] = self.config["transport"]
        elif self.config.get("proxy_url"):
            client_kwargs["proxy"] = self.config["proxy_url"]

        self._client = httpx.AsyncClient(**client_kwargs)

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    @contextmanager
    def _upstream_errors(self, operation: str = "request") -> Iterator[None]:
        """Translate httpx failures raised inside the block into gateway errors."""
        try:
            yield
        except httpx.TimeoutException:
            raise GatewayTimeoutError(self.name, self.timeout, operation)
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                self.name,
                f"API error: {_error_detail(e.response)}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(self.name, f"Request failed: {e}")

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        """raise_for_status() that also works on a streamed response."""
        if response.is_error:
            await response.aread()
            response.raise_for_status()

    def _invalid_response(self, error: Exception) -> UpstreamError:
        return UpstreamError(self.name, f"Invalid response format: {error}")

    def _stream_error(self, error: Any) -> UpstreamError:
        """An error reported inside an otherwise successful event stream."""
        message = error.get("message") if isinstance(error, dict) else str(error)
        return UpstreamError(self.name, f"Stream error: {message}")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
        if data.get("detail"):
            return str(data["detail"])
    return response.text


def last_user_text(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


class LLMProvider(ProviderAdapter):
    """
    Abstract base class for chat-completion providers.

    All LLM adapters must implement:
    - complete(): unary chat completion
    - stream(): async iterator of StreamTokens; the last item is a ``done``
      token carrying final usage. Failures are raised as UpstreamError.
    """

    provider_type = ProviderType.LLM

    @abstractmethod
    async def complete(
        self, messages: list[Message], options: ChatOptions, model: str
    ) -> LLMResult:
        """
        Run a chat completion.

        Raises:
            UpstreamError: If the API call fails
            GatewayTimeoutError: If the API call times out
        """

    @abstractmethod
    def stream(
        self, messages: list[Message], options: ChatOptions, model: str
    ) -> AsyncIterator[StreamToken]:
        """
        Stream a chat completion.

        Closing the iterator early releases the upstream connection.
        """

    def estimate_tokens(self, messages: list[Message], output: str) -> UsageInfo:
        """
        Fallback usage estimate for responses that carry no usage data.

        Rough estimation: ~4 characters per token for English text.
        """
        prompt_chars = sum(len(m.content or "") for m in messages)
        return UsageInfo(
            input_tokens=max(1, prompt_chars // 4),
            output_tokens=max(1, len(output) // 4) if output else 0,
        )

    def _log_completion(
        self,
        operation: str,
        model: str,
        messages: list[Message],
        started: float,
        result: LLMResult | None,
        error_message: str | None,
    ) -> None:
        self._logger.log_request(
            model=model,
            operation=operation,
            prompt=last_user_text(messages),
            response_text=result.content if result else None,
            input_units=result.usage.input_tokens if result else None,
            output_units=result.usage.output_tokens if result else None,
            duration_ms=(time.time() - started) * 1000,
            success=result is not None,
            error_message=error_message,
        )


class ImageProvider(ProviderAdapter):
    """Image generation as submit + poll."""

    provider_type = ProviderType.IMAGE

    @abstractmethod
    async def submit(self, prompt: str, options: ImageOptions, model: str) -> MediaJob:
        """Submit a generation job. ``estimated_cost`` is filled in by the gateway."""

    @abstractmethod
    async def get_status(self, job_id: str, model: str) -> JobStatus:
        """Poll a job; a completed job carries an ImageResult with ``units`` set."""


class VideoProvider(ProviderAdapter):
    """Video generation as submit + poll."""

    provider_type = ProviderType.VIDEO

    @abstractmethod
    async def submit(self, prompt: str, options: VideoOptions, model: str) -> MediaJob:
        pass

    @abstractmethod
    async def submit_image_to_video(
        self, image_url: str, prompt: str, options: VideoOptions, model: str
    ) -> MediaJob:
        pass

    @abstractmethod
    async def get_status(self, job_id: str, model: str) -> JobStatus:
        """Poll a job; a completed job carries a VideoResult with ``duration`` set."""


class VoiceProvider(ProviderAdapter):
    """Text-to-speech providers."""

    provider_type = ProviderType.VOICE

    @abstractmethod
    async def text_to_speech(self, text: str, options: VoiceOptions, model: str) -> VoiceResult:
        pass

    async def stream_text_to_speech(
        self, text: str, options: VoiceOptions, model: str
    ) -> AsyncIterator[bytes]:
        """
        Stream synthesized audio.

        Default implementation falls back to text_to_speech() and yields a
        single chunk. Adapters can override for true streaming support.
        """
        result = await self.text_to_speech(text, options, model)
        yield result.audio
