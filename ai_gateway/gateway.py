"""
AIGateway - unified entry point for chat, image, video and voice providers.

Resolves provider and model against configured defaults, dispatches to the
provider adapter, prices the usage, and hands exactly one UsageRecord per
logical request to the usage sink.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Iterable, TypeVar

from .adapters import LLMProvider, ProviderAdapter, VoiceProvider
from .adapters.base import last_user_text
from .config import ConfigManager, GatewayConfig
from .errors import (
    ConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from .models import (
    ChatOptions,
    ChatResponse,
    ImageOptions,
    JobStatus,
    MediaJob,
    Message,
    Operation,
    ProviderType,
    StreamToken,
    StreamTokenType,
    UsageInfo,
    UsageRecord,
    VideoOptions,
    VoiceOptions,
    VoiceResult,
)
from .pricing import PricingEngine, price
from .registry import adapter_class_for, parse_provider_name
from .request_logger import get_logger
from .usage import UsageSink, UsageTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _JobContext:
    """What a media job needs at completion time to be billed."""
    operation: Operation
    model: str
    workspace_id: str | None = None
    project_id: str | None = None
    agent_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AIGateway:
    """
    统一AI接入层 - 对外提供单一API，对内调度多个模型平台。

    Features:
    - Unary and streaming chat over OpenAI, Anthropic and Google
    - Image (fal, Stability), video (fal) and voice (ElevenLabs) generation
    - Real-time cost calculation with markup and upward rounding
    - Exactly one usage record per logical request, delivered to ``on_usage``

    Unknown providers and models fail fast with ConfigurationError; there
    is no silent fallback to another provider.
    """

    MAX_TRACKED_JOBS = 4096

    def __init__(
        self,
        config: GatewayConfig | None = None,
        on_usage: UsageSink | None = None,
        config_manager: ConfigManager | None = None,
        adapters: dict[tuple[ProviderType | str, str], ProviderAdapter] | None = None,
        keep_history: bool = False,
    ):
        """
        Initialize AIGateway.

        Args:
            config: Gateway defaults and billing parameters; taken from the
                configuration file when omitted
            on_usage: Usage sink, sync or async callable receiving UsageRecord
            config_manager: Provider catalog and credentials. If None, creates one.
            adapters: Pre-built adapters keyed by (provider type, provider name);
                used instead of constructing one from configuration
            keep_history: Keep emitted records in memory for usage queries
        """
        self._config_manager = config_manager or ConfigManager()
        self._config = config or self._config_manager.gateway_config
        self._pricing = PricingEngine.from_config(self._config_manager)
        self._usage = UsageTracker(
            on_usage, timeout=self._config.usage_timeout, keep_history=keep_history
        )
        self._adapters: dict[tuple[ProviderType, str], ProviderAdapter] = {
            (ProviderType(provider_type), name): adapter
            for (provider_type, name), adapter in (adapters or {}).items()
        }
        self._jobs: OrderedDict[tuple[str, str], _JobContext] = OrderedDict()
        self._settled: OrderedDict[tuple[str, str], UsageRecord] = OrderedDict()

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def pricing(self) -> PricingEngine:
        return self._pricing

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    # ------------------------------------------------------------------
    # resolution and dispatch

    def _resolve(
        self, provider_type: ProviderType, provider: str | None, model: str | None
    ) -> tuple[str, str, ProviderAdapter]:
        """
        Resolve (provider, model) against defaults and return the adapter.

        Raises:
            ConfigurationError: Unknown, disabled or unconfigured provider,
                unknown model, or missing API key
            ProviderNotImplementedError: Declared provider without integration
        """
        provider = provider or self._config.default_provider(provider_type)
        parse_provider_name(provider_type, provider)

        key = (provider_type, provider)
        injected = self._adapters.get(key)
        adapter_class = None if injected is not None else adapter_class_for(provider_type, provider)

        try:
            provider_config = self._config_manager.get_provider_config(provider_type, provider)
        except NotFoundError:
            raise ConfigurationError(
                f"{provider_type.value} provider '{provider}' is not configured or is disabled"
            )

        if not model:
            if provider_type is ProviderType.LLM and provider == self._config.default_llm:
                model = self._config.default_llm_model
            else:
                model = provider_config.default_model
        if not model:
            raise ConfigurationError(f"No model given and no default model for '{provider}'")
        if provider_config.models and model not in provider_config.models:
            raise ConfigurationError(
                f"Unknown model '{model}' for {provider_type.value} provider '{provider}'"
            )

        if injected is not None:
            return provider, model, injected

        if not provider_config.api_key:
            raise ConfigurationError(
                f"Missing API key for provider '{provider}'; "
                f"set it in the configuration or the environment"
            )

        kwargs: dict[str, Any] = {"http_client": vars(self._config_manager.config.http_client)}
        if provider_config.base_url:
            kwargs["base_url"] = provider_config.base_url
        proxy_url = self._config_manager.get_proxy_url()
        if proxy_url:
            kwargs["proxy_url"] = proxy_url

        adapter = adapter_class(api_key=provider_config.api_key, **kwargs)
        self._adapters[key] = adapter
        return provider, model, adapter

    async def _call(self, provider: str, awaitable: Awaitable[T], operation: str) -> T:
        timeout = self._config.request_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except GatewayTimeoutError:
            raise
        except asyncio.TimeoutError:
            logger.warning("%s %s timed out after %ss", provider, operation, timeout)
            raise GatewayTimeoutError(provider, timeout, operation)

    def _bill(
        self, provider: str, model: str, input_units: float, output_units: float = 0
    ) -> tuple[float, float]:
        """Returns (provider cost, billed amount)."""
        cost = self._pricing.cost(provider, model, input_units, output_units)
        billed = price(cost, self._config.billing_markup, self._config.billing_increment)
        return cost, billed

    def _record(
        self,
        provider: str,
        model: str,
        operation: Operation,
        input_units: float,
        output_units: float = 0,
        workspace_id: str | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UsageRecord:
        cost, billed = self._bill(provider, model, input_units, output_units)
        metadata = dict(metadata or {})
        if input_units != int(input_units):
            # input_tokens truncates, e.g. 2.5 video seconds
            metadata["billed_units"] = input_units
        return UsageRecord(
            provider=provider,
            model=model,
            operation=operation.value,
            provider_cost=cost,
            billed_amount=billed,
            input_tokens=int(input_units),
            output_tokens=int(output_units),
            workspace_id=workspace_id,
            project_id=project_id,
            agent_id=agent_id,
            metadata=metadata,
        )

    @staticmethod
    def _check_messages(messages: Iterable[Message | dict]) -> list[Message]:
        converted = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
        errors = []
        if not converted:
            errors.append("messages must not be empty")
        for index, message in enumerate(converted):
            errors.extend(f"messages[{index}]: {e}" for e in message.validate())
        if errors:
            raise ValidationError(errors)
        return converted

    # ------------------------------------------------------------------
    # chat

    async def chat(self, messages: list[Message], options: ChatOptions | None = None) -> ChatResponse:
        """
        Unary chat completion.

        The usage sink is invoked once after the response is priced; a sink
        failure never fails the call.

        Raises:
            ValidationError: If messages are invalid
            ConfigurationError: If provider or model cannot be resolved
            UpstreamError: If the provider call fails
            GatewayTimeoutError: If the provider call times out
        """
        options = options or ChatOptions()
        messages = self._check_messages(messages)
        provider, model, adapter = self._resolve(ProviderType.LLM, options.provider, options.model)

        result = await self._call(provider, adapter.complete(messages, options, model), "chat")

        metadata = dict(options.metadata)
        if result.model and result.model != model:
            metadata["response_model"] = result.model
        record = self._record(
            provider,
            model,
            Operation.CHAT,
            result.usage.input_tokens,
            result.usage.output_tokens,
            options.workspace_id,
            options.project_id,
            options.agent_id,
            metadata,
        )
        await self._usage.emit(record)

        return ChatResponse(
            content=result.content,
            model=model,
            provider=provider,
            usage=result.usage,
            cost=record.provider_cost,
            tool_calls=result.tool_calls,
            finish_reason=result.finish_reason,
            record=record,
        )

    def stream_chat(
        self, messages: list[Message], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamToken]:
        """
        Streaming chat completion.

        Provider, model and messages are resolved when this is called, so
        configuration errors raise here, before anything is sent upstream.
        The returned iterator yields ``token`` / ``tool_call`` items in
        upstream order and ends with exactly one terminal item:

        - ``done`` with final usage and the emitted UsageRecord, or
        - ``error`` after an upstream failure or timeout; the record then
          carries the usage seen so far and ``metadata["error"]``.

        If the consumer stops early, a record with ``metadata["cancelled"]``
        is emitted and the upstream stream is closed. In every case the sink
        is invoked exactly once.
        """
        options = options or ChatOptions()
        messages = self._check_messages(messages)
        provider, model, adapter = self._resolve(ProviderType.LLM, options.provider, options.model)
        return self._stream_chat(messages, options, provider, model, adapter)

    async def _stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions,
        provider: str,
        model: str,
        adapter: LLMProvider,
    ) -> AsyncIterator[StreamToken]:
        started = time.time()
        timeout = self._config.request_timeout
        upstream = adapter.stream(messages, options, model)

        chunks = 0
        text_length = 0
        usage: UsageInfo | None = None
        finish_reason = None
        response_model = None
        error: Exception | None = None

        def finish(metadata: dict[str, Any]) -> UsageRecord:
            final = usage
            if final is None:
                # partial: output estimated from what was streamed, input unknown
                final = UsageInfo(0, max(1, text_length // 4) if text_length else 0)
            get_logger(provider).log_stream_request(
                model=model,
                prompt=last_user_text(messages),
                total_chunks=chunks,
                total_text_length=text_length,
                duration_ms=(time.time() - started) * 1000,
                success=not ("error" in metadata or "cancelled" in metadata),
                error_message=metadata.get("error"),
            )
            return self._record(
                provider,
                model,
                Operation.STREAM_CHAT,
                final.input_tokens,
                final.output_tokens,
                options.workspace_id,
                options.project_id,
                options.agent_id,
                {**options.metadata, **metadata},
            )

        try:
            while True:
                try:
                    token = await asyncio.wait_for(upstream.__anext__(), timeout=timeout)
                except StopAsyncIteration:
                    logger.warning("%s stream for %s ended without usage", provider, model)
                    break
                except GatewayTimeoutError:
                    raise
                except asyncio.TimeoutError:
                    raise GatewayTimeoutError(provider, timeout, "stream chunk")

                if token.type is StreamTokenType.DONE:
                    usage = token.usage
                    finish_reason = token.finish_reason
                    response_model = token.model
                    break
                if token.type is StreamTokenType.ERROR:
                    raise UpstreamError(provider, token.error or "stream failed")
                if token.type is StreamTokenType.TOKEN:
                    chunks += 1
                    text_length += len(token.content or "")
                yield token
        except (GeneratorExit, asyncio.CancelledError):
            logger.info("%s stream for %s cancelled by consumer", provider, model)
            await self._close_upstream(upstream)
            await self._usage.emit(finish({"cancelled": True}))
            raise
        except GatewayError as e:
            error = e
        except Exception as e:
            logger.error("Unexpected failure in %s stream", provider, exc_info=e)
            error = e

        await self._close_upstream(upstream)

        if error is not None:
            logger.warning("%s stream for %s failed: %s", provider, model, error)
            record = finish({"error": str(error) or type(error).__name__})
            await self._usage.emit(record)
            yield StreamToken.failure(record.metadata["error"], record=record)
            return

        if usage is None:
            usage = UsageInfo(
                input_tokens=adapter.estimate_tokens(messages, "").input_tokens,
                output_tokens=max(1, text_length // 4) if text_length else 0,
            )
        extra = {}
        if response_model and response_model != model:
            extra["response_model"] = response_model
        record = finish(extra)
        await self._usage.emit(record)
        yield StreamToken.done(usage, finish_reason=finish_reason, model=model, record=record)

    @staticmethod
    async def _close_upstream(upstream: AsyncIterator) -> None:
        aclose = getattr(upstream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.debug("Error closing upstream stream: %s", e)

    # ------------------------------------------------------------------
    # voice

    async def text_to_speech(
        self,
        text: str,
        options: VoiceOptions | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
        workspace_id: str | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> VoiceResult:
        """Synthesize speech; billed per input character."""
        if not text:
            raise ValidationError(["text must not be empty"])
        options = options or VoiceOptions()
        provider, model, adapter = self._resolve(ProviderType.VOICE, provider, model)

        result = await self._call(
            provider, adapter.text_to_speech(text, options, model), "text_to_speech"
        )
        record = self._record(
            provider, model, Operation.TEXT_TO_SPEECH, result.characters, 0,
            workspace_id, project_id, agent_id, metadata,
        )
        await self._usage.emit(record)
        return replace(result, cost=record.provider_cost)

    def stream_text_to_speech(
        self,
        text: str,
        options: VoiceOptions | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
        workspace_id: str | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AsyncIterator[bytes]:
        """
        Stream synthesized audio chunks.

        Resolution happens on call. One record is emitted when the stream
        ends: the full character count once audio started flowing, zero
        when the provider failed before the first chunk.
        """
        if not text:
            raise ValidationError(["text must not be empty"])
        options = options or VoiceOptions()
        provider, model, adapter = self._resolve(ProviderType.VOICE, provider, model)
        context = _JobContext(
            Operation.TEXT_TO_SPEECH, model, workspace_id, project_id, agent_id, dict(metadata or {})
        )
        return self._stream_speech(text, options, provider, adapter, context)

    async def _stream_speech(
        self,
        text: str,
        options: VoiceOptions,
        provider: str,
        adapter: VoiceProvider,
        context: _JobContext,
    ) -> AsyncIterator[bytes]:
        timeout = self._config.request_timeout
        upstream = adapter.stream_text_to_speech(text, options, context.model)
        started = False

        def record(extra: dict[str, Any]) -> UsageRecord:
            return self._record(
                provider, context.model, context.operation,
                len(text) if started else 0, 0,
                context.workspace_id, context.project_id, context.agent_id,
                {**context.metadata, "stream": True, **extra},
            )

        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(upstream.__anext__(), timeout=timeout)
                except StopAsyncIteration:
                    break
                except GatewayTimeoutError:
                    raise
                except asyncio.TimeoutError:
                    raise GatewayTimeoutError(provider, timeout, "audio chunk")
                started = True
                yield chunk
        except (GeneratorExit, asyncio.CancelledError):
            await self._close_upstream(upstream)
            await self._usage.emit(record({"cancelled": True}))
            raise
        except Exception as e:
            await self._close_upstream(upstream)
            await self._usage.emit(record({"error": str(e) or type(e).__name__}))
            raise

        await self._close_upstream(upstream)
        await self._usage.emit(record({}))

    # ------------------------------------------------------------------
    # image and video jobs

    def _track_job(self, provider: str, job_id: str, context: _JobContext) -> None:
        self._jobs[(provider, job_id)] = context
        while len(self._jobs) > self.MAX_TRACKED_JOBS:
            self._jobs.popitem(last=False)

    async def _settle(
        self,
        provider_type: ProviderType,
        provider: str,
        job_id: str,
        model: str | None,
        default_operation: Operation,
    ) -> JobStatus:
        context = self._jobs.get((provider, job_id))
        provider, model, adapter = self._resolve(
            provider_type, provider, model or (context.model if context else None)
        )
        status = await self._call(provider, adapter.get_status(job_id, model), "get_status")

        if status.status != "completed" or status.result is None:
            return status

        key = (provider, job_id)
        if key in self._settled:
            record = self._settled[key]
            return replace(status, result=replace(status.result, cost=record.provider_cost), record=record)

        context = context or _JobContext(default_operation, model)
        if provider_type is ProviderType.IMAGE:
            units = status.result.units
        else:
            units = status.result.duration
        record = self._record(
            provider, model, context.operation, units, 0,
            context.workspace_id, context.project_id, context.agent_id,
            {**context.metadata, "job_id": job_id},
        )
        # marked settled before the sink runs so a concurrent poll cannot bill twice
        self._settled[key] = record
        while len(self._settled) > self.MAX_TRACKED_JOBS:
            self._settled.popitem(last=False)
        self._jobs.pop(key, None)

        await self._usage.emit(record)
        return replace(status, result=replace(status.result, cost=record.provider_cost), record=record)

    async def generate_image(
        self,
        prompt: str,
        options: ImageOptions | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
        workspace_id: str | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MediaJob:
        """
        Submit an image job. ``estimated_cost`` is provisional; the record
        is emitted when get_image_status() first reports completion.
        """
        if not prompt:
            raise ValidationError(["prompt must not be empty"])
        options = options or ImageOptions()
        provider, model, adapter = self._resolve(ProviderType.IMAGE, provider, model)

        job = await self._call(provider, adapter.submit(prompt, options, model), "generate_image")
        self._track_job(provider, job.job_id, _JobContext(
            Operation.GENERATE_IMAGE, model, workspace_id, project_id, agent_id, dict(metadata or {})
        ))
        estimated = self._pricing.cost(provider, model, options.num_images)
        return replace(job, estimated_cost=estimated, provider=provider, model=model)

    async def get_image_status(
        self, job_id: str, provider: str | None = None, model: str | None = None
    ) -> JobStatus:
        return await self._settle(
            ProviderType.IMAGE, provider or self._config.default_image, job_id, model,
            Operation.GENERATE_IMAGE,
        )

    async def generate_video(
        self,
        prompt: str,
        options: VideoOptions | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
        workspace_id: str | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MediaJob:
        """Submit a text-to-video job, priced per second once complete."""
        if not prompt:
            raise ValidationError(["prompt must not be empty"])
        options = options or VideoOptions()
        provider, model, adapter = self._resolve(ProviderType.VIDEO, provider, model)

        job = await self._call(provider, adapter.submit(prompt, options, model), "generate_video")
        self._track_job(provider, job.job_id, _JobContext(
            Operation.GENERATE_VIDEO, model, workspace_id, project_id, agent_id, dict(metadata or {})
        ))
        estimated = self._pricing.cost(provider, model, options.duration)
        return replace(job, estimated_cost=estimated, provider=provider, model=model)

    async def image_to_video(
        self,
        image_url: str,
        prompt: str,
        options: VideoOptions | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
        workspace_id: str | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MediaJob:
        """Submit an image-to-video job."""
        if not image_url:
            raise ValidationError(["image_url must not be empty"])
        options = options or VideoOptions()
        provider, model, adapter = self._resolve(ProviderType.VIDEO, provider, model)

        job = await self._call(
            provider,
            adapter.submit_image_to_video(image_url, prompt, options, model),
            "image_to_video",
        )
        self._track_job(provider, job.job_id, _JobContext(
            Operation.GENERATE_VIDEO, model, workspace_id, project_id, agent_id,
            {**(metadata or {}), "source": "image_to_video"},
        ))
        estimated = self._pricing.cost(provider, model, options.duration)
        return replace(job, estimated_cost=estimated, provider=provider, model=model)

    async def get_video_status(
        self, job_id: str, provider: str | None = None, model: str | None = None
    ) -> JobStatus:
        return await self._settle(
            ProviderType.VIDEO, provider or self._config.default_video, job_id, model,
            Operation.GENERATE_VIDEO,
        )

    # ------------------------------------------------------------------
    # catalog

    def get_available_providers(self) -> dict[str, list[str]]:
        """Configured providers grouped by modality (llm, image, video, voice)."""
        return self._config_manager.get_available_providers()

    def get_provider_models(self, provider_type: ProviderType | str, provider: str) -> list[str]:
        """
        Raises:
            NotFoundError: If the type/provider combination is not configured
        """
        return self._config_manager.get_provider_models(provider_type, provider)

    async def aclose(self) -> None:
        """Close adapter HTTP clients."""
        for adapter in self._adapters.values():
            await adapter.aclose()


def create_gateway(
    config: GatewayConfig | None = None,
    on_usage: UsageSink | None = None,
    config_path: str | None = None,
    **kwargs,
) -> AIGateway:
    """Build a new gateway instance."""
    config_manager = kwargs.pop("config_manager", None) or ConfigManager(config_path)
    return AIGateway(config=config, on_usage=on_usage, config_manager=config_manager, **kwargs)


# 全局默认网关实例
_default_gateway: AIGateway | None = None


def get_default_gateway() -> AIGateway:
    """获取全局默认网关，首次调用时创建"""
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = create_gateway()
    return _default_gateway


def set_default_gateway(gateway: AIGateway | None) -> None:
    """Install (or with None, reset) the process-wide default gateway."""
    global _default_gateway
    _default_gateway = gateway
