"""
HTTP surface for the gateway.

``create_router(gateway)`` returns a FastAPI router with the chat, catalog
and media endpoints; ``create_app(gateway)`` wraps it in an application
with the error mapping installed. Request/response bodies use camelCase.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    ConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    NotFoundError,
    ProviderNotImplementedError,
    UpstreamError,
    ValidationError,
)
from .gateway import AIGateway, get_default_gateway
from .models import (
    ChatOptions,
    ImageOptions,
    JobStatus,
    MediaJob,
    Message,
    ToolDefinition,
    VideoOptions,
    VoiceOptions,
)
from .sse import SSEWriter, get_sse_headers, pipe_stream

logger = logging.getLogger(__name__)


# Checked in order; the first matching class wins
ERROR_STATUS: list[tuple[type[GatewayError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (ProviderNotImplementedError, 501),
    (ConfigurationError, 400),
    (GatewayTimeoutError, 504),
    (UpstreamError, 502),
]


def status_for(error: GatewayError) -> int:
    for error_class, status in ERROR_STATUS:
        if isinstance(error, error_class):
            return status
    return 500


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ToolCallBody(_CamelModel):
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class MessageBody(_CamelModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = Field(default=None, alias="toolCallId")
    tool_calls: list[ToolCallBody] = Field(default_factory=list, alias="toolCalls")

    def to_message(self) -> Message:
        return Message.from_dict(self.model_dump())


class ToolBody(_CamelModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class _Attribution(_CamelModel):
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def attribution(self) -> dict[str, Any]:
        return {
            "workspace_id": self.workspace_id,
            "project_id": self.project_id,
            "agent_id": self.agent_id,
            "metadata": self.metadata,
        }


class ChatRequest(_Attribution):
    """Chat request body."""
    messages: list[MessageBody]
    provider: Optional[str] = None
    model: Optional[str] = None
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens")
    top_p: Optional[float] = Field(default=None, alias="topP")
    stop: Optional[list[str]] = None
    tools: Optional[list[ToolBody]] = None

    def options(self) -> ChatOptions:
        return ChatOptions(
            provider=self.provider,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            stop=self.stop,
            tools=[ToolDefinition(**tool.model_dump()) for tool in self.tools] if self.tools else None,
            **self.attribution(),
        )


class ImageRequest(_Attribution):
    prompt: str
    provider: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    style: Optional[str] = None
    negative_prompt: Optional[str] = Field(default=None, alias="negativePrompt")
    seed: Optional[int] = None
    num_images: int = Field(default=1, ge=1, alias="numImages")


class VideoRequest(_Attribution):
    prompt: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    provider: Optional[str] = None
    model: Optional[str] = None
    duration: int = Field(default=5, ge=1)
    fps: int = Field(default=24, ge=1)
    aspect_ratio: Optional[Literal["16:9", "9:16", "1:1"]] = Field(default=None, alias="aspectRatio")


class SpeechRequest(_Attribution):
    text: str
    provider: Optional[str] = None
    model: Optional[str] = None
    voice_id: str = Field(default="default", alias="voiceId")
    stability: Optional[float] = None
    similarity_boost: Optional[float] = Field(default=None, alias="similarityBoost")
    output_format: str = Field(default="mp3_44100_128", alias="outputFormat")
    stream: bool = False


def job_to_dict(job: MediaJob) -> dict[str, Any]:
    return {
        "jobId": job.job_id,
        "estimatedCost": job.estimated_cost,
        "provider": job.provider,
        "model": job.model,
    }


def status_to_dict(status: JobStatus) -> dict[str, Any]:
    data: dict[str, Any] = {"status": status.status}
    if status.result is not None:
        data["result"] = {_camel(k): v for k, v in vars(status.result).items()}
    if status.error:
        data["error"] = status.error
    if status.record is not None:
        data["usage"] = status.record.to_dict()
    return data


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def create_router(gateway: AIGateway | None = None, ping_interval: float | None = 15.0) -> APIRouter:
    """
    Build the gateway router.

    Args:
        gateway: Gateway to serve; the process-wide default when None
        ping_interval: Seconds between SSE keep-alive pings (None disables)
    """
    router = APIRouter()

    def current() -> AIGateway:
        return gateway if gateway is not None else get_default_gateway()

    @router.post("/chat")
    async def chat(body: ChatRequest):
        messages = [m.to_message() for m in body.messages]
        options = body.options()

        if not body.stream:
            response = await current().chat(messages, options)
            return response.to_dict()

        # resolution errors raise here and become a JSON error response
        tokens = current().stream_chat(messages, options)
        writer = SSEWriter().open(ping_interval=ping_interval)
        producer = asyncio.create_task(pipe_stream(writer, tokens))
        return StreamingResponse(
            writer.iter_bytes(producer),
            media_type="text/event-stream",
            headers=get_sse_headers(),
        )

    @router.get("/chat/providers")
    async def providers():
        return current().get_available_providers()

    @router.get("/chat/providers/{provider_type}/{provider}/models")
    async def provider_models(provider_type: str, provider: str):
        models = current().get_provider_models(provider_type, provider)
        return {"type": provider_type, "provider": provider, "models": models}

    @router.post("/media/image/generate")
    async def generate_image(body: ImageRequest):
        job = await current().generate_image(
            body.prompt,
            ImageOptions(
                width=body.width,
                height=body.height,
                style=body.style,
                negative_prompt=body.negative_prompt,
                seed=body.seed,
                num_images=body.num_images,
            ),
            provider=body.provider,
            model=body.model,
            **body.attribution(),
        )
        return job_to_dict(job)

    @router.get("/media/image/status/{provider}/{job_id}")
    async def image_status(provider: str, job_id: str, model: Optional[str] = None):
        status = await current().get_image_status(job_id, provider=provider, model=model)
        return status_to_dict(status)

    @router.post("/media/video/generate")
    async def generate_video(body: VideoRequest):
        options = VideoOptions(duration=body.duration, fps=body.fps, aspect_ratio=body.aspect_ratio)
        if body.image_url:
            job = await current().image_to_video(
                body.image_url, body.prompt, options,
                provider=body.provider, model=body.model, **body.attribution(),
            )
        else:
            job = await current().generate_video(
                body.prompt, options,
                provider=body.provider, model=body.model, **body.attribution(),
            )
        return job_to_dict(job)

    @router.get("/media/video/status/{provider}/{job_id}")
    async def video_status(provider: str, job_id: str, model: Optional[str] = None):
        status = await current().get_video_status(job_id, provider=provider, model=model)
        return status_to_dict(status)

    @router.post("/media/voice/tts")
    async def text_to_speech(body: SpeechRequest):
        options = VoiceOptions(
            voice_id=body.voice_id,
            stability=body.stability,
            similarity_boost=body.similarity_boost,
            output_format=body.output_format,
        )
        if body.stream:
            audio = current().stream_text_to_speech(
                body.text, options, provider=body.provider, model=body.model, **body.attribution()
            )
            return StreamingResponse(audio, media_type="audio/mpeg")

        result = await current().text_to_speech(
            body.text, options, provider=body.provider, model=body.model, **body.attribution()
        )
        return Response(
            content=result.audio,
            media_type=result.content_type,
            headers={
                "X-Characters": str(result.characters),
                "X-Provider-Cost": f"{result.cost:.6f}",
            },
        )

    return router


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    body: dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, ValidationError):
        body["details"] = exc.errors
    return JSONResponse(status_code=status, content=body)


def create_app(gateway: AIGateway | None = None, ping_interval: float | None = 15.0) -> FastAPI:
    """FastAPI application serving the gateway router."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if gateway is not None:
            await gateway.aclose()

    app = FastAPI(title="AI Gateway", lifespan=lifespan)
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.include_router(create_router(gateway, ping_interval=ping_interval))

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app
