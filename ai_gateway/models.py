"""
Core data models for the AI gateway.

Canonical, vendor-neutral request/response shapes shared by adapters,
the pricing engine, the usage tracker and the gateway itself.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal


Role = Literal["system", "user", "assistant", "tool"]
VALID_ROLES = ("system", "user", "assistant", "tool")


class ProviderType(str, Enum):
    """Modality a provider serves."""
    LLM = "llm"
    IMAGE = "image"
    VIDEO = "video"
    VOICE = "voice"


class Operation(str, Enum):
    """Billable operation kinds."""
    CHAT = "chat"
    STREAM_CHAT = "stream_chat"
    TEXT_TO_SPEECH = "text_to_speech"
    GENERATE_IMAGE = "generate_image"
    GENERATE_VIDEO = "generate_video"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by a model."""
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call, described by a JSON schema."""
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True)
class Message:
    """One turn in a conversation."""
    role: Role
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()

    def validate(self) -> list[str]:
        """验证消息，返回错误列表"""
        errors = []
        if self.role not in VALID_ROLES:
            errors.append(f"role must be one of: {', '.join(VALID_ROLES)}")
        if self.content is None:
            errors.append("content is required")
        if self.role == "tool" and not self.tool_call_id:
            errors.append("tool messages require tool_call_id")
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Build a Message from a camelCase or snake_case mapping."""
        raw_calls = data.get("tool_calls", data.get("toolCalls")) or []
        tool_calls = tuple(
            ToolCall(id=tc["id"], name=tc["name"], arguments=dict(tc.get("arguments") or {}))
            for tc in raw_calls
        )
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            name=data.get("name"),
            tool_call_id=data.get("tool_call_id", data.get("toolCallId")),
            tool_calls=tool_calls,
        )


@dataclass(frozen=True)
class UsageInfo:
    """Token使用统计"""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """总Token数 = 输入Token + 输出Token"""
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class PricingRule:
    """
    定价规则

    Token-metered models are priced per million input/output tokens.
    Unit-metered models (images, video seconds, voice characters) are
    priced per unit through ``cost_per_unit``.
    """
    provider: str
    model: str
    input_cost_per_1m: float = 0.0
    output_cost_per_1m: float = 0.0
    cost_per_unit: float = 0.0
    unit: Literal["tokens", "images", "seconds", "characters"] = "tokens"

    def calculate_cost(self, input_units: int | float, output_units: int | float = 0) -> float:
        """根据使用量计算成本(USD)"""
        if self.unit == "tokens":
            input_cost = (input_units / 1_000_000) * self.input_cost_per_1m
            output_cost = (output_units / 1_000_000) * self.output_cost_per_1m
            return float(input_cost + output_cost)
        return float((input_units + output_units) * self.cost_per_unit)

    @property
    def weight(self) -> float:
        """Comparable price level, used to pick the most expensive rule."""
        return self.input_cost_per_1m + self.output_cost_per_1m + self.cost_per_unit


class StreamTokenType(str, Enum):
    TOKEN = "token"
    TOOL_CALL = "tool_call"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamToken:
    """
    One item of a streamed completion.

    ``done`` and ``error`` are terminal. The gateway attaches the emitted
    usage record to its terminal token.
    """
    type: StreamTokenType
    content: str | None = None
    tool_call: ToolCall | None = None
    usage: UsageInfo | None = None
    finish_reason: str | None = None
    model: str | None = None
    error: str | None = None
    record: "UsageRecord | None" = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamTokenType.DONE, StreamTokenType.ERROR)

    @classmethod
    def text(cls, content: str) -> "StreamToken":
        return cls(type=StreamTokenType.TOKEN, content=content)

    @classmethod
    def call(cls, tool_call: ToolCall) -> "StreamToken":
        return cls(type=StreamTokenType.TOOL_CALL, tool_call=tool_call)

    @classmethod
    def done(
        cls,
        usage: UsageInfo,
        finish_reason: str | None = None,
        model: str | None = None,
        record: "UsageRecord | None" = None,
    ) -> "StreamToken":
        return cls(
            type=StreamTokenType.DONE,
            usage=usage,
            finish_reason=finish_reason,
            model=model,
            record=record,
        )

    @classmethod
    def failure(cls, error: str, record: "UsageRecord | None" = None) -> "StreamToken":
        return cls(type=StreamTokenType.ERROR, error=error, record=record)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.content is not None:
            data["content"] = self.content
        if self.tool_call is not None:
            data["toolCall"] = self.tool_call.to_dict()
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.finish_reason is not None:
            data["finishReason"] = self.finish_reason
        if self.model is not None:
            data["model"] = self.model
        if self.error is not None:
            data["error"] = self.error
        if self.record is not None:
            data["record"] = self.record.to_dict()
        return data


@dataclass
class UsageRecord:
    """
    The billing fact of one completed operation.

    Built once per logical request after the final cost is known and
    handed to the usage sink. The gateway never persists it.
    """
    provider: str
    model: str
    operation: str
    provider_cost: float
    billed_amount: float
    input_tokens: int | None = None
    output_tokens: int | None = None
    workspace_id: str | None = None
    project_id: str | None = None
    agent_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "operation": self.operation,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "providerCost": self.provider_cost,
            "billedAmount": self.billed_amount,
            "workspaceId": self.workspace_id,
            "projectId": self.project_id,
            "agentId": self.agent_id,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ChatOptions:
    """Per-request options for chat and stream_chat."""
    provider: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stop: list[str] | None = None
    tools: list[ToolDefinition] | None = None
    workspace_id: str | None = None
    project_id: str | None = None
    agent_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResult:
    """Canonical result of a unary adapter call, before billing."""
    content: str
    model: str
    usage: UsageInfo
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    raw_response: dict | None = None


@dataclass
class ChatResponse:
    """统一响应结构"""
    content: str
    model: str
    provider: str
    usage: UsageInfo
    cost: float
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    record: UsageRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls] or None,
            "usage": self.usage.to_dict(),
            "model": self.model,
            "provider": self.provider,
            "cost": self.cost,
            "finishReason": self.finish_reason,
            "record": self.record.to_dict() if self.record else None,
        }


@dataclass
class ImageOptions:
    width: int | None = None
    height: int | None = None
    style: str | None = None
    negative_prompt: str | None = None
    seed: int | None = None
    num_images: int = 1


@dataclass
class VideoOptions:
    duration: int = 5
    fps: int = 24
    aspect_ratio: Literal["16:9", "9:16", "1:1"] | None = None


@dataclass
class VoiceOptions:
    voice_id: str = "default"
    stability: float | None = None
    similarity_boost: float | None = None
    output_format: str = "mp3_44100_128"


@dataclass
class ImageResult:
    url: str
    width: int
    height: int
    cost: float
    units: int = 1
    seed: int | None = None


@dataclass
class VideoResult:
    url: str
    duration: float
    cost: float
    resolution: str | None = None
    job_id: str | None = None


@dataclass
class VoiceResult:
    audio: bytes
    content_type: str
    characters: int
    cost: float
    duration: float | None = None


@dataclass
class MediaJob:
    """
    Handle for a submitted image/video job.

    ``estimated_cost`` is provisional; the billed cost is fixed only when
    the job completes.
    """
    job_id: str
    estimated_cost: float
    provider: str = ""
    model: str = ""


JobState = Literal["queued", "in_progress", "completed", "failed"]


@dataclass
class JobStatus:
    status: JobState
    result: ImageResult | VideoResult | None = None
    error: str | None = None
    record: UsageRecord | None = None
