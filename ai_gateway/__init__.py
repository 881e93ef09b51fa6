"""
AI Gateway - 多模态AI服务统一接入与计费系统

A unified interface for LLM, image, video and voice providers with
real-time cost calculation, markup billing and usage emission.

Example usage:
    from ai_gateway import create_gateway, Message, ChatOptions

    gateway = create_gateway(on_usage=print)
    response = await gateway.chat(
        [Message(role="user", content="Hello, world!")],
        ChatOptions(workspace_id="ws_123"),
    )
    print(response.content)
    print(f"Billed: ${response.record.billed_amount:.2f}")

The FastAPI surface lives in ``ai_gateway.api``.
"""

__version__ = "0.1.0"

# Core data models
from .models import (
    ChatOptions,
    ChatResponse,
    ImageOptions,
    ImageResult,
    JobStatus,
    LLMResult,
    MediaJob,
    Message,
    Operation,
    PricingRule,
    ProviderType,
    StreamToken,
    StreamTokenType,
    ToolCall,
    ToolDefinition,
    UsageInfo,
    UsageRecord,
    VideoOptions,
    VideoResult,
    VoiceOptions,
    VoiceResult,
)

# Errors
from .errors import (
    ConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    NotFoundError,
    PricingError,
    ProviderNotImplementedError,
    StreamStateError,
    UpstreamError,
    UsageEmissionError,
    ValidationError,
)

# Configuration management
from .config import ConfigManager, GatewayConfig

# Pricing
from .pricing import DEFAULT_PRICING_RULE, PricingEngine, apply_billing_markup, margin, price

# Usage tracking
from .usage import (
    BufferedUsageSink,
    UsageSummary,
    UsageTracker,
    WorkspaceBilling,
    billing_by_workspace,
    calculate_workspace_billing,
    summarize,
)

# Streaming transport
from .sse import SSEMessage, SSEWriter, format_stream_token, get_sse_headers, pipe_stream

# Main gateway (unified entry point)
from .gateway import AIGateway, create_gateway, get_default_gateway, set_default_gateway

__all__ = [
    "__version__",
    # Main entry point
    "AIGateway",
    "create_gateway",
    "get_default_gateway",
    "set_default_gateway",
    # Data models
    "ChatOptions",
    "ChatResponse",
    "ImageOptions",
    "ImageResult",
    "JobStatus",
    "LLMResult",
    "MediaJob",
    "Message",
    "Operation",
    "PricingRule",
    "ProviderType",
    "StreamToken",
    "StreamTokenType",
    "ToolCall",
    "ToolDefinition",
    "UsageInfo",
    "UsageRecord",
    "VideoOptions",
    "VideoResult",
    "VoiceOptions",
    "VoiceResult",
    # Errors
    "ConfigurationError",
    "GatewayError",
    "GatewayTimeoutError",
    "NotFoundError",
    "PricingError",
    "ProviderNotImplementedError",
    "StreamStateError",
    "UpstreamError",
    "UsageEmissionError",
    "ValidationError",
    # Configuration
    "ConfigManager",
    "GatewayConfig",
    # Pricing
    "DEFAULT_PRICING_RULE",
    "PricingEngine",
    "apply_billing_markup",
    "margin",
    "price",
    # Usage
    "BufferedUsageSink",
    "UsageSummary",
    "UsageTracker",
    "WorkspaceBilling",
    "billing_by_workspace",
    "calculate_workspace_billing",
    "summarize",
    # Streaming
    "SSEMessage",
    "SSEWriter",
    "format_stream_token",
    "get_sse_headers",
    "pipe_stream",
]
