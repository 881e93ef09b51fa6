"""
Shared test doubles: in-memory adapters and a gateway factory that never
touches the network.
"""

import asyncio
from typing import AsyncIterator

import pytest

from ai_gateway.adapters import ImageProvider, LLMProvider, VideoProvider, VoiceProvider
from ai_gateway.config import ConfigManager, GatewayConfig
from ai_gateway.errors import UpstreamError
from ai_gateway.gateway import AIGateway
from ai_gateway.models import (
    ImageResult,
    JobStatus,
    LLMResult,
    MediaJob,
    ProviderType,
    StreamToken,
    ToolCall,
    UsageInfo,
    VideoResult,
    VoiceResult,
)


class FakeLLM(LLMProvider):
    """Scripted LLM adapter."""

    name = "anthropic"

    def __init__(
        self,
        reply: str = "Hello there",
        usage: UsageInfo = UsageInfo(input_tokens=1000, output_tokens=500),
        chunks: list[str] | None = None,
        fail_after: int | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        tool_calls: list[ToolCall] | None = None,
        reported_model: str | None = None,
    ):
        super().__init__(api_key="test-key")
        self.reported_model = reported_model
        self.reply = reply
        self.usage = usage
        self.chunks = chunks if chunks is not None else ["Hel", "lo ", "there"]
        self.fail_after = fail_after
        self.error = error
        self.delay = delay
        self.tool_calls = tool_calls or []
        self.complete_calls = 0
        self.stream_calls = 0
        self.closed_streams = 0

    async def complete(self, messages, options, model) -> LLMResult:
        self.complete_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMResult(
            content=self.reply,
            model=self.reported_model or model,
            usage=self.usage,
            tool_calls=list(self.tool_calls),
            finish_reason="stop",
        )

    async def stream(self, messages, options, model) -> AsyncIterator[StreamToken]:
        self.stream_calls += 1
        try:
            for index, chunk in enumerate(self.chunks):
                if self.fail_after is not None and index == self.fail_after:
                    raise self.error or UpstreamError(self.name, "connection reset")
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield StreamToken.text(chunk)
            for call in self.tool_calls:
                yield StreamToken.call(call)
            yield StreamToken.done(self.usage, finish_reason="end_turn", model=self.reported_model or model)
        finally:
            self.closed_streams += 1


class FakeImage(ImageProvider):
    name = "fal"

    def __init__(self, polls_until_done: int = 1, units: int = 1):
        super().__init__(api_key="test-key")
        self.polls_until_done = polls_until_done
        self.units = units
        self.polls: dict[str, int] = {}
        self.submitted = 0

    async def submit(self, prompt, options, model) -> MediaJob:
        self.submitted += 1
        job_id = f"img-{self.submitted}"
        self.polls[job_id] = 0
        return MediaJob(job_id=job_id, estimated_cost=0.0, provider=self.name, model=model)

    async def get_status(self, job_id, model) -> JobStatus:
        self.polls[job_id] = self.polls.get(job_id, 0) + 1
        if self.polls[job_id] < self.polls_until_done:
            return JobStatus(status="in_progress")
        return JobStatus(
            status="completed",
            result=ImageResult(url="https://cdn.example/img.png", width=1024, height=1024, cost=0.0, units=self.units),
        )


class FakeVideo(VideoProvider):
    name = "fal-video"

    def __init__(self, duration: float = 5.0, fail: bool = False):
        super().__init__(api_key="test-key")
        self.duration = duration
        self.fail = fail
        self.image_submissions: list[str] = []

    async def submit(self, prompt, options, model) -> MediaJob:
        return MediaJob(job_id="vid-1", estimated_cost=0.0)

    async def submit_image_to_video(self, image_url, prompt, options, model) -> MediaJob:
        self.image_submissions.append(image_url)
        return MediaJob(job_id="vid-i2v", estimated_cost=0.0)

    async def get_status(self, job_id, model) -> JobStatus:
        if self.fail:
            return JobStatus(status="failed", error="content policy")
        return JobStatus(
            status="completed",
            result=VideoResult(url="https://cdn.example/v.mp4", duration=self.duration, cost=0.0, job_id=job_id),
        )


class FakeVoice(VoiceProvider):
    name = "elevenlabs"

    def __init__(self, chunks: list[bytes] | None = None, fail_after: int | None = None):
        super().__init__(api_key="test-key")
        self.chunks = chunks or [b"ID3", b"\x00\x01", b"\x02"]
        self.fail_after = fail_after

    async def text_to_speech(self, text, options, model) -> VoiceResult:
        return VoiceResult(audio=b"".join(self.chunks), content_type="audio/mpeg", characters=len(text), cost=0.0)

    async def stream_text_to_speech(self, text, options, model):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise UpstreamError(self.name, "stream dropped")
            yield chunk


class RecordingSink:
    """Collects usage records; optionally fails or stalls."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.records = []
        self.fail = fail
        self.delay = delay

    async def __call__(self, record):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("database unavailable")
        self.records.append(record)


def make_gateway(
    llm: LLMProvider | None = None,
    sink=None,
    config: GatewayConfig | None = None,
    extra_adapters: dict | None = None,
    raw_config: dict | None = None,
) -> AIGateway:
    adapters = {(ProviderType.LLM, "anthropic"): llm or FakeLLM()}
    adapters.update(extra_adapters or {})
    return AIGateway(
        config=config or GatewayConfig(),
        on_usage=sink,
        config_manager=ConfigManager(raw_config=raw_config or {}),
        adapters=adapters,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
