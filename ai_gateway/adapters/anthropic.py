"""
Direct Anthropic Messages API adapter.
"""

import json
import logging
import time
from typing import Any, AsyncIterator

from ..models import ChatOptions, LLMResult, Message, StreamToken, ToolCall, UsageInfo
from ..sse import iter_sse_messages
from .base import LLMProvider

logger = logging.getLogger(__name__)


def convert_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """
    Canonical messages -> (system prompt, Anthropic messages).

    Consecutive tool results are grouped into one user message of
    ``tool_result`` blocks. An assistant message with tool calls becomes
    ``tool_use`` blocks; an empty assistant message is dropped.
    """
    system_prompt = ""
    converted: list[dict[str, Any]] = []
    pending_results: list[dict[str, Any]] = []

    def flush_results():
        if pending_results:
            converted.append({"role": "user", "content": list(pending_results)})
            pending_results.clear()

    for msg in messages:
        if msg.role == "system":
            system_prompt = msg.content
        elif msg.role == "user":
            flush_results()
            converted.append({"role": "user", "content": msg.content})
        elif msg.role == "assistant":
            flush_results()
            if msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                converted.append({"role": "assistant", "content": blocks})
            elif msg.content:
                converted.append({"role": "assistant", "content": msg.content})
        elif msg.role == "tool":
            pending_results.append({
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "unknown",
                "content": msg.content,
            })

    flush_results()
    return system_prompt, converted


def build_payload(messages: list[Message], options: ChatOptions, model: str) -> dict[str, Any]:
    system_prompt, converted = convert_messages(messages)
    payload: dict[str, Any] = {
        "model": model,
        "max_tokens": options.max_tokens or 4096,
        "messages": converted,
        "temperature": 0.7 if options.temperature is None else options.temperature,
    }
    if system_prompt:
        payload["system"] = system_prompt
    if options.top_p is not None:
        payload["top_p"] = options.top_p
    if options.stop:
        payload["stop_sequences"] = options.stop
    if options.tools:
        payload["tools"] = [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in options.tools
        ]
    return payload


class AnthropicAdapter(LLMProvider):
    """
    Direct Anthropic API adapter.

    Connects directly to Anthropic's Claude API.
    """

    name: str = "anthropic"
    DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
    ANTHROPIC_VERSION = "2023-06-01"
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.ANTHROPIC_VERSION,
        }

    async def complete(self, messages: list[Message], options: ChatOptions, model: str) -> LLMResult:
        """Create a message via the Anthropic API."""
        started = time.time()
        result = None
        error_message = None
        try:
            with self._upstream_errors():
                response = await self._client.post(
                    f"{self.base_url}/messages",
                    headers=self._headers(),
                    json=build_payload(messages, options, model),
                )
                response.raise_for_status()
                data = response.json()

            if data.get("type") == "error":
                raise self._stream_error(data.get("error"))

            content = ""
            tool_calls = []
            try:
                for block in data["content"]:
                    if block["type"] == "text":
                        content += block["text"]
                    elif block["type"] == "tool_use":
                        tool_calls.append(ToolCall(
                            id=block["id"],
                            name=block["name"],
                            arguments=dict(block.get("input") or {}),
                        ))
                usage = data["usage"]
            except (KeyError, TypeError) as e:
                raise self._invalid_response(e)

            result = LLMResult(
                content=content,
                model=data.get("model") or model,
                usage=UsageInfo(
                    input_tokens=usage.get("input_tokens") or 0,
                    output_tokens=usage.get("output_tokens") or 0,
                ),
                tool_calls=tool_calls,
                finish_reason=data.get("stop_reason"),
                raw_response=data,
            )
            return result
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            self._log_completion("chat", model, messages, started, result, error_message)

    async def stream(
        self, messages: list[Message], options: ChatOptions, model: str
    ) -> AsyncIterator[StreamToken]:
        """
        Stream a message.

        Input tokens arrive with ``message_start``, output tokens with
        ``message_delta``. Tool input is streamed as partial JSON and
        emitted as one tool_call when its content block stops.
        """
        payload = build_payload(messages, options, model)
        payload["stream"] = True

        input_tokens = 0
        output_tokens = 0
        finish_reason = None
        current_tool: dict[str, str] | None = None

        with self._upstream_errors("stream"):
            async with self._client.stream(
                "POST",
                f"{self.base_url}/messages",
                headers=self._headers(),
                json=payload,
            ) as response:
                await self._raise_for_status(response)
                async for message in iter_sse_messages(response.aiter_lines()):
                    try:
                        event = message.json()
                    except json.JSONDecodeError:
                        continue
                    event_type = event.get("type")

                    if event_type == "message_start":
                        usage = (event.get("message") or {}).get("usage") or {}
                        input_tokens = usage.get("input_tokens") or 0
                        output_tokens = usage.get("output_tokens") or output_tokens
                    elif event_type == "content_block_start":
                        block = event.get("content_block") or {}
                        if block.get("type") == "tool_use":
                            current_tool = {"id": block["id"], "name": block["name"], "input": ""}
                    elif event_type == "content_block_delta":
                        delta = event.get("delta") or {}
                        if delta.get("type") == "text_delta" or "text" in delta:
                            if delta.get("text"):
                                yield StreamToken.text(delta["text"])
                        elif "partial_json" in delta and current_tool is not None:
                            current_tool["input"] += delta["partial_json"]
                    elif event_type == "content_block_stop" and current_tool is not None:
                        yield StreamToken.call(ToolCall(
                            id=current_tool["id"],
                            name=current_tool["name"],
                            arguments=self._tool_input(current_tool["input"]),
                        ))
                        current_tool = None
                    elif event_type == "message_delta":
                        usage = event.get("usage") or {}
                        if usage.get("output_tokens") is not None:
                            output_tokens = usage["output_tokens"]
                        stop_reason = (event.get("delta") or {}).get("stop_reason")
                        if stop_reason:
                            finish_reason = stop_reason
                    elif event_type == "message_stop":
                        break
                    elif event_type == "error":
                        raise self._stream_error(event.get("error"))

        yield StreamToken.done(
            UsageInfo(input_tokens=input_tokens, output_tokens=output_tokens),
            finish_reason=finish_reason,
            model=model,
        )

    @staticmethod
    def _tool_input(raw: str) -> dict[str, Any]:
        try:
            parsed = json.loads(raw or "{}")
        except json.JSONDecodeError:
            logger.warning("Unparseable tool input from stream: %r", raw[:200])
            return {}
        return parsed if isinstance(parsed, dict) else {}
