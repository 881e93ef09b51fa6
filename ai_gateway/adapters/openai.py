"""
OpenAI provider adapter implementation.
"""

import json
import logging
import time
from typing import Any, AsyncIterator

from ..models import ChatOptions, LLMResult, Message, StreamToken, ToolCall, UsageInfo
from ..sse import iter_sse_messages
from .base import LLMProvider

logger = logging.getLogger(__name__)


def convert_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Canonical messages -> Chat Completions ``messages``."""
    converted = []
    for msg in messages:
        if msg.role == "tool":
            converted.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            })
        elif msg.role == "assistant" and msg.tool_calls:
            converted.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in msg.tool_calls
                ],
            })
        else:
            entry = {"role": msg.role, "content": msg.content}
            if msg.name:
                entry["name"] = msg.name
            converted.append(entry)
    return converted


def build_payload(messages: list[Message], options: ChatOptions, model: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": model,
        "messages": convert_messages(messages),
    }
    if options.temperature is not None:
        payload["temperature"] = options.temperature
    if options.max_tokens is not None:
        payload["max_tokens"] = options.max_tokens
    if options.top_p is not None:
        payload["top_p"] = options.top_p
    if options.stop:
        payload["stop"] = options.stop
    if options.tools:
        payload["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in options.tools
        ]
    return payload


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Tool call arguments are not valid JSON: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIAdapter(LLMProvider):
    """
    Adapter for OpenAI API.

    Implements the unified chat interface for OpenAI models.
    Extracts token usage from API response (prompt_tokens, completion_tokens).
    """

    name: str = "openai"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def complete(self, messages: list[Message], options: ChatOptions, model: str) -> LLMResult:
        """
        Run a chat completion using OpenAI API.

        Args:
            messages: Conversation so far
            options: Sampling and tool options
            model: Model identifier (e.g., 'gpt-4o', 'gpt-4o-mini')

        Returns:
            LLMResult with text, tool calls and token counts

        Raises:
            UpstreamError: If API call fails
        """
        started = time.time()
        result = None
        error_message = None
        try:
            with self._upstream_errors():
                response = await self._client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json=build_payload(messages, options, model),
                )
                response.raise_for_status()
                data = response.json()

            try:
                choice = data["choices"][0]
                message = choice["message"]
            except (KeyError, IndexError, TypeError) as e:
                raise self._invalid_response(e)

            tool_calls = [
                ToolCall(
                    id=tc["id"],
                    name=tc["function"]["name"],
                    arguments=_parse_arguments(tc["function"].get("arguments")),
                )
                for tc in message.get("tool_calls") or []
            ]
            content = message.get("content") or ""

            usage = data.get("usage")
            if usage:
                usage_info = UsageInfo(
                    input_tokens=usage.get("prompt_tokens") or 0,
                    output_tokens=usage.get("completion_tokens") or 0,
                )
            else:
                usage_info = self.estimate_tokens(messages, content)

            result = LLMResult(
                content=content,
                model=data.get("model") or model,
                usage=usage_info,
                tool_calls=tool_calls,
                finish_reason=choice.get("finish_reason"),
                raw_response=data,
            )
            return result
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            # 记录请求日志
            self._log_completion("chat", model, messages, started, result, error_message)

    async def stream(
        self, messages: list[Message], options: ChatOptions, model: str
    ) -> AsyncIterator[StreamToken]:
        """Stream a chat completion; usage arrives in the final chunk."""
        payload = build_payload(messages, options, model)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        usage: UsageInfo | None = None
        finish_reason = None
        text_length = 0
        # index -> {"id", "name", "arguments"}
        pending_calls: dict[int, dict[str, str]] = {}

        with self._upstream_errors("stream"):
            async with self._client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=payload,
            ) as response:
                await self._raise_for_status(response)
                async for event in iter_sse_messages(response.aiter_lines()):
                    if event.data == "[DONE]":
                        break
                    try:
                        chunk = event.json()
                    except json.JSONDecodeError:
                        continue

                    if chunk.get("error"):
                        raise self._stream_error(chunk["error"])

                    if chunk.get("usage"):
                        usage = UsageInfo(
                            input_tokens=chunk["usage"].get("prompt_tokens") or 0,
                            output_tokens=chunk["usage"].get("completion_tokens") or 0,
                        )

                    for choice in chunk.get("choices") or []:
                        delta = choice.get("delta") or {}
                        content = delta.get("content")
                        if content:
                            text_length += len(content)
                            yield StreamToken.text(content)
                        for tc in delta.get("tool_calls") or []:
                            call = pending_calls.setdefault(
                                tc.get("index", 0), {"id": "", "name": "", "arguments": ""}
                            )
                            function = tc.get("function") or {}
                            call["id"] = tc.get("id") or call["id"]
                            call["name"] = function.get("name") or call["name"]
                            call["arguments"] += function.get("arguments") or ""
                        if choice.get("finish_reason"):
                            finish_reason = choice["finish_reason"]

        for index in sorted(pending_calls):
            call = pending_calls[index]
            yield StreamToken.call(
                ToolCall(id=call["id"], name=call["name"], arguments=_parse_arguments(call["arguments"]))
            )

        if usage is None:
            usage = UsageInfo(
                input_tokens=self.estimate_tokens(messages, "").input_tokens,
                output_tokens=max(1, text_length // 4) if text_length else 0,
            )
        yield StreamToken.done(usage, finish_reason=finish_reason, model=model)
