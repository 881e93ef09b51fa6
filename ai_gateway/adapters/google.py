"""
Google Gemini provider adapter (Generative Language REST API).
"""

import json
import time
import uuid
from typing import Any, AsyncIterator

from ..models import ChatOptions, LLMResult, Message, StreamToken, ToolCall, UsageInfo
from ..sse import iter_sse_messages
from .base import LLMProvider


_SCHEMA_TYPES = {
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}


def convert_schema(prop: dict[str, Any]) -> dict[str, Any]:
    """JSON Schema -> Gemini schema (upper-case type names, recursive)."""
    raw_type = prop.get("type")
    if isinstance(raw_type, list):
        raw_type = raw_type[0] if raw_type else None
    result: dict[str, Any] = {"type": _SCHEMA_TYPES.get(str(raw_type).lower(), "STRING")}
    if raw_type is None and "properties" in prop:
        result["type"] = "OBJECT"
    if prop.get("description"):
        result["description"] = prop["description"]
    if prop.get("enum"):
        result["enum"] = prop["enum"]
    if isinstance(prop.get("properties"), dict):
        result["properties"] = {k: convert_schema(v) for k, v in prop["properties"].items()}
    if isinstance(prop.get("items"), dict):
        result["items"] = convert_schema(prop["items"])
    if isinstance(prop.get("required"), list):
        result["required"] = prop["required"]
    return result


def convert_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Canonical messages -> (systemInstruction text, contents)."""
    system_instruction = ""
    contents: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "system":
            system_instruction = msg.content
        elif msg.role == "user":
            contents.append({"role": "user", "parts": [{"text": msg.content}]})
        elif msg.role == "assistant":
            parts: list[dict[str, Any]] = []
            if msg.content:
                parts.append({"text": msg.content})
            for tc in msg.tool_calls:
                parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})
            if parts:
                contents.append({"role": "model", "parts": parts})
        elif msg.role == "tool":
            contents.append({"role": "user", "parts": [{"text": f"Tool result: {msg.content}"}]})
    return system_instruction, contents


def build_payload(messages: list[Message], options: ChatOptions) -> dict[str, Any]:
    system_instruction, contents = convert_messages(messages)
    generation_config: dict[str, Any] = {
        "temperature": 0.7 if options.temperature is None else options.temperature,
        "maxOutputTokens": options.max_tokens or 4096,
    }
    if options.top_p is not None:
        generation_config["topP"] = options.top_p
    if options.stop:
        generation_config["stopSequences"] = options.stop

    payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    if options.tools:
        payload["tools"] = [{
            "functionDeclarations": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": convert_schema({"type": "object", **tool.parameters}),
                }
                for tool in options.tools
            ]
        }]
    return payload


def _parse_candidate(data: dict[str, Any]) -> tuple[str, list[ToolCall], str | None]:
    text = ""
    tool_calls = []
    finish_reason = None
    for candidate in data.get("candidates") or []:
        finish_reason = candidate.get("finishReason") or finish_reason
        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("text"):
                text += part["text"]
            if part.get("functionCall"):
                call = part["functionCall"]
                tool_calls.append(ToolCall(
                    id=f"fc_{uuid.uuid4().hex[:12]}",
                    name=call.get("name", ""),
                    arguments=dict(call.get("args") or {}),
                ))
        # only the first candidate is used
        break
    return text, tool_calls, finish_reason


def _usage(data: dict[str, Any]) -> UsageInfo | None:
    metadata = data.get("usageMetadata")
    if not metadata:
        return None
    return UsageInfo(
        input_tokens=metadata.get("promptTokenCount") or 0,
        output_tokens=metadata.get("candidatesTokenCount") or 0,
    )


class GoogleAdapter(LLMProvider):
    """
    Adapter for Google Gemini API.

    Uses direct HTTP calls with API key authentication; token usage comes
    from ``usageMetadata``.
    """

    name: str = "google"
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    async def complete(self, messages: list[Message], options: ChatOptions, model: str) -> LLMResult:
        started = time.time()
        result = None
        error_message = None
        try:
            with self._upstream_errors():
                response = await self._client.post(
                    f"{self.base_url}/models/{model}:generateContent",
                    params={"key": self.api_key},
                    json=build_payload(messages, options),
                )
                response.raise_for_status()
                data = response.json()

            if not isinstance(data, dict) or "candidates" not in data:
                raise self._invalid_response(KeyError("candidates"))
            text, tool_calls, finish_reason = _parse_candidate(data)

            result = LLMResult(
                content=text,
                model=model,
                usage=_usage(data) or self.estimate_tokens(messages, text),
                tool_calls=tool_calls,
                finish_reason=finish_reason,
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
        """Stream via ``streamGenerateContent?alt=sse``; the last chunk carries usage."""
        usage: UsageInfo | None = None
        finish_reason = None
        text_length = 0

        with self._upstream_errors("stream"):
            async with self._client.stream(
                "POST",
                f"{self.base_url}/models/{model}:streamGenerateContent",
                params={"key": self.api_key, "alt": "sse"},
                headers={"Accept": "text/event-stream"},
                json=build_payload(messages, options),
            ) as response:
                await self._raise_for_status(response)
                async for event in iter_sse_messages(response.aiter_lines()):
                    try:
                        chunk = event.json()
                    except json.JSONDecodeError:
                        continue
                    if chunk.get("error"):
                        raise self._stream_error(chunk["error"])

                    text, tool_calls, reason = _parse_candidate(chunk)
                    if text:
                        text_length += len(text)
                        yield StreamToken.text(text)
                    for tool_call in tool_calls:
                        yield StreamToken.call(tool_call)
                    finish_reason = reason or finish_reason
                    usage = _usage(chunk) or usage

        if usage is None:
            usage = UsageInfo(
                input_tokens=self.estimate_tokens(messages, "").input_tokens,
                output_tokens=max(1, text_length // 4) if text_length else 0,
            )
        yield StreamToken.done(usage, finish_reason=finish_reason, model=model)
