"""
Property-based tests for data models.

Feature: ai-gateway, Property 4: Token统计一致性
"""

from hypothesis import given, strategies as st, settings

from ai_gateway.models import (
    ChatResponse,
    Message,
    StreamToken,
    StreamTokenType,
    ToolCall,
    UsageInfo,
    UsageRecord,
)


role_strategy = st.sampled_from(["system", "user", "assistant"])
text_strategy = st.text(max_size=200)


class TestUsageInfoProperties:
    """Property tests for UsageInfo data class."""

    @settings(max_examples=100)
    @given(
        input_tokens=st.integers(min_value=0, max_value=10_000_000),
        output_tokens=st.integers(min_value=0, max_value=10_000_000),
    )
    def test_total_tokens_equals_sum_of_input_and_output(self, input_tokens: int, output_tokens: int):
        """
        Property 4: Token统计一致性

        For any UsageInfo, total_tokens must equal input_tokens + output_tokens,
        and the wire form carries all three.
        """
        usage = UsageInfo(input_tokens=input_tokens, output_tokens=output_tokens)

        assert usage.total_tokens == input_tokens + output_tokens
        assert usage.to_dict() == {
            "inputTokens": input_tokens,
            "outputTokens": output_tokens,
            "totalTokens": input_tokens + output_tokens,
        }


class TestMessageProperties:

    @settings(max_examples=100)
    @given(role=role_strategy, content=text_strategy)
    def test_from_dict_accepts_plain_messages(self, role, content):
        message = Message.from_dict({"role": role, "content": content})
        assert message.role == role
        assert message.content == content
        assert message.validate() == []

    def test_from_dict_accepts_camel_case_tool_fields(self):
        message = Message.from_dict({
            "role": "assistant",
            "content": "",
            "toolCalls": [{"id": "call_1", "name": "get_weather", "arguments": {"city": "Paris"}}],
        })
        assert message.tool_calls == (ToolCall("call_1", "get_weather", {"city": "Paris"}),)

        result = Message.from_dict({"role": "tool", "content": "18C", "toolCallId": "call_1"})
        assert result.tool_call_id == "call_1"
        assert result.validate() == []

    def test_tool_message_without_call_id_is_invalid(self):
        errors = Message(role="tool", content="18C").validate()
        assert any("tool_call_id" in e for e in errors)

    def test_unknown_role_is_invalid(self):
        errors = Message(role="robot", content="beep").validate()
        assert any("role" in e for e in errors)


class TestStreamTokenProperties:

    @settings(max_examples=100)
    @given(content=st.text(min_size=1, max_size=50))
    def test_text_tokens_are_not_terminal(self, content):
        token = StreamToken.text(content)
        assert token.type is StreamTokenType.TOKEN
        assert not token.is_terminal
        assert token.to_dict() == {"type": "token", "content": content}

    def test_done_and_error_are_terminal(self):
        assert StreamToken.done(UsageInfo(1, 2)).is_terminal
        assert StreamToken.failure("boom").is_terminal

    def test_done_to_dict_uses_camel_case(self):
        token = StreamToken.done(UsageInfo(10, 20), finish_reason="stop", model="gpt-4o")
        data = token.to_dict()
        assert data["type"] == "done"
        assert data["finishReason"] == "stop"
        assert data["usage"]["totalTokens"] == 30


class TestRecordSerialization:

    def test_usage_record_to_dict(self):
        record = UsageRecord(
            provider="openai",
            model="gpt-4o",
            operation="chat",
            provider_cost=0.0173,
            billed_amount=0.25,
            input_tokens=1000,
            output_tokens=500,
            workspace_id="ws_1",
        )
        data = record.to_dict()
        assert data["providerCost"] == 0.0173
        assert data["billedAmount"] == 0.25
        assert data["workspaceId"] == "ws_1"
        assert data["projectId"] is None
        assert data["timestamp"].endswith("+00:00")

    def test_chat_response_without_tool_calls(self):
        response = ChatResponse(
            content="hi", model="gpt-4o", provider="openai", usage=UsageInfo(3, 1), cost=0.001
        )
        data = response.to_dict()
        assert data["toolCalls"] is None
        assert data["record"] is None
        assert data["usage"]["totalTokens"] == 4
