"""
Tests for history processors.
"""

import pytest

from agentloop.agent.context import RunContext
from agentloop.domain import (
    ModelResponse,
    SystemPromptMessage,
    TextPart,
    ToolCallPart,
    ToolReturnMessage,
    UserPromptMessage,
)
from agentloop.runtime.history import TruncateByTokens, TruncateHistory, apply_processors


def conversation():
    return [
        SystemPromptMessage(content="You are helpful."),
        UserPromptMessage(content="first question"),
        ModelResponse(parts=[ToolCallPart(tool_call_id="c1", tool_name="look", args={"q": "x"})]),
        ToolReturnMessage(tool_call_id="c1", tool_name="look", content="found x"),
        ModelResponse(parts=[TextPart(content="first answer")]),
        UserPromptMessage(content="second question"),
        ModelResponse(parts=[TextPart(content="second answer")]),
    ]


def test_truncate_keeps_everything_when_short():
    messages = conversation()
    assert TruncateHistory(max_messages=10).process(messages) == messages


def test_truncate_keeps_first_and_newest():
    messages = conversation()
    result = TruncateHistory(max_messages=3).process(messages)
    assert result == [messages[0], messages[5], messages[6]]


def test_truncate_never_starts_with_orphan_tool_return():
    messages = conversation()
    # Newest four without the first would start at the tool return
    result = TruncateHistory(max_messages=4, keep_first=False).process(messages)
    assert not isinstance(result[0], ToolReturnMessage)
    assert result == messages[4:]


def test_truncate_rejects_zero():
    with pytest.raises(ValueError):
        TruncateHistory(max_messages=0)


def test_truncate_does_not_modify_input():
    messages = conversation()
    original = list(messages)
    TruncateHistory(max_messages=2).process(messages)
    assert messages == original


def test_truncate_by_tokens():
    messages = [
        SystemPromptMessage(content="s" * 8),  # 2 tokens
        UserPromptMessage(content="u" * 40),  # 10 tokens
        ModelResponse(parts=[TextPart(content="a" * 4)]),  # 10 tokens serialized
        UserPromptMessage(content="v" * 8),  # 2 tokens
    ]
    processor = TruncateByTokens(max_tokens=20)
    result = processor.process(messages)

    assert result[0] is messages[0]
    assert messages[3] in result
    assert messages[2] in result
    assert messages[1] not in result


def test_truncate_by_tokens_drops_orphan_returns():
    messages = conversation()
    # Budget fits the tool return but not the response holding its call
    processor = TruncateByTokens(max_tokens=40, keep_first=False)
    result = processor.process(messages)
    assert result == messages[4:]


def test_estimate_tokens_rounds_up():
    processor = TruncateByTokens(max_tokens=100, chars_per_token=4.0)
    assert processor.estimate_tokens(UserPromptMessage(content="abcde")) == 2
    assert processor.estimate_tokens(ToolReturnMessage(tool_call_id="c", tool_name="t", content="abcd")) == 1


@pytest.mark.asyncio
async def test_apply_processors_in_order():
    ctx = RunContext(deps={"limit": 2}, run_id="r")
    calls = []

    def plain(messages):
        calls.append("plain")
        return messages[1:]

    async def with_ctx(ctx, messages):
        calls.append("ctx")
        return messages[-ctx.deps["limit"] :]

    messages = conversation()
    result = await apply_processors([plain, with_ctx, TruncateHistory(max_messages=1, keep_first=False)], messages, ctx)

    assert calls == ["plain", "ctx"]
    assert result == [messages[-1]]
    assert len(messages) == 7
