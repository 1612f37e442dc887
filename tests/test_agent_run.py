"""
Tests for the run loop: end strategies, corrections, failures and continuation.
"""

import asyncio

import pytest
from pydantic import BaseModel

from agentloop import Agent
from agentloop.config import EndStrategy, ExecutionConfig, RetryConfig, UsageLimits
from agentloop.domain import (
    ModelResponse,
    RequestUsage,
    RetryPromptMessage,
    RunStatus,
    SystemPromptMessage,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolReturnMessage,
    ToolReturnStatus,
    UserPromptMessage,
)
from agentloop.exceptions import (
    FatalProviderError,
    FatalToolError,
    ModelRequestFailed,
    ModelRetry,
    OutputValidationFailed,
    RetriesExhausted,
    TransportError,
    UnexpectedModelBehavior,
    UsageLimitExceeded,
    ToolExecutionFailed,
)
from agentloop.llm import FunctionModel

FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


def call(name: str, args=None, call_id: str = "c1") -> ToolCallPart:
    return ToolCallPart(tool_call_id=call_id, tool_name=name, args=args if args is not None else {})


def respond(*parts) -> ModelResponse:
    return ModelResponse(parts=list(parts))


def ping() -> str:
    return "pong"


def echo(text: str) -> str:
    return text


def scripted(*responses):
    """Model function returning the given responses in order."""
    queue = list(responses)
    seen = []

    def function(messages, info):
        seen.append(list(messages))
        return queue.pop(0)

    function.seen = seen
    return function


@pytest.mark.asyncio
async def test_exhaust_tools_runs_tools_then_answers():
    script = scripted(
        respond(call("add", {"a": 2, "b": 2})),
        "4",
    )
    agent = Agent(FunctionModel(function=script), config=ExecutionConfig(retry=FAST_RETRY))

    @agent.tool
    def add(a: int, b: int) -> int:
        return a + b

    result = await agent.run("What is 2+2?")

    assert result.status == RunStatus.COMPLETED
    assert result.output == "4"
    assert [m.kind for m in result.history] == ["user-prompt", "response", "tool-return", "response"]
    assert result.history[2].content == 4
    assert result.usage.requests == 2
    assert result.usage.tool_calls == 1

    # The second request saw the tool return
    assert isinstance(script.seen[1][-1], ToolReturnMessage)


@pytest.mark.asyncio
async def test_raw_string_arguments_are_canonicalized_in_history():
    script = scripted(respond(call("echo", '{"text": "hi",}')), "done")
    agent = Agent(FunctionModel(function=script), tools=[echo])

    result = await agent.run("go")

    assert result.history[1].tool_calls[0].args == {"text": "hi"}
    assert result.history[2].content == "hi"


@pytest.mark.asyncio
async def test_first_tool_returns_first_call_and_skips_rest():
    executed = []

    def lookup(q: str) -> str:
        executed.append(q)
        return f"result {q}"

    script = scripted(respond(call("lookup", {"q": "a"}, "c1"), call("lookup", {"q": "b"}, "c2")))
    agent = Agent(
        FunctionModel(function=script),
        tools=[lookup],
        config=ExecutionConfig(end_strategy=EndStrategy.FIRST_TOOL),
    )

    result = await agent.run("find")

    assert result.output == "result a"
    assert executed == ["a"]
    returns = [m for m in result.history if isinstance(m, ToolReturnMessage)]
    assert [(r.tool_call_id, r.status) for r in returns] == [
        ("c1", ToolReturnStatus.SUCCESS),
        ("c2", ToolReturnStatus.SKIPPED),
    ]
    assert result.usage.requests == 1


@pytest.mark.asyncio
async def test_first_tool_continues_after_failed_call():
    def lookup(q: str) -> str:
        raise ModelRetry("no such key")

    script = scripted(respond(call("lookup", {"q": "a"})), "gave up")
    agent = Agent(
        FunctionModel(function=script),
        tools=[lookup],
        config=ExecutionConfig(end_strategy=EndStrategy.FIRST_TOOL),
    )

    result = await agent.run("find")

    assert result.output == "gave up"
    assert result.history[2].status == ToolReturnStatus.ERROR


@pytest.mark.asyncio
async def test_early_strategy_finishes_on_text_and_skips_calls():
    executed = []

    def notify(who: str) -> str:
        executed.append(who)
        return "sent"

    script = scripted(respond(TextPart(content="All done."), call("notify", {"who": "bob"})))
    agent = Agent(
        FunctionModel(function=script),
        tools=[notify],
        config=ExecutionConfig(end_strategy=EndStrategy.EARLY),
    )

    result = await agent.run("go")

    assert result.output == "All done."
    assert executed == []
    assert result.history[-1].status == ToolReturnStatus.SKIPPED
    assert result.history[-1].tool_call_id == "c1"


@pytest.mark.asyncio
async def test_exhaust_tools_executes_calls_even_with_text():
    executed = []

    def notify(who: str) -> str:
        executed.append(who)
        return "sent"

    script = scripted(respond(TextPart(content="Sending."), call("notify", {"who": "bob"})), "Sent.")
    agent = Agent(FunctionModel(function=script), tools=[notify])

    result = await agent.run("go")

    assert executed == ["bob"]
    assert result.output == "Sent."


class CityInfo(BaseModel):
    name: str
    population: int


@pytest.mark.asyncio
async def test_structured_output_correction():
    script = scripted(
        "Paris is big.",
        'Here you go: {"name": "Paris", "population": 2100000}',
    )
    agent = Agent(
        FunctionModel(function=script),
        output_type=CityInfo,
        config=ExecutionConfig(output_retries=1),
    )

    result = await agent.run("Tell me about Paris")

    assert result.output == CityInfo(name="Paris", population=2100000)
    kinds = [m.kind for m in result.history]
    assert kinds == ["system", "user-prompt", "response", "retry-prompt", "response"]
    assert "JSON schema" in result.history[0].content
    assert "Fix the errors and try again." in result.history[3].content
    assert result.usage.requests == 2
    assert result.usage.correction_requests == 1


@pytest.mark.asyncio
async def test_structured_output_fails_after_retries():
    script = scripted("nope", "still nope")
    agent = Agent(
        FunctionModel(function=script),
        output_type=CityInfo,
        config=ExecutionConfig(output_retries=1),
    )

    with pytest.raises(OutputValidationFailed) as exc_info:
        await agent.run("Tell me about Paris")

    assert len(exc_info.value.history) == 5
    assert exc_info.value.usage.requests == 2


@pytest.mark.asyncio
async def test_output_validator_requests_correction():
    script = scripted("a bad answer", "a good answer")
    agent = Agent(FunctionModel(function=script), config=ExecutionConfig(output_retries=2))

    @agent.output_validator
    def no_bad_words(output: str) -> str:
        if "bad" in output:
            raise ModelRetry("Do not say bad.")
        return output.upper()

    result = await agent.run("answer")

    assert result.output == "A GOOD ANSWER"
    retry = [m for m in result.history if isinstance(m, RetryPromptMessage)]
    assert len(retry) == 1
    assert retry[0].content.startswith("Do not say bad.")


@pytest.mark.asyncio
async def test_empty_response_fails_after_corrections():
    script = scripted("", respond())
    agent = Agent(FunctionModel(function=script), config=ExecutionConfig(output_retries=1))

    with pytest.raises(UnexpectedModelBehavior) as exc_info:
        await agent.run("hello")

    history = exc_info.value.history
    assert [m.kind for m in history] == ["user-prompt", "response", "retry-prompt", "response"]
    assert history[1].parts == []


@pytest.mark.asyncio
async def test_request_limit_error_carries_history():
    def model(messages, info):
        return respond(call("ping", call_id=f"c{len(messages)}"))

    agent = Agent(
        FunctionModel(function=model),
        tools=[ping],
        config=ExecutionConfig(usage_limits=UsageLimits(max_requests=1)),
    )

    with pytest.raises(UsageLimitExceeded) as exc_info:
        await agent.run("loop forever")

    error = exc_info.value
    assert error.limit_name == "request_limit"
    assert [m.kind for m in error.history] == ["user-prompt", "response", "tool-return"]
    assert error.usage.requests == 1


@pytest.mark.asyncio
async def test_usage_limits_override_per_run():
    script = scripted(respond(call("ping")), "done")
    agent = Agent(FunctionModel(function=script), tools=[ping])

    with pytest.raises(UsageLimitExceeded) as exc_info:
        await agent.run("go", usage_limits=UsageLimits(max_tool_calls=0))

    assert exc_info.value.limit_name == "tool_calls_limit"


def unanswered_calls(error: UsageLimitExceeded) -> list[str]:
    answered = {m.tool_call_id for m in error.history if isinstance(m, ToolReturnMessage)}
    pending = {c.tool_call_id for c in error.pending_tool_calls}
    return [
        c.tool_call_id
        for m in error.history
        if isinstance(m, ModelResponse)
        for c in m.tool_calls
        if c.tool_call_id not in answered and c.tool_call_id not in pending
    ]


@pytest.mark.asyncio
async def test_token_limit_after_response_reports_its_tool_calls():
    script = scripted(
        ModelResponse(
            parts=[call("ping")],
            usage=RequestUsage(input_tokens=50, output_tokens=60),
        )
    )
    agent = Agent(
        FunctionModel(function=script),
        tools=[ping],
        config=ExecutionConfig(usage_limits=UsageLimits(max_total_tokens=100)),
    )

    with pytest.raises(UsageLimitExceeded) as exc_info:
        await agent.run("go")

    error = exc_info.value
    assert error.limit_name == "total_tokens_limit"
    assert [m.kind for m in error.history] == ["user-prompt", "response"]
    assert [c.tool_call_id for c in error.pending_tool_calls] == ["c1"]
    assert unanswered_calls(error) == []


@pytest.mark.parametrize("strategy", [EndStrategy.EXHAUST_TOOLS, EndStrategy.FIRST_TOOL])
@pytest.mark.asyncio
async def test_tool_call_limit_reports_unexecuted_calls(strategy):
    script = scripted(respond(call("ping", call_id="c1"), call("ping", call_id="c2")))
    agent = Agent(
        FunctionModel(function=script),
        tools=[ping],
        config=ExecutionConfig(end_strategy=strategy, usage_limits=UsageLimits(max_tool_calls=0)),
    )

    with pytest.raises(UsageLimitExceeded) as exc_info:
        await agent.run("go")

    error = exc_info.value
    assert [m.kind for m in error.history] == ["user-prompt", "response"]
    assert [c.tool_call_id for c in error.pending_tool_calls] == ["c1", "c2"]
    assert unanswered_calls(error) == []


@pytest.mark.asyncio
async def test_tool_call_limit_on_resume_reports_open_calls():
    history = [
        UserPromptMessage(content="go"),
        respond(call("ping", call_id="c1")),
    ]
    agent = Agent(FunctionModel(function=scripted("unused")), tools=[ping])

    with pytest.raises(UsageLimitExceeded) as exc_info:
        await agent.run(
            message_history=history,
            deferred_results={},
            usage_limits=UsageLimits(max_tool_calls=0),
        )

    error = exc_info.value
    assert [c.tool_call_id for c in error.pending_tool_calls] == ["c1"]
    assert unanswered_calls(error) == []


@pytest.mark.asyncio
async def test_retries_exhausted_after_max_attempts():
    calls = 0

    def failing(messages, info):
        nonlocal calls
        calls += 1
        raise TransportError("503 Service Unavailable", status_code=503)

    agent = Agent(FunctionModel(function=failing), config=ExecutionConfig(retry=FAST_RETRY))

    with pytest.raises(RetriesExhausted) as exc_info:
        await agent.run("hello")

    assert calls == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, TransportError)
    assert [m.kind for m in exc_info.value.history] == ["user-prompt"]


@pytest.mark.asyncio
async def test_transient_failure_is_retried_transparently():
    calls = 0

    def flaky(messages, info):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise TransportError("connection reset")
        return "recovered"

    agent = Agent(FunctionModel(function=flaky), config=ExecutionConfig(retry=FAST_RETRY))
    result = await agent.run("hello")

    assert result.output == "recovered"
    # Failed attempts never reach history or usage
    assert len(result.history) == 2
    assert result.usage.requests == 1


@pytest.mark.asyncio
async def test_fatal_provider_error_is_not_retried():
    calls = 0

    def fatal(messages, info):
        nonlocal calls
        calls += 1
        raise FatalProviderError("invalid api key", status_code=401)

    agent = Agent(FunctionModel(function=fatal), config=ExecutionConfig(retry=FAST_RETRY))

    with pytest.raises(ModelRequestFailed):
        await agent.run("hello")
    assert calls == 1


@pytest.mark.asyncio
async def test_fatal_tool_error_fails_run():
    def explode() -> str:
        raise FatalToolError("database is gone")

    script = scripted(respond(call("explode")))
    agent = Agent(FunctionModel(function=script), tools=[explode])

    with pytest.raises(ToolExecutionFailed) as exc_info:
        await agent.run("go")

    assert "database is gone" in exc_info.value.message
    assert [m.kind for m in exc_info.value.history] == ["user-prompt", "response"]


@pytest.mark.asyncio
async def test_tool_errors_are_returned_to_model():
    def divide(a: int, b: int) -> float:
        return a / b

    def model(messages, info):
        last = messages[-1]
        if isinstance(last, ToolReturnMessage):
            return f"error seen: {last.status.value}"
        return respond(call("divide", {"a": 1, "b": 0}))

    agent = Agent(FunctionModel(function=model), tools=[divide])
    result = await agent.run("divide")

    assert result.output == "error seen: error"
    assert "division by zero" in result.history[2].content


@pytest.mark.asyncio
async def test_cancellation_between_turns():
    def model(messages, info):
        return respond(call("stop_now"))

    agent = Agent(FunctionModel(function=model))

    @agent.tool
    def stop_now(ctx) -> str:
        ctx.cancellation.cancel("enough")
        return "stopping"

    result = await agent.run("go")

    assert result.status == RunStatus.CANCELLED
    assert result.is_cancelled
    assert result.output is None
    assert [m.kind for m in result.history] == ["user-prompt", "response", "tool-return"]
    assert result.usage.requests == 1


@pytest.mark.asyncio
async def test_cancellation_between_turns_keeps_last_turn_text():
    def model(messages, info):
        return respond(
            ThinkingPart(content="need to look"),
            TextPart(content="Let me check"),
            call("stop_now"),
        )

    agent = Agent(FunctionModel(function=model))

    @agent.tool
    def stop_now(ctx) -> str:
        ctx.cancellation.cancel("enough")
        return "stopping"

    events = [event async for event in agent.run_stream("go")]
    result = await agent.run("go")

    assert result.status == RunStatus.CANCELLED
    assert result.partial_text == "Let me check"
    assert result.partial_thinking == "need to look"
    assert events[-1].event_kind == "cancelled"
    assert events[-1].partial_text == "Let me check"
    assert events[-1].partial_thinking == "need to look"


@pytest.mark.asyncio
async def test_completed_run_has_no_partial_text():
    result = await Agent(FunctionModel(function=scripted("all done"))).run("go")
    assert result.partial_text == ""


@pytest.mark.asyncio
async def test_start_returns_handle_that_can_cancel():
    def model(messages, info):
        return respond(call("slow"))

    async def slow() -> str:
        await asyncio.sleep(0.05)
        return "tick"

    agent = Agent(FunctionModel(function=model), tools=[slow])

    handle = agent.start("go")
    await asyncio.sleep(0.01)
    handle.cancel("caller stop")
    result = await handle

    assert handle.done()
    assert handle.is_cancelled()
    assert result.status == RunStatus.CANCELLED
    # The running tool finished and its return was kept
    assert result.history[-1].content == "tick"


@pytest.mark.asyncio
async def test_start_runs_to_completion():
    agent = Agent(FunctionModel(function=lambda messages, info: "background"))
    handle = agent.start("go")

    result = await handle.result()

    assert result.output == "background"
    assert result.run_id == handle.run_id


@pytest.mark.asyncio
async def test_message_history_continuation():
    def model(messages, info):
        return f"seen {len(messages)}"

    agent = Agent(FunctionModel(function=model), system_prompt="Be brief.")

    first = await agent.run("Hi")
    second = await agent.run("Again", message_history=first.history)

    assert first.output == "seen 2"
    assert second.output == "seen 4"
    assert [m.kind for m in second.new_messages()] == ["user-prompt", "response"]
    # System prompts are not repeated on continuation
    assert sum(isinstance(m, SystemPromptMessage) for m in second.history) == 1
    assert second.history[: len(first.history)] == first.history


@pytest.mark.asyncio
async def test_dynamic_system_prompt_uses_deps():
    script = scripted("ok")
    agent = Agent(FunctionModel(function=script), system_prompt="Static prompt.")

    @agent.system_prompt
    def user_name(ctx) -> str:
        return f"The user is {ctx.deps}."

    await agent.run("hello", deps="Ada")

    sent = script.seen[0]
    assert [m.content for m in sent if isinstance(m, SystemPromptMessage)] == [
        "Static prompt.",
        "The user is Ada.",
    ]
    assert isinstance(sent[-1], UserPromptMessage)


@pytest.mark.asyncio
async def test_history_processor_does_not_change_stored_history():
    seen_lengths = []

    def model(messages, info):
        seen_lengths.append(len(messages))
        if len(seen_lengths) == 1:
            return respond(call("ping"))
        return "done"

    def keep_last(messages):
        return messages[-1:]

    agent = Agent(FunctionModel(function=model), tools=[ping], history_processors=[keep_last])
    result = await agent.run("go")

    assert seen_lengths == [1, 1]
    assert len(result.history) == 4


@pytest.mark.asyncio
async def test_tools_are_advertised_to_model():
    infos = []

    def model(messages, info):
        infos.append(info)
        return "ok"

    agent = Agent(FunctionModel(function=model), tools=[ping, echo])
    await agent.run("hi")

    assert infos[0].tool_names == ["ping", "echo"]


def test_run_requires_prompt_or_history():
    agent = Agent(FunctionModel(function=lambda messages, info: "x"))
    with pytest.raises(ValueError):
        agent.run_sync()


def test_run_sync():
    agent = Agent(FunctionModel(function=lambda messages, info: "sync"))
    assert agent.run_sync("hi").output == "sync"


@pytest.mark.asyncio
async def test_concurrent_runs_are_isolated():
    async def model(messages, info):
        await asyncio.sleep(0.01)
        return messages[-1].content.upper()

    agent = Agent(FunctionModel(function=model))
    results = await asyncio.gather(*(agent.run(f"run {i}") for i in range(5)))

    assert [r.output for r in results] == [f"RUN {i}" for i in range(5)]
    assert len({r.run_id for r in results}) == 5
    assert all(len(r.history) == 2 for r in results)
