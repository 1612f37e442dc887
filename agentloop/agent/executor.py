"""
AgentRun - the run controller.

This module implements the state machine that drives one logical run:
- Build the initial history (continuation, system prompts, user prompt)
- Request the model through the retry policy, streamed or not
- Canonicalize and append each response, account usage
- Apply the end strategy and execute tools
- Finish with a RunResult, a cancellation, a deferral or a RunError

Both entry points share one code path: ``iter_events`` is an async generator
of StreamEvents. ``run`` drains it; ``AgentStream`` hands it to the caller.
The generator only advances when the consumer pulls, so a slow consumer
never lets the run race ahead.
"""

import inspect
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Generic, TypeVar

from agentloop.agent.context import RunContext
from agentloop.config import EndStrategy, ExecutionConfig
from agentloop.domain import (
    Cancelled,
    DeferredToolCall,
    Error,
    Message,
    ModelRequestStarted,
    ModelResponse,
    RetryPromptMessage,
    RunComplete,
    RunResult,
    RunStarted,
    RunState,
    RunStatus,
    StreamEvent,
    SystemPromptMessage,
    TextDelta,
    ThinkingDelta,
    ToolApprovalRequired,
    ToolApproved,
    ToolCallComplete,
    ToolCallDelta,
    ToolCallPart,
    ToolDenied,
    ToolResult,
    ToolReturnMessage,
    ToolReturnStatus,
    UserPromptMessage,
    new_run_id,
)
from agentloop.exceptions import (
    OutputValidationError,
    OutputValidationFailed,
    RunCancelled,
    RunError,
    ToolExecutionFailed,
    UnexpectedModelBehavior,
)
from agentloop.llm.base import Model, ModelSettings, StreamChunk
from agentloop.runtime.accumulator import PartsAccumulator
from agentloop.runtime.canonical import canonicalize
from agentloop.runtime.control import CancellationToken
from agentloop.runtime.history import apply_processors
from agentloop.runtime.output import OutputSchema
from agentloop.runtime.retry import RetryPolicy
from agentloop.runtime.usage import UsageLimiter
from agentloop.tools.executor import ToolBatchOutcome, ToolExecutor
from agentloop.tools.registry import Toolset
from agentloop.utils.logging import get_logger

logger = get_logger(__name__)

OutputT = TypeVar("OutputT")

SKIPPED_CONTENT = "Tool call not executed: a final output was already produced."
EMPTY_RESPONSE_PROMPT = "Your response was empty. Reply with text or call a tool."

SystemPromptFunc = Callable[..., Any]


class _Finished(Exception):
    """Internal: the loop produced its final output."""

    def __init__(self, output: Any):
        self.output = output


class AgentRun(Generic[OutputT]):
    """
    One logical run of a conversation.

    An AgentRun is single use: create one per call to ``Agent.run`` /
    ``Agent.run_stream``.
    """

    def __init__(
        self,
        *,
        model: Model,
        toolset: Toolset | None = None,
        output_schema: OutputSchema[OutputT] | None = None,
        config: ExecutionConfig | None = None,
        deps: Any = None,
        user_prompt: str | None = None,
        message_history: list[Message] | None = None,
        system_prompts: list[str | SystemPromptFunc] | None = None,
        history_processors: list | None = None,
        model_settings: ModelSettings | None = None,
        deferred_results: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
        run_id: str | None = None,
    ):
        self.model = model
        self.toolset = toolset or Toolset()
        self.output_schema = output_schema or OutputSchema()
        self.config = config or ExecutionConfig()
        self.deps = deps
        self.user_prompt = user_prompt
        self.message_history = list(message_history or [])
        self.system_prompts = list(system_prompts or [])
        self.history_processors = list(history_processors or [])
        self.model_settings = model_settings
        self.deferred_results = deferred_results
        self.cancellation = cancellation or CancellationToken()
        self.run_id = run_id or new_run_id()

        self.history: list[Message] = []
        self.state = RunState.AWAITING_MODEL
        self.limiter = UsageLimiter(self.config.usage_limits)
        self.retry_policy = RetryPolicy(self.config.retry)
        self.tool_executor = ToolExecutor(
            self.toolset,
            parallel=self.config.parallel_tool_calls,
            max_parallel=self.config.max_parallel_tools,
            timeout=self.config.tool_timeout,
            usage_limiter=self.limiter,
        )
        self.log = logger.bind(run_id=self.run_id)

        self._started = False
        self._step = 0
        self._new_message_index = 0
        self._output_retries_used = 0
        self._correction_next = False
        self._acc: PartsAccumulator | None = None
        self._raw_response: ModelResponse | None = None
        self._last_response: ModelResponse | None = None
        self._pending: list[ToolCallPart] = []
        self._deferred: list[DeferredToolCall] = []

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self) -> RunResult:
        """
        Drive the run to a terminal state.

        Returns:
            RunResult with status completed, cancelled or deferred

        Raises:
            RunError: The run failed
        """
        async with aclosing(self.iter_events(stream=False)) as events:
            async for event in events:
                if isinstance(event, (RunComplete, Cancelled)):
                    return event.result
                if isinstance(event, Error):
                    raise event.exception
        raise RuntimeError("run ended without a terminal event")

    async def iter_events(self, *, stream: bool) -> AsyncIterator[StreamEvent]:
        """
        The run loop as a stream of events ending in exactly one terminal event.

        Args:
            stream: Use ``Model.request_stream`` and forward deltas
        """
        if self._started:
            raise RuntimeError("AgentRun can only be iterated once")
        self._started = True

        self.log.info("run_started", model=self.model.id, end_strategy=self.config.end_strategy.value)
        yield RunStarted(run_id=self.run_id)

        try:
            await self._init_history()
            if self.deferred_results is not None:
                async with aclosing(self._resume_deferred()) as events:
                    async for event in events:
                        yield event
            if self.user_prompt is not None and not self._deferred:
                self.history.append(UserPromptMessage(content=self.user_prompt))

            if not self._deferred:
                while True:
                    async with aclosing(self._turn(stream)) as events:
                        async for event in events:
                            yield event
                    if self._deferred:
                        break

            status = RunStatus.DEFERRED if self._deferred else RunStatus.COMPLETED
            self._set_state(RunState.DEFERRED if self._deferred else RunState.DONE)
            result = self._build_result(status)
        except _Finished as finished:
            self._set_state(RunState.DONE)
            result = self._build_result(RunStatus.COMPLETED, output=finished.output)
        except RunCancelled as e:
            self._set_state(RunState.CANCELLED)
            result = self._build_result(RunStatus.CANCELLED)
            self.log.info("run_cancelled", reason=e.reason, pending=len(result.pending_tool_calls))
            yield Cancelled(
                run_id=self.run_id,
                partial_text=result.partial_text,
                partial_thinking=result.partial_thinking,
                pending_tool_calls=result.pending_tool_calls,
                result=result,
            )
            return
        except RunError as e:
            self._set_state(RunState.FAILED)
            e.attach_state(self.history, self.limiter.snapshot(), self._pending_for_error())
            self.log.warning("run_failed", error=e.message, error_type=type(e).__name__)
            yield Error(run_id=self.run_id, error=e.message, error_type=type(e).__name__, exception=e)
            return
        except Exception as e:
            self._set_state(RunState.FAILED)
            self.log.error("run_crashed", error=str(e), exc_info=True)
            yield Error(run_id=self.run_id, error=str(e), error_type=type(e).__name__, exception=e)
            return

        self.log.info(
            "run_completed",
            status=result.status.value,
            requests=result.usage.requests,
            total_tokens=result.usage.total_tokens,
        )
        yield RunComplete(run_id=self.run_id, result=result)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def _turn(self, stream: bool) -> AsyncIterator[StreamEvent]:
        """One model request and what follows from its response."""
        self._set_state(RunState.AWAITING_MODEL)
        self.cancellation.raise_if_cancelled()

        correction = self._correction_next
        self.limiter.check_before_request(correction=correction)

        async with aclosing(self._request(stream)) as events:
            async for event in events:
                yield event

        response = canonicalize(self._raw_response)
        self._raw_response = None
        self._acc = None
        self._correction_next = False
        self.history.append(response)
        self._last_response = response
        # Open until settled, so a limit breach below still reports them
        self._pending = list(response.tool_calls)
        self.log.debug(
            "model_response_received",
            step=self._step,
            tool_calls=len(response.tool_calls),
            has_text=response.text() is not None,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        await self.limiter.record_response(response.usage, correction=correction)

        for call in response.tool_calls:
            yield ToolCallComplete(run_id=self.run_id, tool_call=call)

        self._set_state(RunState.EVALUATING_RESPONSE)
        async with aclosing(self._handle_response(response)) as events:
            async for event in events:
                yield event

    async def _request(self, stream: bool) -> AsyncIterator[StreamEvent]:
        """Send the history to the model, retrying per the retry policy."""
        self._step += 1
        ctx = self._context()
        messages = await apply_processors(self.history_processors, self.history, ctx)
        tools = self.toolset.definitions()
        attempts = 0

        try:
            async for attempt in self.retry_policy.attempts(self.cancellation):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    yield ModelRequestStarted(run_id=self.run_id, step=self._step, attempt=attempts)
                    if stream:
                        self._acc = PartsAccumulator()
                        async with aclosing(self._consume_stream(messages, tools)) as events:
                            async for event in events:
                                yield event
                        self._raw_response = self._acc.build()
                    else:
                        self._raw_response = await self.model.request(
                            messages, tools, self.model_settings
                        )
        except RunCancelled:
            raise
        except Exception as e:
            raise self.retry_policy.wrap_failure(e, attempts) from e

    async def _consume_stream(self, messages: list[Message], tools) -> AsyncIterator[StreamEvent]:
        chunks = self.model.request_stream(messages, tools, self.model_settings)
        try:
            async for chunk in chunks:
                self.cancellation.raise_if_cancelled()
                for event in self._chunk_events(chunk):
                    self.cancellation.raise_if_cancelled()
                    yield event
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    def _chunk_events(self, chunk: StreamChunk) -> list[StreamEvent]:
        acc = self._acc
        events: list[StreamEvent] = []
        if chunk.reasoning_content:
            index = acc.add_thinking(chunk.reasoning_content)
            events.append(
                ThinkingDelta(run_id=self.run_id, part_index=index, content=chunk.reasoning_content)
            )
        if chunk.content:
            index = acc.add_text(chunk.content)
            events.append(TextDelta(run_id=self.run_id, part_index=index, content=chunk.content))
        for delta in chunk.tool_calls or []:
            index = acc.add_tool_call(delta)
            events.append(
                ToolCallDelta(
                    run_id=self.run_id,
                    part_index=index,
                    tool_call_id=delta.tool_call_id,
                    tool_name=delta.tool_name,
                    args_delta=delta.args_delta,
                )
            )
        acc.add_metadata(chunk)
        return events

    # ------------------------------------------------------------------
    # End strategy
    # ------------------------------------------------------------------

    async def _handle_response(self, response: ModelResponse) -> AsyncIterator[StreamEvent]:
        text = response.text()
        calls = response.tool_calls
        strategy = self.config.end_strategy

        if text is None and not calls:
            self.log.warning("empty_model_response", step=self._step)
            self._request_correction(EMPTY_RESPONSE_PROMPT, empty=True)
            return

        if strategy is EndStrategy.EARLY and text is not None:
            for event in self._skip_calls(calls):
                yield event
            await self._finish_with_text(text)
            return

        if not calls:
            await self._finish_with_text(text)
            return

        if strategy is EndStrategy.FIRST_TOOL:
            first, rest = calls[0], calls[1:]
            self.limiter.check_tool_calls(1)
            outcome = await self._execute([first])
            for event in self._settle_batch([first], outcome):
                yield event
            for event in self._skip_calls(rest):
                yield event
            self._raise_if_unsettled(outcome)
            if outcome.returns and outcome.returns[0].status is ToolReturnStatus.SUCCESS:
                await self._finish_with_value(outcome.returns[0])
            return

        self.limiter.check_tool_calls(len(calls))
        outcome = await self._execute(calls)
        for event in self._settle_batch(calls, outcome):
            yield event
        self._raise_if_unsettled(outcome)

    def _skip_calls(self, calls: list[ToolCallPart]) -> list[StreamEvent]:
        events = []
        for call in calls:
            skipped = ToolReturnMessage(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                content=SKIPPED_CONTENT,
                status=ToolReturnStatus.SKIPPED,
            )
            self.history.append(skipped)
            events.append(ToolResult(run_id=self.run_id, tool_return=skipped))
        return events

    async def _finish_with_text(self, text: str) -> None:
        try:
            output = await self.output_schema.process_text(text, self._context())
        except OutputValidationError as e:
            self._request_correction(e.retry_message())
            return
        raise _Finished(output)

    async def _finish_with_value(self, tool_return: ToolReturnMessage) -> None:
        try:
            output = await self.output_schema.process_value(tool_return.content, self._context())
        except OutputValidationError as e:
            self._request_correction(e.retry_message(), tool_return=tool_return)
            return
        raise _Finished(output)

    def _request_correction(
        self,
        message: str,
        *,
        empty: bool = False,
        tool_return: ToolReturnMessage | None = None,
    ) -> None:
        """Append a retry prompt, or fail once output retries are used up."""
        if self._output_retries_used >= self.config.output_retries:
            if empty:
                raise UnexpectedModelBehavior(
                    f"Model returned an empty response after {self._output_retries_used} "
                    "correction attempt(s)"
                )
            raise OutputValidationFailed(
                f"Output validation failed after {self._output_retries_used} "
                f"correction attempt(s): {message}"
            )
        self._output_retries_used += 1
        self.log.info("output_correction_requested", attempt=self._output_retries_used, empty=empty)
        self.history.append(
            RetryPromptMessage(
                content=message,
                tool_name=tool_return.tool_name if tool_return else None,
                tool_call_id=tool_return.tool_call_id if tool_return else None,
            )
        )
        self._correction_next = True

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _execute(
        self,
        calls: list[ToolCallPart],
        approvals: dict[str, ToolApproved] | None = None,
    ) -> ToolBatchOutcome:
        self._set_state(RunState.EXECUTING_TOOLS)
        self._pending = list(calls)
        if not calls:
            return ToolBatchOutcome()
        return await self.tool_executor.execute_batch(
            calls, self._context(), self.cancellation, approvals=approvals
        )

    def _settle_batch(
        self,
        calls: list[ToolCallPart],
        outcome: ToolBatchOutcome,
        immediate: dict[str, ToolReturnMessage] | None = None,
    ) -> list[StreamEvent]:
        """Append returns in call order and record deferred / pending calls."""
        immediate = immediate or {}
        by_id = {r.tool_call_id: r for r in outcome.returns}
        events: list[StreamEvent] = []
        unresolved = []

        for call in calls:
            tool_return = immediate.get(call.tool_call_id) or by_id.get(call.tool_call_id)
            if tool_return is None:
                unresolved.append(call)
                continue
            self.history.append(tool_return)
            events.append(ToolResult(run_id=self.run_id, tool_return=tool_return))

        for deferred in outcome.deferred:
            self._deferred.append(deferred)
            events.append(ToolApprovalRequired(run_id=self.run_id, deferred=deferred))

        deferred_ids = {d.tool_call_id for d in outcome.deferred}
        self._pending = [c for c in unresolved if c.tool_call_id not in deferred_ids]
        return events

    def _raise_if_unsettled(self, outcome: ToolBatchOutcome) -> None:
        if outcome.fatal_error is not None:
            raise ToolExecutionFailed(
                f"Tool {outcome.fatal_tool_name!r} failed: {outcome.fatal_error}"
            ) from outcome.fatal_error
        if outcome.cancelled:
            raise RunCancelled(self.cancellation.reason)
        if self._deferred:
            self.log.info("run_deferred", deferred=[d.tool_call_id for d in self._deferred])

    async def _resume_deferred(self) -> AsyncIterator[StreamEvent]:
        """
        Resolve the tool calls left open by a deferred (or cancelled) run.

        ``deferred_results`` maps tool_call_id to ToolApproved, ToolDenied or a
        literal result. Open calls without an entry are executed normally.
        """
        calls = self._open_tool_calls()
        if not calls:
            return
        self._pending = list(calls)

        immediate: dict[str, ToolReturnMessage] = {}
        approvals: dict[str, ToolApproved] = {}
        to_execute: list[ToolCallPart] = []
        for call in calls:
            result = self.deferred_results.get(call.tool_call_id)
            if isinstance(result, ToolDenied):
                immediate[call.tool_call_id] = ToolReturnMessage(
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                    content=result.message,
                    status=ToolReturnStatus.DENIED,
                )
            elif isinstance(result, ToolApproved):
                approvals[call.tool_call_id] = result
                to_execute.append(call)
            elif result is None:
                to_execute.append(call)
            else:
                immediate[call.tool_call_id] = ToolReturnMessage(
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                    content=result,
                )

        self.log.info("resuming_tool_calls", open=len(calls), executing=len(to_execute))
        self.limiter.check_tool_calls(len(to_execute))
        outcome = await self._execute(to_execute, approvals)
        for event in self._settle_batch(calls, outcome, immediate):
            yield event
        self._raise_if_unsettled(outcome)

    def _open_tool_calls(self) -> list[ToolCallPart]:
        """Tool calls of the last response that have no return yet."""
        for index in range(len(self.history) - 1, -1, -1):
            message = self.history[index]
            if isinstance(message, ModelResponse):
                answered = {
                    m.tool_call_id
                    for m in self.history[index + 1 :]
                    if isinstance(m, ToolReturnMessage)
                }
                return [c for c in message.tool_calls if c.tool_call_id not in answered]
        return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _init_history(self) -> None:
        self.history = list(self.message_history)
        self._new_message_index = len(self.history)
        if self.history:
            return

        ctx = self._context()
        for prompt in self.system_prompts:
            if callable(prompt):
                takes_ctx = len(inspect.signature(prompt).parameters) > 0
                content = prompt(ctx) if takes_ctx else prompt()
                if inspect.isawaitable(content):
                    content = await content
            else:
                content = prompt
            if content:
                self.history.append(SystemPromptMessage(content=content))

        instructions = self.output_schema.instructions()
        if instructions:
            self.history.append(SystemPromptMessage(content=instructions))

    def _context(self) -> RunContext:
        return RunContext(
            deps=self.deps,
            run_id=self.run_id,
            usage=self.limiter.usage,
            messages=list(self.history),
            step=self._step,
            cancellation=self.cancellation,
        )

    def _set_state(self, state: RunState) -> None:
        if state is not self.state:
            self.log.debug("run_state_changed", old=self.state.value, new=state.value)
            self.state = state

    def _pending_for_error(self) -> list[ToolCallPart]:
        return list(self._pending)

    def _partial_tool_calls(self) -> list[ToolCallPart]:
        return [p.model_copy(update={"args": p.args_as_dict()}) for p in self._acc.tool_calls()]

    def _build_result(self, status: RunStatus, output: Any = None) -> RunResult:
        partial_text = partial_thinking = ""
        pending = list(self._pending)
        if self._acc is not None:
            partial_text = self._acc.partial_text()
            partial_thinking = self._acc.partial_thinking()
            pending = self._partial_tool_calls()
        elif status is not RunStatus.COMPLETED and self._last_response is not None:
            partial_text = "".join(p.content for p in self._last_response.text_parts)
            partial_thinking = "".join(p.content for p in self._last_response.thinking_parts)

        return RunResult(
            run_id=self.run_id,
            status=status,
            output=output,
            history=list(self.history),
            usage=self.limiter.snapshot(),
            new_message_index=self._new_message_index,
            partial_text=partial_text,
            partial_thinking=partial_thinking,
            pending_tool_calls=pending if status is not RunStatus.COMPLETED else [],
            deferred_tool_calls=list(self._deferred),
        )


__all__ = ["AgentRun"]
