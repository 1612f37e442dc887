"""
Unified tool executor.

Turns the tool calls of one model response into ToolReturnMessages. Tool
failures become data for the model (error returns); only FatalToolError
ends the run, and it is reported on the batch outcome rather than raised so
that calls already running can finish first.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from agentloop.domain.messages import ToolCallPart, ToolReturnMessage, ToolReturnStatus
from agentloop.domain.models import DeferredToolCall, ToolApproved
from agentloop.exceptions import (
    ApprovalRequired,
    FatalToolError,
    ModelRetry,
    RunCancelled,
    ToolError,
)
from agentloop.runtime.canonical import PARSE_FAILED
from agentloop.runtime.output import format_validation_error
from agentloop.tools.base import Tool
from agentloop.tools.registry import Toolset
from agentloop.utils.logging import get_logger
from agentloop.utils.retry import retry_async

if TYPE_CHECKING:
    from agentloop.agent.context import RunContext
    from agentloop.runtime.control import CancellationToken
    from agentloop.runtime.usage import UsageLimiter

logger = get_logger(__name__)

# Marker for calls skipped because the run was cancelled before they started
_NOT_STARTED = object()


@dataclass
class ToolBatchOutcome:
    """
    Result of executing the tool calls of one response.

    Attributes:
        returns: Returns of the calls that ran (or failed validation), in call order
        deferred: Calls waiting for approval
        pending: Calls never started because the run was cancelled
        fatal_error: First FatalToolError raised by a tool, if any
    """

    returns: list[ToolReturnMessage] = field(default_factory=list)
    deferred: list[DeferredToolCall] = field(default_factory=list)
    pending: list[ToolCallPart] = field(default_factory=list)
    fatal_error: FatalToolError | None = None
    fatal_tool_name: str | None = None

    @property
    def cancelled(self) -> bool:
        return bool(self.pending)


class ToolExecutor:
    """Unified tool executor that returns ToolReturnMessage directly."""

    def __init__(
        self,
        toolset: Toolset,
        *,
        parallel: bool = True,
        max_parallel: int = 10,
        timeout: float | None = None,
        usage_limiter: "UsageLimiter | None" = None,
    ):
        """
        Initialize tool executor.

        Args:
            toolset: Tools available to the model
            parallel: Run the calls of one response concurrently
            max_parallel: Concurrency ceiling when parallel
            timeout: Per-call timeout in seconds
            usage_limiter: Counts executed calls when given
        """
        self.toolset = toolset
        self.parallel = parallel
        self.max_parallel = max_parallel
        self.timeout = timeout
        self.usage_limiter = usage_limiter

    async def execute(
        self,
        call: ToolCallPart,
        ctx: "RunContext",
        *,
        approval: ToolApproved | None = None,
    ) -> ToolReturnMessage | DeferredToolCall:
        """
        Execute a single tool call.

        Args:
            call: Canonical tool call
            ctx: Run context
            approval: Caller approval for an approval-gated call

        Returns:
            ToolReturnMessage, or DeferredToolCall when approval is needed

        Raises:
            FatalToolError: The tool signalled an unrecoverable condition
        """
        start_time = time.time()
        tool = self.toolset.resolve(call.tool_name)
        if tool is None:
            available = ", ".join(self.toolset.list_available()) or "none"
            logger.warning("tool_not_found", tool_name=call.tool_name, tool_call_id=call.tool_call_id)
            return self._create_error_result(
                call,
                f"Unknown tool name: {call.tool_name!r}. Available tools: {available}",
                start_time,
                status=ToolReturnStatus.NOT_FOUND,
            )

        args = call.args_as_dict()
        if approval is not None and approval.override_args is not None:
            args = approval.override_args
        if args.get("_error") == PARSE_FAILED:
            return self._create_error_result(
                call,
                f"Could not parse the arguments for {call.tool_name!r} as a JSON object: "
                f"{args.get('_raw')!r}. Fix the errors and try again.",
                start_time,
            )

        try:
            validated = tool.validate_args(args)
        except ValidationError as e:
            return self._create_error_result(
                call,
                f"Invalid arguments for tool {call.tool_name!r}:\n"
                f"{format_validation_error(e)}\n\nFix the errors and try again.",
                start_time,
            )

        if tool.requires_approval and approval is None:
            logger.info("tool_approval_required", tool_name=call.tool_name, tool_call_id=call.tool_call_id)
            return DeferredToolCall(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                args=args,
                reason="requires_approval",
            )

        if self.usage_limiter is not None:
            await self.usage_limiter.record_tool_call()

        try:
            logger.debug("executing_tool", tool_name=call.tool_name, tool_call_id=call.tool_call_id)
            content = await self._invoke(tool, call, ctx, validated)
        except ApprovalRequired as e:
            if approval is None:
                logger.info("tool_approval_required", tool_name=call.tool_name, reason=e.message)
                return DeferredToolCall(
                    tool_call_id=call.tool_call_id,
                    tool_name=call.tool_name,
                    args=args,
                    reason=e.message,
                )
            return self._create_error_result(call, e.message, start_time)
        except ModelRetry as e:
            logger.info("tool_requested_retry", tool_name=call.tool_name, message=e.message)
            return self._create_error_result(call, e.message, start_time)
        except ToolError as e:
            logger.warning("tool_execution_error", tool_name=call.tool_name, error=e.message)
            return self._create_error_result(call, f"Tool execution failed: {e.message}", start_time)
        except asyncio.TimeoutError:
            logger.warning("tool_execution_timeout", tool_name=call.tool_name, timeout=self.timeout)
            return self._create_error_result(
                call, f"Tool {call.tool_name!r} timed out after {self.timeout}s", start_time
            )
        except FatalToolError:
            logger.error("tool_execution_fatal", tool_name=call.tool_name, exc_info=True)
            raise
        except RunCancelled:
            logger.info("tool_execution_cancelled", tool_name=call.tool_name)
            return self._create_error_result(call, "Tool execution was cancelled", start_time)
        except Exception as e:
            logger.error(
                "tool_execution_exception",
                tool_name=call.tool_name,
                error=str(e),
                exc_info=True,
            )
            return self._create_error_result(call, f"Tool execution failed: {e}", start_time)

        logger.debug(
            "tool_execution_completed",
            tool_name=call.tool_name,
            duration=round(time.time() - start_time, 4),
        )
        return ToolReturnMessage(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            content=content,
        )

    async def _invoke(self, tool: Tool, call: ToolCallPart, ctx: "RunContext", args: dict) -> Any:
        """Run the tool, re-running retryable ToolErrors up to ``tool.max_retries``."""
        attempt = 0

        @retry_async(
            max_attempts=tool.max_retries + 1,
            multiplier=tool.retry_delay,
            predicate=lambda e: isinstance(e, ToolError) and e.retryable,
        )
        async def run_once() -> Any:
            nonlocal attempt
            tool_ctx = ctx.for_tool(call, retry=attempt)
            attempt += 1
            if self.timeout is not None:
                return await asyncio.wait_for(tool.execute(tool_ctx, args), timeout=self.timeout)
            return await tool.execute(tool_ctx, args)

        return await run_once()

    async def execute_batch(
        self,
        calls: list[ToolCallPart],
        ctx: "RunContext",
        cancellation: "CancellationToken | None" = None,
        *,
        approvals: dict[str, ToolApproved] | None = None,
    ) -> ToolBatchOutcome:
        """
        Execute the tool calls of one response.

        Calls run concurrently (bounded by ``max_parallel``) or one by one.
        Returns are reported in call order regardless of completion order.
        Cancellation is checked before each call starts; calls already
        running are allowed to finish.

        Args:
            calls: Canonical tool calls
            ctx: Run context
            cancellation: Run cancellation token
            approvals: Approvals keyed by tool_call_id

        Returns:
            ToolBatchOutcome
        """
        approvals = approvals or {}
        semaphore = asyncio.Semaphore(self.max_parallel if self.parallel else 1)

        async def run(call: ToolCallPart):
            async with semaphore:
                if cancellation is not None and cancellation.is_cancelled():
                    return _NOT_STARTED
                return await self.execute(call, ctx, approval=approvals.get(call.tool_call_id))

        results = await asyncio.gather(*(run(c) for c in calls), return_exceptions=True)

        outcome = ToolBatchOutcome()
        for call, result in zip(calls, results):
            if result is _NOT_STARTED:
                outcome.pending.append(call)
            elif isinstance(result, DeferredToolCall):
                outcome.deferred.append(result)
            elif isinstance(result, ToolReturnMessage):
                outcome.returns.append(result)
            elif isinstance(result, FatalToolError):
                if outcome.fatal_error is None:
                    outcome.fatal_error = result
                    outcome.fatal_tool_name = call.tool_name
            elif isinstance(result, BaseException):
                raise result

        if outcome.pending:
            logger.info("tool_batch_cancelled", pending=len(outcome.pending), executed=len(outcome.returns))
        return outcome

    def _create_error_result(
        self,
        call: ToolCallPart,
        error: str,
        start_time: float,
        status: ToolReturnStatus = ToolReturnStatus.ERROR,
    ) -> ToolReturnMessage:
        """Create error result."""
        logger.debug(
            "tool_error_result",
            tool_name=call.tool_name,
            status=status.value,
            duration=round(time.time() - start_time, 4),
        )
        return ToolReturnMessage(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            content=error,
            status=status,
        )


__all__ = ["ToolExecutor", "ToolBatchOutcome"]
