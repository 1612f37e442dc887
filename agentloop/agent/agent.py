"""
Agent - Top-level agent class.

This is the main entry point for creating and running agents. An Agent holds
configuration (model, tools, prompts, output type, execution config); every
call creates a fresh AgentRun, so one Agent can serve concurrent runs.
"""

import asyncio
from typing import Any, Callable, Generic, Sequence, TypeVar

import structlog

from agentloop.agent.executor import AgentRun
from agentloop.agent.stream import AgentStream
from agentloop.config import ExecutionConfig, UsageLimits
from agentloop.domain import Message, RunResult
from agentloop.llm.base import Model, ModelSettings
from agentloop.runtime.control import CancellationToken
from agentloop.runtime.output import OutputSchema, OutputValidator
from agentloop.tools.base import Tool
from agentloop.tools.local import FunctionTool
from agentloop.tools.registry import Toolset

DepsT = TypeVar("DepsT")
OutputT = TypeVar("OutputT")


class RunHandle:
    """
    A run started in the background with ``Agent.start``.

    Awaiting the handle returns the RunResult (or raises the RunError).
    """

    def __init__(self, task: "asyncio.Task[RunResult]", cancellation: CancellationToken, run_id: str):
        self._task = task
        self._cancellation = cancellation
        self.run_id = run_id

    def cancel(self, reason: str = "Run cancelled") -> None:
        """Request cancellation; the run stops at its next suspension point."""
        self._cancellation.cancel(reason)

    def is_cancelled(self) -> bool:
        return self._cancellation.is_cancelled()

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> RunResult:
        return await self._task

    def __await__(self):
        return self._task.__await__()


class Agent(Generic[DepsT, OutputT]):
    """
    Agent Configuration Container.

    Holds the configuration for Model, Tools, prompts and output type.
    Delegates execution to AgentRun.
    """

    def __init__(
        self,
        model: Model,
        *,
        name: str = "agent",
        output_type: type[OutputT] = str,
        system_prompt: str | Sequence[str] = (),
        tools: list[Tool | Callable] | None = None,
        config: ExecutionConfig | None = None,
        history_processors: list | None = None,
        model_settings: ModelSettings | None = None,
    ):
        self._id = name
        self.model = model
        self.output_type = output_type
        self.toolset = Toolset(tools)
        self.config = config or ExecutionConfig()
        self.history_processors = list(history_processors or [])
        self.model_settings = model_settings

        if isinstance(system_prompt, str):
            system_prompt = [system_prompt] if system_prompt else []
        self._system_prompts: list[str | Callable] = list(system_prompt)
        self._output_validators: list[OutputValidator] = []

    @property
    def id(self) -> str:
        """Unique identifier for the agent."""
        return self._id

    @property
    def name(self) -> str:
        return self._id

    # ------------------------------------------------------------------
    # Registration decorators
    # ------------------------------------------------------------------

    def tool(
        self,
        func: Callable | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
        requires_approval: bool = False,
        max_retries: int = 0,
        retry_delay: float = 0.0,
    ):
        """
        Register a function as a tool.

        Usable bare (``@agent.tool``) or with options. A first parameter named
        ``ctx`` receives the RunContext. Returns the function unchanged.
        """

        def register(f: Callable) -> Callable:
            self.toolset.register(
                FunctionTool(
                    f,
                    name=name,
                    description=description,
                    requires_approval=requires_approval,
                    max_retries=max_retries,
                    retry_delay=retry_delay,
                )
            )
            return f

        if func is not None:
            return register(func)
        return register

    def system_prompt(self, func: Callable) -> Callable:
        """Register a dynamic system prompt: ``func(ctx) -> str`` (sync or async)."""
        self._system_prompts.append(func)
        return func

    def output_validator(self, func: Callable) -> Callable:
        """
        Register an output validator: ``func(output)`` or ``func(ctx, output)``.

        Raise ModelRetry or OutputValidationError to send a correction to the
        model; return a value to replace the output.
        """
        self._output_validators.append(OutputValidator(func))
        return func

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def _make_run(
        self,
        user_prompt: str | None,
        *,
        deps: Any = None,
        message_history: list[Message] | None = None,
        config: ExecutionConfig | None = None,
        usage_limits: UsageLimits | None = None,
        deferred_results: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AgentRun[OutputT]:
        config = config or self.config
        if usage_limits is not None:
            config = config.model_copy(update={"usage_limits": usage_limits})
        if user_prompt is None and not message_history:
            raise ValueError("A user prompt or a message history is required")

        return AgentRun(
            model=self.model,
            toolset=self.toolset,
            output_schema=OutputSchema(self.output_type, self._output_validators),
            config=config,
            deps=deps,
            user_prompt=user_prompt,
            message_history=message_history,
            system_prompts=self._system_prompts,
            history_processors=self.history_processors,
            model_settings=self.model_settings,
            deferred_results=deferred_results,
            cancellation=cancellation,
        )

    async def run(
        self,
        user_prompt: str | None = None,
        *,
        deps: DepsT = None,
        message_history: list[Message] | None = None,
        config: ExecutionConfig | None = None,
        usage_limits: UsageLimits | None = None,
        deferred_results: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> RunResult:
        """
        Run to completion.

        Args:
            user_prompt: New user message (optional when resuming)
            deps: Dependency value passed to tools and dynamic prompts
            message_history: History of a previous run to continue
            config: Overrides the agent's ExecutionConfig for this run
            usage_limits: Overrides ``config.usage_limits`` for this run
            deferred_results: Approvals / results for deferred tool calls,
                keyed by tool_call_id
            cancellation: Token to cancel the run from elsewhere

        Returns:
            RunResult with status completed, cancelled or deferred

        Raises:
            RunError: The run failed
        """
        agent_run = self._make_run(
            user_prompt,
            deps=deps,
            message_history=message_history,
            config=config,
            usage_limits=usage_limits,
            deferred_results=deferred_results,
            cancellation=cancellation,
        )
        with structlog.contextvars.bound_contextvars(run_id=agent_run.run_id, agent=self.name):
            return await agent_run.run()

    def run_sync(self, user_prompt: str | None = None, **kwargs: Any) -> RunResult:
        """Blocking version of ``run`` (must not be called from a running event loop)."""
        return asyncio.run(self.run(user_prompt, **kwargs))

    def start(self, user_prompt: str | None = None, **kwargs: Any) -> RunHandle:
        """
        Start a run as a background task.

        Must be called from a running event loop.
        """
        cancellation = kwargs.pop("cancellation", None) or CancellationToken()
        agent_run = self._make_run(user_prompt, cancellation=cancellation, **kwargs)

        async def _run() -> RunResult:
            with structlog.contextvars.bound_contextvars(run_id=agent_run.run_id, agent=self.name):
                return await agent_run.run()

        task = asyncio.create_task(_run())
        return RunHandle(task, cancellation, agent_run.run_id)

    def run_stream(
        self,
        user_prompt: str | None = None,
        *,
        deps: DepsT = None,
        message_history: list[Message] | None = None,
        config: ExecutionConfig | None = None,
        usage_limits: UsageLimits | None = None,
        deferred_results: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AgentStream:
        """
        Run with streaming. Nothing happens until the stream is iterated.

        Returns:
            AgentStream yielding StreamEvents
        """
        agent_run = self._make_run(
            user_prompt,
            deps=deps,
            message_history=message_history,
            config=config,
            usage_limits=usage_limits,
            deferred_results=deferred_results,
            cancellation=cancellation,
        )
        return AgentStream(agent_run)


__all__ = ["Agent", "RunHandle"]
