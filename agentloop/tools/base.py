from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from agentloop.agent.context import RunContext


class ToolDefinition(BaseModel):
    """What the model is told about a tool."""

    name: str
    description: str = ""
    parameters_json_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class Tool(ABC):
    """
    Base class for tools the model can call.

    Attributes:
        name: Name the model uses to call the tool
        description: Shown to the model
        args_schema: Pydantic model validating the arguments (None accepts any dict)
        requires_approval: Calls are deferred until the caller approves them
        max_retries: Local re-runs after a retryable ToolError
        retry_delay: Base backoff between local re-runs (seconds)
    """

    name: str
    description: str = ""
    args_schema: type[BaseModel] | None = None
    requires_approval: bool = False
    max_retries: int = 0
    retry_delay: float = 0.0

    @abstractmethod
    async def execute(self, ctx: "RunContext", args: dict[str, Any]) -> Any:
        """Run the tool with validated arguments."""
        pass

    def validate_args(self, args: dict[str, Any]) -> dict[str, Any]:
        """
        Validate raw arguments against ``args_schema``.

        Raises:
            pydantic.ValidationError: Arguments do not match the schema
        """
        if self.args_schema is None:
            return dict(args)
        validated = self.args_schema.model_validate(args)
        return {name: getattr(validated, name) for name in self.args_schema.model_fields}

    def definition(self) -> ToolDefinition:
        if self.args_schema is None:
            return ToolDefinition(name=self.name, description=self.description)

        schema = self.args_schema.model_json_schema()
        schema.pop("title", None)
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters_json_schema=schema,
        )


__all__ = ["Tool", "ToolDefinition"]
