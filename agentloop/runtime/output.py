"""
Final-output handling.

Text output is the joined text of the final response. Any other output type
is parsed from the response text as JSON (tolerating prose around it and
markdown fences) and validated with a pydantic TypeAdapter. Failures raise
OutputValidationError, which the run controller turns into a correction
prompt for the model.
"""

import inspect
import json
import re
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from agentloop.exceptions import ModelRetry, OutputValidationError
from agentloop.utils.logging import get_logger

if TYPE_CHECKING:
    from agentloop.agent.context import RunContext

logger = get_logger(__name__)

OutputT = TypeVar("OutputT")

_FENCE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as one ``- location: message`` line each."""
    lines = []
    for item in error.errors(include_url=False):
        loc = ".".join(str(part) for part in item.get("loc", ())) or "(root)"
        lines.append(f"- {loc}: {item.get('msg')}")
    return "\n".join(lines)


def extract_json_from_text(text: str) -> str:
    """
    Pull the JSON document out of a model reply.

    Tries, in order: a fenced code block, the whole text, then the span from
    the first ``{`` or ``[`` to the matching last ``}`` or ``]``.
    """
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()

    stripped = text.strip()
    if stripped[:1] in ("{", "[", '"') or stripped in ("true", "false", "null"):
        return stripped

    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = stripped.find(open_char)
        end = stripped.rfind(close_char)
        if start != -1 and end > start:
            return stripped[start : end + 1]
    return stripped


class OutputValidator:
    """A user function checking (and possibly transforming) the final output."""

    def __init__(self, func: Callable):
        self.func = func
        params = list(inspect.signature(func).parameters)
        self.takes_ctx = len(params) > 1

    async def __call__(self, ctx: "RunContext", value: Any) -> Any:
        args = (ctx, value) if self.takes_ctx else (value,)
        result = self.func(*args)
        if inspect.isawaitable(result):
            result = await result
        return result


class OutputSchema(Generic[OutputT]):
    """
    Parses and validates the final output of a run.

    Args:
        output_type: ``str`` for free text, otherwise any type pydantic can validate
        validators: Output validators run after parsing, in order
    """

    def __init__(
        self,
        output_type: type[OutputT] = str,
        validators: list[OutputValidator] | None = None,
    ):
        self.output_type = output_type
        self.validators = validators if validators is not None else []
        self._adapter = None if output_type is str else TypeAdapter(output_type)

    @property
    def is_text(self) -> bool:
        return self._adapter is None

    def instructions(self) -> str | None:
        """System prompt text describing the expected JSON, for structured output."""
        if self._adapter is None:
            return None
        schema = json.dumps(self._adapter.json_schema())
        return (
            "Respond with a single JSON document matching this JSON schema, "
            f"and nothing else:\n{schema}"
        )

    async def process_text(self, text: str, ctx: "RunContext") -> OutputT:
        """Turn final response text into the output value."""
        if self._adapter is None:
            value: Any = text
        else:
            try:
                value = self._adapter.validate_json(extract_json_from_text(text))
            except ValidationError as e:
                logger.info("output_validation_failed", errors=e.error_count())
                raise OutputValidationError(
                    f"Output validation failed:\n{format_validation_error(e)}"
                ) from e
        return await self._run_validators(value, ctx)

    async def process_value(self, value: Any, ctx: "RunContext") -> OutputT:
        """Turn a tool return into the output value (end strategy first_tool)."""
        if self._adapter is not None:
            try:
                value = self._adapter.validate_python(value)
            except ValidationError as e:
                raise OutputValidationError(
                    f"Output validation failed:\n{format_validation_error(e)}"
                ) from e
        return await self._run_validators(value, ctx)

    async def _run_validators(self, value: Any, ctx: "RunContext") -> OutputT:
        for validator in self.validators:
            try:
                result = await validator(ctx, value)
            except ModelRetry as e:
                raise OutputValidationError(e.message) from e
            if result is not None:
                value = result
        return value


__all__ = [
    "OutputSchema",
    "OutputValidator",
    "extract_json_from_text",
    "format_validation_error",
]
