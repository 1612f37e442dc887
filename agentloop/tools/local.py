import inspect
from typing import Any, Callable, get_type_hints

from pydantic import BaseModel, create_model

from agentloop.tools.base import Tool


def _takes_ctx(func: Callable) -> bool:
    """True when the first parameter is named ``ctx`` or annotated as RunContext."""
    params = list(inspect.signature(func).parameters.values())
    if not params:
        return False
    first = params[0]
    if first.name == "ctx":
        return True
    annotation = first.annotation
    if isinstance(annotation, str):
        return annotation.startswith("RunContext")
    return getattr(annotation, "__name__", None) == "RunContext" or (
        getattr(getattr(annotation, "__origin__", None), "__name__", None) == "RunContext"
    )


class FunctionTool(Tool):
    """
    Tool backed by a plain (sync or async) function.

    The argument schema is derived from the function signature. A first
    parameter named ``ctx`` (or annotated ``RunContext``) receives the
    run context and is not part of the schema.
    """

    def __init__(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        *,
        requires_approval: bool = False,
        max_retries: int = 0,
        retry_delay: float = 0.0,
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = description or inspect.getdoc(func) or ""
        self.requires_approval = requires_approval
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.takes_ctx = _takes_ctx(func)
        self.args_schema = self._create_args_schema(func)

    def _create_args_schema(self, func: Callable) -> type[BaseModel]:
        """Dynamically create a Pydantic model from function signature."""
        sig = inspect.signature(func)
        try:
            type_hints = get_type_hints(func)
        except NameError:
            type_hints = {}

        fields = {}
        for index, (param_name, param) in enumerate(sig.parameters.items()):
            if param_name in ("self", "cls"):
                continue
            if index == 0 and self.takes_ctx:
                continue
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue

            annotation = type_hints.get(param_name, Any)
            if param.default is inspect.Parameter.empty:
                fields[param_name] = (annotation, ...)
            else:
                fields[param_name] = (annotation, param.default)

        return create_model(f"{self.name}Args", **fields)

    async def execute(self, ctx, args: dict[str, Any]) -> Any:
        call_args = (ctx,) if self.takes_ctx else ()
        if inspect.iscoroutinefunction(self.func):
            return await self.func(*call_args, **args)
        return self.func(*call_args, **args)


__all__ = ["FunctionTool"]
