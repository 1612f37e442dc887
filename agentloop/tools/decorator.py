"""
Tool decorator
"""

from typing import Callable

from .local import FunctionTool


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    requires_approval: bool = False,
    max_retries: int = 0,
    retry_delay: float = 0.0,
):
    """
    Decorator to convert a function into a FunctionTool.

    Usable bare (``@tool``) or with options (``@tool(requires_approval=True)``).

    Returns:
        FunctionTool instance, or a decorator producing one
    """

    def wrap(f: Callable) -> FunctionTool:
        return FunctionTool(
            f,
            name=name,
            description=description,
            requires_approval=requires_approval,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )

    if func is not None:
        return wrap(func)
    return wrap


__all__ = ["tool"]
