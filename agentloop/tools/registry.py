"""
Toolset - the tools available to one agent.

Provides:
- Registration of Tool instances and plain functions
- Lookup by name for the ToolExecutor
- Tool definitions for model requests
"""

from __future__ import annotations

from typing import Callable, Iterable

from agentloop.tools.base import Tool, ToolDefinition
from agentloop.tools.local import FunctionTool
from agentloop.utils.logging import get_logger

logger = get_logger(__name__)


class Toolset:
    """Name -> Tool mapping."""

    def __init__(self, tools: Iterable[Tool | Callable] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for item in tools or []:
            self.register(item)

    def register(self, item: Tool | Callable) -> Tool:
        """Register a tool; plain functions are wrapped in FunctionTool."""
        tool = item if isinstance(item, Tool) else FunctionTool(item)
        if tool.name in self._tools:
            logger.warning("tool_overridden", tool_name=tool.name)
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)
        return tool

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            logger.debug("tool_unregistered", tool_name=name)
            return True
        return False

    def resolve(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._tools

    def list_available(self) -> list[str]:
        return sorted(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


__all__ = ["Toolset"]
