"""
Tools module - Tool definition, registration and execution.

This module contains:
- Tool / FunctionTool: Tool abstractions
- tool: Decorator turning a function into a FunctionTool
- Toolset: Name -> Tool registry for one agent
- ToolExecutor: Batch execution with ordering, concurrency and approval
"""

from .base import Tool, ToolDefinition
from .decorator import tool
from .executor import ToolBatchOutcome, ToolExecutor
from .local import FunctionTool
from .registry import Toolset

__all__ = [
    "Tool",
    "ToolDefinition",
    "FunctionTool",
    "tool",
    "Toolset",
    "ToolExecutor",
    "ToolBatchOutcome",
]
