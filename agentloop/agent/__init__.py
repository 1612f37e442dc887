"""
Agent module - Agent facade and run controller.
"""

from .agent import Agent, RunHandle
from .context import RunContext
from .executor import AgentRun
from .stream import AgentStream, discard_retried_text

__all__ = [
    "Agent",
    "AgentRun",
    "AgentStream",
    "RunContext",
    "RunHandle",
    "discard_retried_text",
]
