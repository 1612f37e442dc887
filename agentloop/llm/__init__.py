"""
LLM module - Model capability interface.
"""

from .base import Model, ModelSettings, StreamChunk, ToolCallChunk
from .function import AgentInfo, FunctionModel

__all__ = [
    "Model",
    "ModelSettings",
    "StreamChunk",
    "ToolCallChunk",
    "AgentInfo",
    "FunctionModel",
]
