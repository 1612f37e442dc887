"""
PartsAccumulator - build a ModelResponse from stream chunks.

Providers stream text, thinking and tool-call arguments incrementally. Parts
keep the order in which they first appear; a text or thinking delta extends
the last part when it has the same kind, otherwise it opens a new part. Tool
call deltas are matched to their part by the provider's tool-call index.
"""

from typing import TYPE_CHECKING
from uuid import uuid4

from agentloop.domain.messages import ModelResponse, TextPart, ThinkingPart, ToolCallPart
from agentloop.domain.usage import RequestUsage

if TYPE_CHECKING:
    from agentloop.llm.base import StreamChunk, ToolCallChunk


class PartsAccumulator:
    """Accumulate streaming deltas into ordered response parts."""

    def __init__(self):
        self._parts: list[dict] = []
        self._tool_parts: dict[int, int] = {}  # provider index -> part index
        self.usage: RequestUsage | None = None
        self.finish_reason: str | None = None
        self.model_name: str | None = None

    def _append_content(self, kind: str, content: str) -> int:
        if self._parts and self._parts[-1]["kind"] == kind:
            self._parts[-1]["content"] += content
        else:
            self._parts.append({"kind": kind, "content": content})
        return len(self._parts) - 1

    def add_text(self, content: str) -> int:
        """Append a text delta, returning its part index."""
        return self._append_content("text", content)

    def add_thinking(self, content: str) -> int:
        """Append a thinking delta, returning its part index."""
        return self._append_content("thinking", content)

    def add_tool_call(self, delta: "ToolCallChunk") -> int:
        """Merge a tool-call delta, returning its part index."""
        part_index = self._tool_parts.get(delta.index)
        if part_index is None:
            self._parts.append({"kind": "tool-call", "id": None, "name": "", "args": ""})
            part_index = len(self._parts) - 1
            self._tool_parts[delta.index] = part_index

        acc = self._parts[part_index]
        if delta.tool_call_id:
            acc["id"] = delta.tool_call_id
        if delta.tool_name:
            acc["name"] += delta.tool_name
        if delta.args_delta:
            acc["args"] += delta.args_delta
        return part_index

    def add_metadata(self, chunk: "StreamChunk") -> None:
        """Record usage / finish reason / model name carried by a chunk."""
        if chunk.usage is not None:
            self.usage = chunk.usage
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason
        if chunk.model_name:
            self.model_name = chunk.model_name

    def _tool_call(self, acc: dict) -> ToolCallPart:
        if not acc["id"]:
            acc["id"] = f"call_{uuid4().hex[:24]}"
        return ToolCallPart(tool_call_id=acc["id"], tool_name=acc["name"], args=acc["args"])

    def partial_text(self) -> str:
        return "".join(p["content"] for p in self._parts if p["kind"] == "text")

    def partial_thinking(self) -> str:
        return "".join(p["content"] for p in self._parts if p["kind"] == "thinking")

    def tool_calls(self) -> list[ToolCallPart]:
        """Tool calls received so far (raw arguments)."""
        return [self._tool_call(p) for p in self._parts if p["kind"] == "tool-call"]

    def tool_call(self, part_index: int) -> ToolCallPart:
        return self._tool_call(self._parts[part_index])

    def build(self) -> ModelResponse:
        """Build the raw response. Run it through ``canonicalize`` before appending."""
        parts = []
        for acc in self._parts:
            if acc["kind"] == "text":
                parts.append(TextPart(content=acc["content"]))
            elif acc["kind"] == "thinking":
                parts.append(ThinkingPart(content=acc["content"]))
            else:
                parts.append(self._tool_call(acc))
        return ModelResponse(
            parts=parts,
            usage=self.usage or RequestUsage(),
            model_name=self.model_name,
            finish_reason=self.finish_reason,
        )


__all__ = ["PartsAccumulator"]
