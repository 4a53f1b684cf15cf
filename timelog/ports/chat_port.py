"""Chat port — abstract interface for a tool-calling language model session.

The diary depends on this protocol, never on a specific LLM provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol


class ChatError(Exception):
    """Raised when any LLM provider call fails."""


@dataclass
class ToolCall:
    """One function invocation proposed by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""          # provider-assigned; empty for Gemini


@dataclass
class ToolResult:
    """Outcome of a ToolCall, fed back to the model."""

    call: ToolCall
    success: bool
    message: str

    def as_payload(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass
class ModelReply:
    """A model response: free text, tool calls, or both."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ChatSession(Protocol):
    """A conversation with one model, keeping its own history."""

    async def send_message(self, text: str) -> ModelReply: ...

    async def send_tool_results(self, results: list[ToolResult]) -> ModelReply: ...


# (system_prompt, tool declarations) → session
ChatFactory = Callable[[str, list[dict]], ChatSession]
