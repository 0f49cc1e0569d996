"""LLM client protocol and data types."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

# Finish reason that hands control to the tool executor
FINISH_TOOL_CALLS = "tool_calls"

TOOL_CHOICE_MODES = ("auto", "none", "required")


@dataclass
class ToolCall:
    """A tool call requested by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str | None = None  # Argument string exactly as the model produced it


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None  # For tool response messages
    name: str | None = None  # Tool name for tool response messages


@dataclass
class CompletionResponse:
    """Response from LLM completion."""

    content: str
    tool_calls: list[ToolCall] | None = None
    finish_reason: str = "stop"


@dataclass
class ToolCallDelta:
    """One streamed piece of a tool call.

    ``arguments`` is an opaque fragment of the JSON argument string; it only
    becomes parseable once every fragment for ``index`` has been concatenated.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"index": self.index, "function": {"arguments": self.arguments}}
        if self.id:
            data["id"] = self.id
        if self.name:
            data["function"]["name"] = self.name
        return data


@dataclass
class StreamChunk:
    """Normalized unit of a streamed completion."""

    index: int = 0
    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None
    finish_reason: str | None = None
    turn: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the caller-facing wire object."""
        delta: dict[str, Any] = {}
        if self.role is not None:
            delta["role"] = self.role
        if self.content is not None:
            delta["content"] = self.content
        if self.tool_calls:
            delta["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]

        return {
            "index": self.index,
            "turn": self.turn,
            "delta": delta,
            "finish_reason": self.finish_reason,
        }


@dataclass
class CompletionOptions:
    """Per-call completion parameters.

    Unset fields fall back to the client's configured defaults.
    """

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | None = None  # "auto", "none", "required" or a tool name

    def __post_init__(self) -> None:
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be between 0 and 2, got {self.temperature}")
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")


class CompletionStream(Protocol):
    """A lazy, single-use stream of normalized chunks."""

    def __aiter__(self) -> AsyncIterator[StreamChunk]: ...

    async def aclose(self) -> None: ...


class LLMClient(Protocol):
    """Protocol for LLM client implementations."""

    async def complete(
        self,
        messages: list[Message],
        options: CompletionOptions | None = None,
    ) -> CompletionResponse:
        """Generate a completion from the LLM.

        Args:
            messages: Conversation history
            options: Model, sampling and tool parameters

        Returns:
            CompletionResponse with content and optional tool calls
        """
        ...

    async def stream_complete(
        self,
        messages: list[Message],
        options: CompletionOptions | None = None,
    ) -> CompletionStream:
        """Open a streamed completion.

        The request is sent when awaited; chunks are read by iterating the
        returned stream.

        Args:
            messages: Conversation history ending in the latest user turn
            options: Model, sampling and tool parameters

        Returns:
            Stream of StreamChunk objects
        """
        ...
