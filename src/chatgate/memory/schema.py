"""Pydantic models for sessions and messages."""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from chatgate.llm.client import Message, ToolCall

Role = Literal["system", "user", "assistant", "tool"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecord(BaseModel):
    """A conversation session record."""

    id: str
    user_id: str
    title: str
    system_prompt: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ToolCallRecord(BaseModel):
    """A tool call as persisted on an assistant message.

    ``arguments`` is the raw argument string the model produced, kept verbatim
    so continuation requests replay exactly what the model sent.
    """

    id: str
    name: str
    arguments: str = ""


class MessageRecord(BaseModel):
    """A message record in a session."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    role: Role
    content: str = ""
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCallRecord] | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_message(cls, session_id: str, message: Message) -> "MessageRecord":
        """Build a record from a provider message."""
        tool_calls = None
        if message.tool_calls:
            tool_calls = [
                ToolCallRecord(
                    id=tc.id,
                    name=tc.name,
                    arguments=tc.raw_arguments if tc.raw_arguments is not None else "",
                )
                for tc in message.tool_calls
            ]
        return cls(
            session_id=session_id,
            role=message.role,
            content=message.content or "",
            name=message.name,
            tool_call_id=message.tool_call_id,
            tool_calls=tool_calls,
        )

    def to_message(self) -> Message:
        """Convert to the provider message format."""
        tool_calls = None
        if self.tool_calls:
            tool_calls = [
                ToolCall(id=tc.id, name=tc.name, arguments={}, raw_arguments=tc.arguments)
                for tc in self.tool_calls
            ]
        return Message(
            role=self.role,
            content=self.content,
            tool_calls=tool_calls,
            tool_call_id=self.tool_call_id,
            name=self.name,
        )
