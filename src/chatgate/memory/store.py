"""Conversation store interface consumed by the chat orchestrator."""

from datetime import datetime
from typing import Protocol

from chatgate.llm.client import Message
from chatgate.memory.schema import MessageRecord, SessionRecord


class ConversationStore(Protocol):
    """Persistence for sessions and their ordered messages.

    Implementations must be safe for concurrent callers appending to the
    same session.
    """

    async def get_session(self, session_id: str) -> SessionRecord | None: ...

    async def get_messages(
        self,
        session_id: str,
        limit: int = 100,
        before: datetime | None = None,
    ) -> list[MessageRecord]:
        """Most recent ``limit`` messages created before ``before``, oldest first."""
        ...

    async def save_message(self, session_id: str, message: Message) -> MessageRecord:
        """Append a message and bump the session's ``updated_at``."""
        ...
