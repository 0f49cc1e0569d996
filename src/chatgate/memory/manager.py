"""High-level async memory management for conversation sessions."""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from chatgate.llm.client import Message
from chatgate.memory.schema import MessageRecord, SessionRecord, utcnow
from chatgate.memory.storage import MemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"


class MemoryManager:
    """Async session and message management over :class:`MemoryStorage`.

    Every storage call runs in a worker thread so SQLite I/O never blocks the
    event loop. Implements the :class:`~chatgate.memory.store.ConversationStore`
    protocol.
    """

    def __init__(self, storage_path: str | Path):
        """Initialize memory manager.

        Args:
            storage_path: Path to SQLite database
        """
        self.storage = MemoryStorage(storage_path)

    async def create_session(
        self,
        user_id: str,
        title: str | None = None,
        system_prompt: str | None = None,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> SessionRecord:
        """Create a new conversation session.

        Args:
            user_id: Owning user
            title: Session title
            system_prompt: Session-level system prompt (None uses the configured default)
            metadata: Free-form metadata
            session_id: Optional custom session ID (generates UUID if not provided)

        Returns:
            Created session record
        """
        now = utcnow()
        session = SessionRecord(
            id=session_id or str(uuid.uuid4()),
            user_id=user_id,
            title=title or DEFAULT_TITLE,
            system_prompt=system_prompt,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        await asyncio.to_thread(self.storage.create_session, session)
        logger.info(f"Created session {session.id} for user {user_id}")
        return session

    async def get_session(self, session_id: str) -> SessionRecord | None:
        return await asyncio.to_thread(self.storage.get_session, session_id)

    async def list_sessions(
        self,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[SessionRecord], int]:
        """List sessions by most recent activity.

        Returns:
            Tuple of (page of sessions, total session count)
        """
        sessions = await asyncio.to_thread(self.storage.list_sessions, user_id, limit, offset)
        total = await asyncio.to_thread(self.storage.count_sessions, user_id)
        return sessions, total

    async def update_session(
        self,
        session_id: str,
        title: str | None = None,
        system_prompt: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SessionRecord | None:
        """Update the given fields of a session; unset arguments are left alone."""
        fields: dict[str, Any] = {}
        if title is not None:
            fields["title"] = title
        if system_prompt is not None:
            fields["system_prompt"] = system_prompt
        if metadata is not None:
            fields["metadata"] = metadata
        return await asyncio.to_thread(self.storage.update_session, session_id, fields)

    async def delete_session(self, session_id: str) -> bool:
        deleted = await asyncio.to_thread(self.storage.delete_session, session_id)
        if deleted:
            logger.info(f"Deleted session {session_id}")
        return deleted

    async def get_messages(
        self,
        session_id: str,
        limit: int = 100,
        before: datetime | None = None,
    ) -> list[MessageRecord]:
        """Load the most recent ``limit`` messages, oldest first.

        Args:
            session_id: Session identifier
            limit: Maximum number of messages
            before: Only messages created strictly before this time
        """
        return await asyncio.to_thread(self.storage.load_messages, session_id, limit, before)

    async def save_message(self, session_id: str, message: Message | MessageRecord) -> MessageRecord:
        """Append a message to a session.

        Args:
            session_id: Session identifier
            message: Provider message or prepared record

        Returns:
            The persisted record
        """
        if isinstance(message, MessageRecord):
            record = message.model_copy(update={"session_id": session_id})
        else:
            record = MessageRecord.from_message(session_id, message)
        return await asyncio.to_thread(self.storage.save_message, record)

    async def get_message(self, message_id: str) -> MessageRecord | None:
        return await asyncio.to_thread(self.storage.get_message, message_id)

    async def delete_message(self, message_id: str) -> bool:
        return await asyncio.to_thread(self.storage.delete_message, message_id)

    async def get_message_count(self, session_id: str) -> int:
        return await asyncio.to_thread(self.storage.get_message_count, session_id)
