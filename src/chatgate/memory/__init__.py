"""Conversation memory for chatgate.

Provides SQLite-backed persistence of sessions and their ordered messages.

Components:

- :class:`ConversationStore` - Interface the chat orchestrator depends on
- :class:`MemoryManager` - Async session and message API (implements the store)
- :class:`MemoryStorage` - SQLite storage backend with WAL mode
"""

from chatgate.memory.manager import MemoryManager
from chatgate.memory.schema import MessageRecord, SessionRecord, ToolCallRecord
from chatgate.memory.storage import MemoryStorage
from chatgate.memory.store import ConversationStore

__all__ = [
    "ConversationStore",
    "MemoryManager",
    "MemoryStorage",
    "MessageRecord",
    "SessionRecord",
    "ToolCallRecord",
]
