"""SQLite storage backend for sessions and messages."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from chatgate.memory.schema import MessageRecord, SessionRecord, ToolCallRecord

# Seconds a writer waits for a competing write lock before failing
BUSY_TIMEOUT = 5.0


def _to_db(dt: datetime) -> str:
    """Fixed-width UTC timestamp so string comparison matches time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _from_db(value: str) -> datetime:
    return datetime.fromisoformat(value)


class MemoryStorage:
    """SQLite-based storage for sessions and messages.

    Each call opens its own connection, so one instance can be shared by
    threads. WAL mode lets readers proceed during a write; concurrent writers
    are serialized by SQLite and wait up to ``BUSY_TIMEOUT`` for the lock.
    Messages carry an autoincrement sequence that fixes their order even when
    timestamps collide.
    """

    def __init__(self, db_path: str | Path):
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    system_prompt TEXT,
                    metadata TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    session_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    name TEXT,
                    tool_call_id TEXT,
                    tool_calls TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, seq)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id, updated_at)")

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            system_prompt=row["system_prompt"],
            metadata=json.loads(row["metadata"]),
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
        )

    @staticmethod
    def _message_from_row(row: sqlite3.Row) -> MessageRecord:
        tool_calls = None
        if row["tool_calls"]:
            tool_calls = [ToolCallRecord(**tc) for tc in json.loads(row["tool_calls"])]
        return MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            name=row["name"],
            tool_call_id=row["tool_call_id"],
            tool_calls=tool_calls,
            created_at=_from_db(row["created_at"]),
        )

    def create_session(self, session: SessionRecord) -> SessionRecord:
        """Insert a new session.

        Raises:
            sqlite3.IntegrityError: If a session with the same id exists
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions
                (id, user_id, title, system_prompt, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    session.id,
                    session.user_id,
                    session.title,
                    session.system_prompt,
                    json.dumps(session.metadata),
                    _to_db(session.created_at),
                    _to_db(session.updated_at),
                ),
            )
        return session

    def get_session(self, session_id: str) -> SessionRecord | None:
        """Get a session by ID.

        Args:
            session_id: Session identifier

        Returns:
            Session record or None if not found
        """
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._session_from_row(row) if row else None

    def update_session(self, session_id: str, fields: dict[str, Any]) -> SessionRecord | None:
        """Update title, system prompt or metadata and bump ``updated_at``.

        Args:
            session_id: Session identifier
            fields: Column values to set (keys: title, system_prompt, metadata)

        Returns:
            Updated session record or None if not found
        """
        allowed = {"title", "system_prompt", "metadata"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")

        assignments = ["updated_at = ?"]
        params: list[Any] = [_to_db(datetime.now(timezone.utc))]
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            params.append(json.dumps(value) if column == "metadata" else value)
        params.append(session_id)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE sessions SET {', '.join(assignments)} WHERE id = ?", params
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._session_from_row(row)

    def list_sessions(
        self, user_id: str | None = None, limit: int = 20, offset: int = 0
    ) -> list[SessionRecord]:
        """List sessions ordered by most recent activity.

        Args:
            user_id: Only return sessions owned by this user
            limit: Maximum number of sessions to return
            offset: Number of sessions to skip
        """
        query = "SELECT * FROM sessions"
        params: list[Any] = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY updated_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._session_from_row(row) for row in rows]

    def count_sessions(self, user_id: str | None = None) -> int:
        with self._connect() as conn:
            if user_id is None:
                row = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM sessions WHERE user_id = ?", (user_id,)
                ).fetchone()
        return int(row[0])

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and all its messages.

        Returns:
            True if session was deleted, False if not found
        """
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cursor.rowcount > 0

    def save_message(self, message: MessageRecord) -> MessageRecord:
        """Append a message and bump the session's ``updated_at``.

        Both writes happen in one transaction.

        Raises:
            sqlite3.IntegrityError: If the session does not exist
        """
        tool_calls_json = None
        if message.tool_calls:
            tool_calls_json = json.dumps([tc.model_dump() for tc in message.tool_calls])

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages
                (id, session_id, role, content, name, tool_call_id, tool_calls, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    message.id,
                    message.session_id,
                    message.role,
                    message.content,
                    message.name,
                    message.tool_call_id,
                    tool_calls_json,
                    _to_db(message.created_at),
                ),
            )
            conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (_to_db(datetime.now(timezone.utc)), message.session_id),
            )
        return message

    def load_messages(
        self,
        session_id: str,
        limit: int | None = None,
        before: datetime | None = None,
    ) -> list[MessageRecord]:
        """Load the most recent messages of a session.

        Args:
            session_id: Session identifier
            limit: Maximum number of messages to return (None for all)
            before: Only messages created strictly before this time

        Returns:
            Messages in chronological order
        """
        query = "SELECT * FROM messages WHERE session_id = ?"
        params: list[Any] = [session_id]
        if before is not None:
            query += " AND created_at < ?"
            params.append(_to_db(before))
        query += " ORDER BY seq DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._message_from_row(row) for row in reversed(rows)]

    def get_message(self, message_id: str) -> MessageRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return self._message_from_row(row) if row else None

    def delete_message(self, message_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            return cursor.rowcount > 0

    def get_message_count(self, session_id: str) -> int:
        """Get the total number of messages in a session."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE session_id = ?", (session_id,)
            ).fetchone()
        return int(row[0])
