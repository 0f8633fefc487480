"""SQLite-based store for conversations, messages, invocations and memory."""

import asyncio
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from utils.errors import PersistenceError
from .models import (
    ActionInvocation,
    Conversation,
    ConversationMessage,
    ConversationStatus,
    InvocationStatus,
    MemoryItem,
    MemoryObject,
    decode_stored_value,
    infer_value_type,
)

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS conversations (
        conversation_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        platform TEXT NOT NULL,
        status TEXT NOT NULL CHECK(status IN ('active', 'archived')),
        message_count INTEGER NOT NULL DEFAULT 0,
        last_message_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        message_id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id TEXT NOT NULL,
        role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
        text TEXT NOT NULL,
        token_estimate INTEGER NOT NULL DEFAULT 0,
        structured_data TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS action_invocations (
        invocation_id TEXT PRIMARY KEY,
        message_id INTEGER NOT NULL,
        action_name TEXT NOT NULL,
        arguments TEXT,
        raw_arguments TEXT,
        status TEXT NOT NULL CHECK(status IN ('pending', 'completed', 'failed')),
        result TEXT,
        error TEXT,
        error_kind TEXT,
        tool_call_id TEXT,
        chained_from TEXT,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        duration_ms REAL,
        FOREIGN KEY (message_id) REFERENCES messages(message_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_items (
        conversation_id TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        value_type TEXT NOT NULL,
        source TEXT NOT NULL,
        confidence REAL NOT NULL DEFAULT 1.0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_objects (
        object_id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        object_type TEXT NOT NULL,
        name TEXT NOT NULL,
        data TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id)
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_memory_items_key ON memory_items(conversation_id, key)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_memory_objects_active
    ON memory_objects(conversation_id, object_type, name) WHERE is_active = 1
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_invocations_message ON action_invocations(message_id)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id)",
]


def _now() -> str:
    return datetime.now().isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


def _contains_pattern(text: str) -> str:
    """LIKE pattern matching `text` literally anywhere; used with ESCAPE '\\'."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteConversationStore:
    """
    SQLite-based persistent store.

    Every public method is a coroutine; the blocking sqlite3 work runs on a
    worker thread with its own short-lived connection. Uniqueness of memory
    items per (conversation, key) and of active memory objects per
    (conversation, type, name) is enforced by unique indexes.
    """

    def __init__(self, db_path: str = "data/conversations.db"):
        """
        Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, roll back and wrap errors on failure."""
        conn = None
        try:
            conn = self._get_connection()
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"SQLite error: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            if conn is not None:
                conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info(f"Database initialized at {self.db_path}")

    async def _run(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    # ------------------------------------------------------------------
    # Row mapping

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            conversation_id=row["conversation_id"],
            user_id=row["user_id"],
            title=row["title"],
            platform=row["platform"],
            status=ConversationStatus(row["status"]),
            message_count=row["message_count"],
            last_message_at=_parse_ts(row["last_message_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> ConversationMessage:
        return ConversationMessage(
            message_id=row["message_id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            text=row["text"],
            token_estimate=row["token_estimate"],
            structured_data=_loads(row["structured_data"]),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_invocation(row: sqlite3.Row) -> ActionInvocation:
        return ActionInvocation(
            invocation_id=row["invocation_id"],
            message_id=row["message_id"],
            action_name=row["action_name"],
            arguments=_loads(row["arguments"]) or {},
            raw_arguments=row["raw_arguments"],
            status=InvocationStatus(row["status"]),
            result=_loads(row["result"]),
            error=row["error"],
            error_kind=row["error_kind"],
            tool_call_id=row["tool_call_id"],
            chained_from=row["chained_from"],
            started_at=_parse_ts(row["started_at"]),
            ended_at=_parse_ts(row["ended_at"]),
            duration_ms=row["duration_ms"],
        )

    @staticmethod
    def _row_to_memory_item(row: sqlite3.Row) -> MemoryItem:
        return MemoryItem(
            conversation_id=row["conversation_id"],
            key=row["key"],
            value=decode_stored_value(row["value"], row["value_type"]),
            value_type=row["value_type"],
            source=row["source"],
            confidence=row["confidence"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_memory_object(row: sqlite3.Row) -> MemoryObject:
        return MemoryObject(
            object_id=row["object_id"],
            conversation_id=row["conversation_id"],
            object_type=row["object_type"],
            name=row["name"],
            data=_loads(row["data"]) or {},
            is_active=bool(row["is_active"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Conversations

    def _get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Conversation]:
        with self._transaction() as conn:
            if user_id is None:
                row = conn.execute(
                    "SELECT * FROM conversations WHERE conversation_id = ?",
                    (conversation_id,)
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM conversations WHERE conversation_id = ? AND user_id = ?",
                    (conversation_id, user_id)
                ).fetchone()
        return self._row_to_conversation(row) if row else None

    async def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Conversation]:
        """Get a conversation by id, optionally scoped to its owner."""
        return await self._run(self._get_conversation, conversation_id, user_id)

    def _create_conversation(
        self,
        user_id: str,
        platform: str,
        title: str,
        conversation_id: Optional[str]
    ) -> Conversation:
        now = _now()
        conversation_id = conversation_id or str(uuid.uuid4())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO conversations
                (conversation_id, user_id, title, platform, status, message_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (conversation_id, user_id, title, platform, ConversationStatus.ACTIVE.value, now, now)
            )
        logger.info(f"Created conversation {conversation_id} for user {user_id} ({platform})")
        return self._get_conversation(conversation_id)

    async def create_conversation(
        self,
        user_id: str,
        platform: str = "web",
        title: str = "New conversation",
        conversation_id: Optional[str] = None
    ) -> Conversation:
        """
        Create a new active conversation.

        Args:
            user_id: Owning user
            platform: "telegram" when the message came from a channel session, else "web"
            title: Conversation title
            conversation_id: Optional explicit id (generated when omitted)

        Returns:
            Created Conversation
        """
        return await self._run(self._create_conversation, user_id, platform, title, conversation_id)

    def _refresh_conversation_stats(self, conversation_id: str) -> Conversation:
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE conversations
                SET message_count = (SELECT COUNT(*) FROM messages WHERE conversation_id = ?),
                    last_message_at = ?, updated_at = ?
                WHERE conversation_id = ?
                """,
                (conversation_id, now, now, conversation_id)
            )
        return self._get_conversation(conversation_id)

    async def refresh_conversation_stats(self, conversation_id: str) -> Conversation:
        """Recount messages and stamp last activity."""
        return await self._run(self._refresh_conversation_stats, conversation_id)

    def _set_conversation_status(self, conversation_id: str, status: ConversationStatus) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE conversations SET status = ?, updated_at = ? WHERE conversation_id = ?",
                (status.value, _now(), conversation_id)
            )
            return cursor.rowcount > 0

    async def set_conversation_status(self, conversation_id: str, status: ConversationStatus) -> bool:
        """Flip a conversation's lifecycle status. Conversations are never deleted."""
        return await self._run(self._set_conversation_status, conversation_id, status)

    def _list_conversations(self, user_id: str, status: Optional[ConversationStatus], limit: int) -> List[Conversation]:
        with self._transaction() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM conversations WHERE user_id = ? ORDER BY updated_at DESC LIMIT ?",
                    (user_id, limit)
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM conversations
                    WHERE user_id = ? AND status = ?
                    ORDER BY updated_at DESC
                    LIMIT ?
                    """,
                    (user_id, status.value, limit)
                ).fetchall()
        return [self._row_to_conversation(row) for row in rows]

    async def list_conversations(
        self,
        user_id: str,
        status: Optional[ConversationStatus] = ConversationStatus.ACTIVE,
        limit: int = 10
    ) -> List[Conversation]:
        """List a user's conversations, most recently updated first."""
        return await self._run(self._list_conversations, user_id, status, limit)

    # ------------------------------------------------------------------
    # Messages and invocations

    def _add_message(self, conversation_id: str, role: str, text: str, token_estimate: int) -> ConversationMessage:
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages (conversation_id, role, text, token_estimate, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (conversation_id, role, text, token_estimate, now)
            )
            message_id = cursor.lastrowid
        return ConversationMessage(
            message_id=message_id,
            conversation_id=conversation_id,
            role=role,
            text=text,
            token_estimate=token_estimate,
            created_at=_parse_ts(now),
        )

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        text: str,
        token_estimate: int = 0
    ) -> ConversationMessage:
        """Persist a single message with no invocations."""
        return await self._run(self._add_message, conversation_id, role, text, token_estimate)

    def _save_assistant_turn(
        self,
        conversation_id: str,
        text: str,
        token_estimate: int,
        structured_data: Any,
        invocations: List[ActionInvocation]
    ) -> ConversationMessage:
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages (conversation_id, role, text, token_estimate, structured_data, created_at)
                VALUES (?, 'assistant', ?, ?, ?, ?)
                """,
                (conversation_id, text, token_estimate, _dumps(structured_data), now)
            )
            message_id = cursor.lastrowid

            saved = []
            for invocation in invocations:
                record = invocation.model_copy(update={"message_id": message_id})
                conn.execute(
                    """
                    INSERT INTO action_invocations
                    (invocation_id, message_id, action_name, arguments, raw_arguments, status,
                     result, error, error_kind, tool_call_id, chained_from, started_at, ended_at, duration_ms)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.invocation_id, message_id, record.action_name,
                        _dumps(record.arguments), record.raw_arguments, record.status.value,
                        _dumps(record.result), record.error, record.error_kind,
                        record.tool_call_id, record.chained_from,
                        record.started_at.isoformat(),
                        record.ended_at.isoformat() if record.ended_at else None,
                        record.duration_ms,
                    )
                )
                saved.append(record)

        return ConversationMessage(
            message_id=message_id,
            conversation_id=conversation_id,
            role="assistant",
            text=text,
            token_estimate=token_estimate,
            structured_data=structured_data,
            created_at=_parse_ts(now),
            invocations=saved,
        )

    async def save_assistant_turn(
        self,
        conversation_id: str,
        text: str,
        token_estimate: int = 0,
        structured_data: Any = None,
        invocations: Optional[List[ActionInvocation]] = None
    ) -> ConversationMessage:
        """
        Persist the final assistant message and its invocations in one transaction.

        Args:
            conversation_id: Conversation ID
            text: Final reply text
            token_estimate: Estimated token count of the reply
            structured_data: Structured payload returned alongside the reply
            invocations: Finalized (completed or failed) invocation records

        Returns:
            Saved ConversationMessage with invocations bound to it
        """
        return await self._run(
            self._save_assistant_turn, conversation_id, text, token_estimate,
            structured_data, list(invocations or [])
        )

    def _get_messages(self, conversation_id: str, limit: Optional[int], with_invocations: bool) -> List[ConversationMessage]:
        with self._transaction() as conn:
            if limit is None:
                rows = conn.execute(
                    "SELECT * FROM messages WHERE conversation_id = ? ORDER BY message_id",
                    (conversation_id,)
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM messages WHERE conversation_id = ?
                    ORDER BY message_id DESC LIMIT ?
                    """,
                    (conversation_id, limit)
                ).fetchall()
                rows = list(reversed(rows))  # chronological order

            messages = [self._row_to_message(row) for row in rows]
            if with_invocations and messages:
                ids = [m.message_id for m in messages]
                placeholders = ",".join("?" for _ in ids)
                inv_rows = conn.execute(
                    f"SELECT * FROM action_invocations WHERE message_id IN ({placeholders}) ORDER BY started_at",
                    ids
                ).fetchall()
                by_message: Dict[int, List[ActionInvocation]] = {}
                for row in inv_rows:
                    by_message.setdefault(row["message_id"], []).append(self._row_to_invocation(row))
                for message in messages:
                    message.invocations = by_message.get(message.message_id, [])
        return messages

    async def get_recent_messages(self, conversation_id: str, limit: int = 6) -> List[ConversationMessage]:
        """Get the last `limit` messages in chronological order."""
        return await self._run(self._get_messages, conversation_id, limit, False)

    async def get_messages(self, conversation_id: str, with_invocations: bool = True) -> List[ConversationMessage]:
        """Get every message of a conversation, oldest first."""
        return await self._run(self._get_messages, conversation_id, None, with_invocations)

    def _count_messages(self, conversation_id: str) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
                (conversation_id,)
            ).fetchone()
        return row[0] if row else 0

    async def count_messages(self, conversation_id: str) -> int:
        """Number of persisted messages in a conversation."""
        return await self._run(self._count_messages, conversation_id)

    # ------------------------------------------------------------------
    # Memory items

    def _upsert_memory_item(
        self,
        conversation_id: str,
        key: str,
        value: Any,
        source: str,
        confidence: float
    ) -> MemoryItem:
        stored, value_type = infer_value_type(value)
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO memory_items
                (conversation_id, key, value, value_type, source, confidence, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(conversation_id, key) DO UPDATE SET
                    value = excluded.value,
                    value_type = excluded.value_type,
                    source = excluded.source,
                    confidence = excluded.confidence,
                    updated_at = excluded.updated_at
                """,
                (conversation_id, key, stored, value_type, source, confidence, now, now)
            )
            row = conn.execute(
                "SELECT * FROM memory_items WHERE conversation_id = ? AND key = ?",
                (conversation_id, key)
            ).fetchone()
        return self._row_to_memory_item(row)

    async def upsert_memory_item(
        self,
        conversation_id: str,
        key: str,
        value: Any,
        source: str = "llm",
        confidence: float = 1.0
    ) -> MemoryItem:
        """Store a memory item; an existing (conversation, key) row is overwritten."""
        return await self._run(self._upsert_memory_item, conversation_id, key, value, source, confidence)

    def _get_memory_items(self, conversation_id: str, query: str, exact_match: bool) -> List[MemoryItem]:
        with self._transaction() as conn:
            if query == "*":
                rows = conn.execute(
                    "SELECT * FROM memory_items WHERE conversation_id = ? ORDER BY key",
                    (conversation_id,)
                ).fetchall()
            elif exact_match:
                rows = conn.execute(
                    "SELECT * FROM memory_items WHERE conversation_id = ? AND key = ? ORDER BY key",
                    (conversation_id, query)
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM memory_items
                    WHERE conversation_id = ? AND LOWER(key) LIKE ? ESCAPE '\\'
                    ORDER BY key
                    """,
                    (conversation_id, _contains_pattern(query))
                ).fetchall()
        return [self._row_to_memory_item(row) for row in rows]

    async def get_memory_items(
        self,
        conversation_id: str,
        query: str = "*",
        exact_match: bool = False
    ) -> List[MemoryItem]:
        """Memory items ordered by key. "*" returns all, otherwise match on key."""
        return await self._run(self._get_memory_items, conversation_id, query, exact_match)

    # ------------------------------------------------------------------
    # Memory objects

    def _upsert_memory_object(
        self,
        conversation_id: str,
        object_type: str,
        name: str,
        data: Dict[str, Any]
    ) -> MemoryObject:
        now = _now()
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM memory_objects
                WHERE conversation_id = ? AND object_type = ? AND name = ? AND is_active = 1
                """,
                (conversation_id, object_type, name)
            ).fetchone()

            if row:
                existing = _loads(row["data"]) or {}
                merged = {**existing, **data}
                merged["createdAt"] = existing.get("createdAt", row["created_at"])
                merged["updatedAt"] = now
                conn.execute(
                    "UPDATE memory_objects SET data = ?, updated_at = ? WHERE object_id = ?",
                    (_dumps(merged), now, row["object_id"])
                )
                object_id = row["object_id"]
                logger.info(f"Updated {object_type} '{name}' in conversation {conversation_id}")
            else:
                object_id = str(uuid.uuid4())
                payload = {**data, "createdAt": now, "updatedAt": now}
                conn.execute(
                    """
                    INSERT INTO memory_objects
                    (object_id, conversation_id, object_type, name, data, is_active, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                    """,
                    (object_id, conversation_id, object_type, name, _dumps(payload), now, now)
                )
                logger.info(f"Created {object_type} '{name}' in conversation {conversation_id}")

            row = conn.execute(
                "SELECT * FROM memory_objects WHERE object_id = ?", (object_id,)
            ).fetchone()
        return self._row_to_memory_object(row)

    async def upsert_memory_object(
        self,
        conversation_id: str,
        object_type: str,
        name: str,
        data: Dict[str, Any]
    ) -> MemoryObject:
        """
        Create or update the active object identified by (type, name).

        An update merges the new payload over the old one and keeps the
        original creation timestamp.
        """
        return await self._run(self._upsert_memory_object, conversation_id, object_type, name, data)

    def _get_memory_objects(self, conversation_id: str, object_type: str, name: Optional[str]) -> List[MemoryObject]:
        sql = "SELECT * FROM memory_objects WHERE conversation_id = ? AND is_active = 1"
        params: List[Any] = [conversation_id]
        if object_type and object_type != "*":
            sql += " AND object_type = ?"
            params.append(object_type)
        if name:
            sql += " AND LOWER(name) LIKE ? ESCAPE '\\'"
            params.append(_contains_pattern(name))
        sql += " ORDER BY created_at DESC"
        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_memory_object(row) for row in rows]

    async def get_memory_objects(
        self,
        conversation_id: str,
        object_type: str = "*",
        name: Optional[str] = None
    ) -> List[MemoryObject]:
        """Active memory objects, newest first, optionally filtered by type and partial name."""
        return await self._run(self._get_memory_objects, conversation_id, object_type, name)

    def _deactivate_memory_object(self, object_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE memory_objects SET is_active = 0, updated_at = ? WHERE object_id = ?",
                (_now(), object_id)
            )
            return cursor.rowcount > 0

    async def deactivate_memory_object(self, object_id: str) -> bool:
        """Soft-delete a memory object, freeing its (type, name) slot."""
        return await self._run(self._deactivate_memory_object, object_id)
