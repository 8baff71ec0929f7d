"""SQLite-backed repositories."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite

from scopeai.models import ActionAuditLog, Conversation, StoredMessage
from scopeai.utils.logging import get_logger

log = get_logger(__name__)

_AUDIT_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    tool_name TEXT NOT NULL,
    parameters TEXT NOT NULL,
    result TEXT,
    status TEXT NOT NULL,
    execution_time_ms INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    user_id TEXT NOT NULL,
    company_id TEXT NOT NULL DEFAULT '',
    confirmation_id TEXT,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_log (user_id, timestamp);
"""

_CONVERSATION_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    seq INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages (conversation_id, seq);
"""


class _SqliteRepository:
    _schema = ""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.executescript(self._schema)
        await self._db.commit()

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None


class SqliteAuditRepository(_SqliteRepository):
    _schema = _AUDIT_SCHEMA

    async def append(self, entry: ActionAuditLog) -> None:
        assert self._db is not None
        await self._db.execute(
            "INSERT INTO audit_log (id, tool_name, parameters, result, status, execution_time_ms, "
            "error_message, user_id, company_id, confirmation_id, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.id,
                entry.tool_name,
                json.dumps(entry.parameters, default=str),
                json.dumps(entry.result, default=str),
                entry.status,
                entry.execution_time_ms,
                entry.error_message,
                entry.user_id,
                entry.company_id,
                entry.confirmation_id,
                entry.timestamp.isoformat(),
            ),
        )
        await self._db.commit()

    async def list(self, user_id: str | None = None, limit: int | None = None) -> list[ActionAuditLog]:
        assert self._db is not None
        query = (
            "SELECT id, tool_name, parameters, result, status, execution_time_ms, "
            "error_message, user_id, company_id, confirmation_id, timestamp FROM audit_log"
        )
        params: list[Any] = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY timestamp DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._db.execute(query, params)
        rows = await cursor.fetchall()
        rows.reverse()  # Oldest first
        return [
            ActionAuditLog(
                id=row[0],
                tool_name=row[1],
                parameters=json.loads(row[2]),
                result=json.loads(row[3]) if row[3] is not None else None,
                status=row[4],
                execution_time_ms=row[5],
                error_message=row[6],
                user_id=row[7],
                company_id=row[8],
                confirmation_id=row[9],
                timestamp=datetime.fromisoformat(row[10]),
            )
            for row in rows
        ]


class SqliteConversationRepository(_SqliteRepository):
    _schema = _CONVERSATION_SCHEMA

    async def create(self, user_id: str, title: str = "", conversation_id: str | None = None) -> Conversation:
        assert self._db is not None
        conversation = Conversation(user_id=user_id, title=title)
        if conversation_id:
            conversation.id = conversation_id
        await self._db.execute(
            "INSERT INTO conversations (id, user_id, title, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (
                conversation.id,
                user_id,
                title,
                conversation.created_at.isoformat(),
                conversation.updated_at.isoformat(),
            ),
        )
        await self._db.commit()
        return conversation

    async def list(self, user_id: str) -> list[Conversation]:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT id, user_id, title, created_at, updated_at FROM conversations "
            "WHERE user_id = ? ORDER BY updated_at DESC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    async def get_by_id(self, conversation_id: str) -> Conversation | None:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT id, user_id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredMessage:
        assert self._db is not None
        if await self.get_by_id(conversation_id) is None:
            raise KeyError(conversation_id)
        now = datetime.now(timezone.utc)
        message_id = uuid4().hex
        await self._db.execute(
            "INSERT INTO messages (id, conversation_id, seq, role, content, metadata, created_at) "
            "VALUES (?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE conversation_id = ?), ?, ?, ?, ?)",
            (
                message_id,
                conversation_id,
                conversation_id,
                role,
                content,
                json.dumps(metadata or {}, default=str),
                now.isoformat(),
            ),
        )
        await self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (now.isoformat(), conversation_id),
        )
        await self._db.commit()
        return StoredMessage(
            id=message_id,
            conversation_id=conversation_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            created_at=now,
            metadata=dict(metadata or {}),
        )

    async def messages(self, conversation_id: str, limit: int | None = None) -> list[StoredMessage]:
        assert self._db is not None
        query = (
            "SELECT id, conversation_id, role, content, metadata, created_at FROM messages "
            "WHERE conversation_id = ? ORDER BY seq DESC"
        )
        params: list[Any] = [conversation_id]
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        cursor = await self._db.execute(query, params)
        rows = await cursor.fetchall()
        rows.reverse()  # Oldest first
        return [
            StoredMessage(
                id=row[0],
                conversation_id=row[1],
                role=row[2],
                content=row[3],
                metadata=json.loads(row[4]),
                created_at=datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_conversation(row: Any) -> Conversation:
        return Conversation(
            id=row[0],
            user_id=row[1],
            title=row[2],
            created_at=datetime.fromisoformat(row[3]),
            updated_at=datetime.fromisoformat(row[4]),
        )
