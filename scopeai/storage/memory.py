"""In-memory repositories, the default when no database is configured."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from scopeai.models import ActionAuditLog, Conversation, StoredMessage


class InMemoryAuditRepository:
    def __init__(self) -> None:
        self._entries: list[ActionAuditLog] = []

    async def append(self, entry: ActionAuditLog) -> None:
        self._entries.append(entry)

    async def list(self, user_id: str | None = None, limit: int | None = None) -> list[ActionAuditLog]:
        entries = [e for e in self._entries if user_id is None or e.user_id == user_id]
        if limit is not None:
            entries = entries[-limit:]
        return entries

    def clear(self) -> None:
        self._entries.clear()


class InMemoryConversationRepository:
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[StoredMessage]] = {}

    async def create(self, user_id: str, title: str = "", conversation_id: str | None = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title)
        if conversation_id:
            conversation.id = conversation_id
        self._conversations[conversation.id] = conversation
        self._messages.setdefault(conversation.id, [])
        return conversation

    async def list(self, user_id: str) -> list[Conversation]:
        found = [c for c in self._conversations.values() if c.user_id == user_id]
        return sorted(found, key=lambda c: c.updated_at, reverse=True)

    async def get_by_id(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredMessage:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(conversation_id)
        message = StoredMessage(
            conversation_id=conversation_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            metadata=dict(metadata or {}),
        )
        self._messages[conversation_id].append(message)
        conversation.updated_at = datetime.now(timezone.utc)
        return message

    async def messages(self, conversation_id: str, limit: int | None = None) -> list[StoredMessage]:
        stored = self._messages.get(conversation_id, [])
        return list(stored[-limit:] if limit else stored)

    def clear(self) -> None:
        self._conversations.clear()
        self._messages.clear()
