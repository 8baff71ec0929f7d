"""Repository interfaces injected into the agent core."""

from __future__ import annotations

from typing import Any, Protocol

from scopeai.models import ActionAuditLog, Conversation, StoredMessage


class AuditRepository(Protocol):
    async def append(self, entry: ActionAuditLog) -> None: ...

    async def list(self, user_id: str | None = None, limit: int | None = None) -> list[ActionAuditLog]: ...


class ConversationRepository(Protocol):
    async def create(self, user_id: str, title: str = "", conversation_id: str | None = None) -> Conversation: ...

    async def list(self, user_id: str) -> list[Conversation]: ...

    async def get_by_id(self, conversation_id: str) -> Conversation | None: ...

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredMessage: ...

    async def messages(self, conversation_id: str, limit: int | None = None) -> list[StoredMessage]: ...
