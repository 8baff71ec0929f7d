"""Append-only audit trail for tool executions."""

from __future__ import annotations

from typing import Any

from scopeai.models import ActionAuditLog, AuditStatus
from scopeai.storage.base import AuditRepository
from scopeai.storage.memory import InMemoryAuditRepository
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


class AuditLog:
    def __init__(self, repository: AuditRepository | None = None) -> None:
        self._repository = repository if repository is not None else InMemoryAuditRepository()

    async def record(
        self,
        *,
        tool_name: str,
        parameters: dict[str, Any],
        status: AuditStatus,
        user_id: str,
        result: Any = None,
        execution_time_ms: int = 0,
        error_message: str | None = None,
        confirmation_id: str | None = None,
        company_id: str = "",
    ) -> ActionAuditLog:
        entry = ActionAuditLog(
            tool_name=tool_name,
            parameters=parameters,
            result=result,
            status=status,
            execution_time_ms=execution_time_ms,
            user_id=user_id,
            error_message=error_message,
            confirmation_id=confirmation_id,
            company_id=company_id,
        )
        # Persistence failures propagate to the caller
        await self._repository.append(entry)
        log.info(
            "audit_recorded",
            tool=tool_name,
            status=status,
            user_id=user_id,
            execution_time_ms=execution_time_ms,
            confirmation_id=confirmation_id,
        )
        return entry

    async def entries(self, user_id: str | None = None, limit: int | None = None) -> list[ActionAuditLog]:
        return await self._repository.list(user_id=user_id, limit=limit)
