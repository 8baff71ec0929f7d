"""Tool registry with schema validation, a confirmation gate and auditing."""

from __future__ import annotations

import json
import time
from typing import Any, Iterable

from scopeai.core.audit import AuditLog
from scopeai.core.confirmations import ConfirmationStore
from scopeai.core.llm.types import LLMToolDefinition
from scopeai.errors import ConfirmationExpiredError, ToolError, ToolValidationError, UnknownToolError
from scopeai.models import AgentContext, AgentToolResult, PendingConfirmation
from scopeai.tools.base import BaseTool, ToolResult
from scopeai.tools.schema import validate_arguments
from scopeai.utils.logging import get_logger

log = get_logger(__name__)

REJECTED_MESSAGE = "Åtgärden avbröts av användaren."


class ToolRegistry:
    """Single execution path for every tool call an agent makes.

    Read-only tools run immediately. Mutating tools never run from
    ``execute``; they become a :class:`PendingConfirmation` that only
    ``resolve`` can turn into an effect.
    """

    def __init__(
        self,
        audit: AuditLog | None = None,
        confirmations: ConfirmationStore | None = None,
    ) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._audit = audit if audit is not None else AuditLog()
        self._confirmations = confirmations if confirmations is not None else ConfirmationStore()

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def confirmations(self) -> ConfirmationStore:
        return self._confirmations

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        log.debug("tool_registered", tool=tool.name, mutating=tool.mutating)

    def register_all(self, tools: Iterable[BaseTool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self, names: Iterable[str] | None = None) -> list[LLMToolDefinition]:
        if names is None:
            return [t.to_definition() for t in self._tools.values()]
        definitions = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                log.warning("tool_definition_missing", tool=name)
                continue
            definitions.append(tool.to_definition())
        return definitions

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        name: str,
        args: dict[str, Any] | str,
        context: AgentContext,
        allowed: Iterable[str] | None = None,
        tool_call_id: str | None = None,
    ) -> AgentToolResult | PendingConfirmation:
        try:
            tool, parsed = self._prepare(name, args, allowed)
        except ToolError as e:
            log.warning("tool_rejected", tool=name, error=str(e))
            await self._audit.record(
                tool_name=name,
                parameters=args if isinstance(args, dict) else {"raw": args},
                status="error",
                user_id=context.user_id,
                company_id=context.company_id,
                error_message=str(e),
            )
            return AgentToolResult(tool_name=name, success=False, error=str(e), tool_call_id=tool_call_id)

        if tool.mutating:
            confirmation = self._confirmations.create(
                tool_name=tool.name,
                args=parsed,
                summary=tool.summarize(parsed),
                warnings=tool.warnings(parsed),
                user_id=context.user_id,
                company_id=context.company_id,
                tool_call_id=tool_call_id,
            )
            await self._audit.record(
                tool_name=tool.name,
                parameters=parsed,
                status="pending",
                user_id=context.user_id,
                company_id=context.company_id,
                confirmation_id=confirmation.confirmation_id,
            )
            log.info("tool_confirmation_required", tool=tool.name, confirmation_id=confirmation.confirmation_id)
            return confirmation

        return await self._run(tool, parsed, context, tool_call_id)

    async def resolve(
        self,
        confirmation_id: str,
        approve: bool,
        context: AgentContext | None = None,
    ) -> AgentToolResult:
        """Approve or reject a pending confirmation. The effect runs at most once.

        A caller whose user or company differs from the confirmation owner
        gets ``ConfirmationNotFoundError``; the entry stays pending.
        """
        try:
            confirmation = await self._confirmations.claim(
                confirmation_id,
                user_id=context.user_id if context is not None else None,
                company_id=context.company_id if context is not None else None,
            )
        except ConfirmationExpiredError as e:
            expired: PendingConfirmation | None = e.confirmation
            if expired is not None:
                await self._audit.record(
                    tool_name=expired.tool_name,
                    parameters=expired.args,
                    status="error",
                    user_id=expired.user_id,
                    company_id=expired.company_id,
                    confirmation_id=confirmation_id,
                    error_message=str(e),
                )
            raise

        if not approve:
            await self._audit.record(
                tool_name=confirmation.tool_name,
                parameters=confirmation.args,
                status="rejected",
                user_id=confirmation.user_id,
                company_id=confirmation.company_id,
                confirmation_id=confirmation_id,
            )
            log.info("tool_confirmation_rejected", tool=confirmation.tool_name, confirmation_id=confirmation_id)
            return AgentToolResult(
                tool_name=confirmation.tool_name,
                success=False,
                error=REJECTED_MESSAGE,
                tool_call_id=confirmation.tool_call_id,
            )

        tool = self._tools.get(confirmation.tool_name)
        if tool is None:
            raise UnknownToolError(confirmation.tool_name)
        if context is None:
            context = AgentContext(user_id=confirmation.user_id, company_id=confirmation.company_id)
        log.info("tool_confirmation_approved", tool=tool.name, confirmation_id=confirmation_id)
        return await self._run(tool, confirmation.args, context, confirmation.tool_call_id, confirmation_id)

    async def purge_expired(self) -> list[PendingConfirmation]:
        """Drop confirmations past their TTL, auditing each as an error."""
        expired = self._confirmations.purge_expired()
        for confirmation in expired:
            await self._audit.record(
                tool_name=confirmation.tool_name,
                parameters=confirmation.args,
                status="error",
                user_id=confirmation.user_id,
                company_id=confirmation.company_id,
                confirmation_id=confirmation.confirmation_id,
                error_message=f"Confirmation {confirmation.confirmation_id} has expired",
            )
        return expired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare(
        self,
        name: str,
        args: dict[str, Any] | str,
        allowed: Iterable[str] | None,
    ) -> tuple[BaseTool, dict[str, Any]]:
        tool = self._tools.get(name)
        if tool is None or (allowed is not None and name not in set(allowed)):
            raise UnknownToolError(name)

        if isinstance(args, str):
            try:
                parsed = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError as e:
                raise ToolValidationError(name, [f"arguments are not valid JSON: {e.msg}"]) from e
        else:
            parsed = args

        errors = validate_arguments({"type": "object", **tool.parameters}, parsed)
        if errors:
            raise ToolValidationError(name, errors)
        return tool, dict(parsed)

    async def _run(
        self,
        tool: BaseTool,
        args: dict[str, Any],
        context: AgentContext,
        tool_call_id: str | None,
        confirmation_id: str | None = None,
    ) -> AgentToolResult:
        log.debug("tool_execute", tool=tool.name, args=args)
        start = time.monotonic()
        try:
            result = await tool.execute(context, **args)
        except Exception as e:
            log.exception("tool_execution_error", tool=tool.name)
            result = ToolResult(success=False, error=str(e) or type(e).__name__)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        payload = result.to_payload() if result.success else None
        await self._audit.record(
            tool_name=tool.name,
            parameters=args,
            status="success" if result.success else "error",
            user_id=context.user_id,
            company_id=context.company_id,
            result=payload,
            execution_time_ms=elapsed_ms,
            error_message=result.error or None,
            confirmation_id=confirmation_id,
        )
        return AgentToolResult(
            tool_name=tool.name,
            success=result.success,
            result=payload,
            error=result.error or None,
            tool_call_id=tool_call_id,
        )
