"""Request/response message bus between the orchestrator and domain agents."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from scopeai.models import AgentContext, AgentDomain, AgentResponse, Intent
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Message types
# ---------------------------------------------------------------------------

class AgentMessageType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    HANDOFF = "handoff"
    CONSULT = "consult"
    BROADCAST = "broadcast"
    ERROR = "error"


@dataclass
class AgentMessage:
    type: AgentMessageType
    sender: AgentDomain | str
    recipient: AgentDomain | str
    content: str
    correlation_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    intent: Intent | None = None
    parent_id: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

Handler = Callable[[AgentMessage, AgentContext], Awaitable[AgentResponse]]
Next = Callable[[AgentMessage, AgentContext], Awaitable[AgentResponse]]
Middleware = Callable[[AgentMessage, AgentContext, Next], Awaitable[AgentResponse]]


class AgentMessageBus:
    """Routes messages to one handler per domain and keeps a bounded log."""

    def __init__(self, max_log_size: int = 1000) -> None:
        self._handlers: dict[AgentDomain, Handler] = {}
        self._middlewares: list[Middleware] = []
        self._log: deque[AgentMessage] = deque(maxlen=max_log_size)

    def register(self, domain: AgentDomain, handler: Handler) -> None:
        self._handlers[domain] = handler

    def unregister(self, domain: AgentDomain) -> None:
        self._handlers.pop(domain, None)

    def has_handler(self, domain: AgentDomain) -> bool:
        return domain in self._handlers

    def use(self, middleware: Middleware) -> None:
        self._middlewares.append(middleware)

    async def send(self, message: AgentMessage, context: AgentContext) -> AgentResponse:
        """Deliver a message and return the recipient's response."""
        handler = self._handlers.get(message.recipient)  # type: ignore[arg-type]
        if handler is None:
            raise LookupError(f"No handler registered for {message.recipient}")

        self._log.append(message)
        log.debug(
            "bus_send",
            type=message.type.value,
            sender=str(message.sender),
            recipient=str(message.recipient),
            correlation_id=message.correlation_id,
        )

        async def dispatch(msg: AgentMessage, ctx: AgentContext, index: int = 0) -> AgentResponse:
            if index < len(self._middlewares):
                return await self._middlewares[index](
                    msg, ctx, lambda m, c: dispatch(m, c, index + 1)
                )
            return await handler(msg, ctx)

        response = await dispatch(message, context)
        self._log.append(AgentMessage(
            type=AgentMessageType.RESPONSE if response.success else AgentMessageType.ERROR,
            sender=message.recipient,
            recipient=message.sender,
            content=response.message,
            correlation_id=message.correlation_id,
            parent_id=message.id,
        ))
        return response

    async def request(
        self,
        sender: AgentDomain | str,
        recipient: AgentDomain,
        content: str,
        context: AgentContext,
        intent: Intent | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AgentResponse:
        message = AgentMessage(
            type=AgentMessageType.REQUEST,
            sender=sender,
            recipient=recipient,
            content=content,
            correlation_id=context.conversation_id,
            intent=intent,
            payload=dict(payload or {}),
        )
        return await self.send(message, context)

    async def consult(
        self,
        sender: AgentDomain,
        recipient: AgentDomain,
        question: str,
        context: AgentContext,
    ) -> AgentResponse:
        message = AgentMessage(
            type=AgentMessageType.CONSULT,
            sender=sender,
            recipient=recipient,
            content=question,
            correlation_id=context.conversation_id,
        )
        return await self.send(message, context)

    async def broadcast(
        self,
        sender: AgentDomain,
        content: str,
        context: AgentContext,
        payload: dict[str, Any] | None = None,
    ) -> dict[AgentDomain, AgentResponse]:
        responses: dict[AgentDomain, AgentResponse] = {}
        for domain in list(self._handlers):
            if domain == sender:
                continue
            message = AgentMessage(
                type=AgentMessageType.BROADCAST,
                sender=sender,
                recipient=domain,
                content=content,
                correlation_id=context.conversation_id,
                payload=dict(payload or {}),
            )
            responses[domain] = await self.send(message, context)
        return responses

    def history(self, correlation_id: str | None = None) -> list[AgentMessage]:
        if correlation_id is None:
            return list(self._log)
        return [m for m in self._log if m.correlation_id == correlation_id]

    def agent_messages(self, domain: AgentDomain, limit: int = 10) -> list[AgentMessage]:
        found = [m for m in self._log if m.sender == domain or m.recipient == domain]
        return found[-limit:]

    def clear(self) -> None:
        self._log.clear()
