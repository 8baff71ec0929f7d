"""Base agent: system prompt, tool subset and the tool-calling loop."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Literal

from scopeai.config import AgentConfig
from scopeai.core.bus import AgentMessage, AgentMessageType
from scopeai.core.llm.client import LLMClient
from scopeai.core.llm.types import (
    CallOptions,
    LLMMessage,
    LLMToolCall,
    LLMUsage,
    TextChunk,
    ToolCallEnd,
)
from scopeai.errors import LLMError, MaxIterationsExceeded, UnknownModelError
from scopeai.models import (
    CATEGORY_DOMAINS,
    AgentContext,
    AgentDomain,
    AgentResponse,
    AgentToolResult,
    Intent,
    PendingConfirmation,
)
from scopeai.tools.registry import ToolRegistry
from scopeai.utils.logging import get_logger

log = get_logger(__name__)

GENERIC_FAILURE = "Ett fel uppstod. Försök igen."

ToolOutcome = AgentToolResult | PendingConfirmation


@dataclass
class TurnResult:
    content: str
    tool_results: list[AgentToolResult] = field(default_factory=list)
    confirmations: list[PendingConfirmation] = field(default_factory=list)
    usage: LLMUsage | None = None
    rounds: int = 0


@dataclass
class AgentEvent:
    type: Literal["text", "tool_call", "tool_result", "confirmation", "done"]
    content: str = ""
    tool_call: LLMToolCall | None = None
    tool_result: AgentToolResult | None = None
    confirmation: PendingConfirmation | None = None


def _add_usage(total: LLMUsage | None, usage: LLMUsage | None) -> LLMUsage | None:
    if usage is None:
        return total
    if total is None:
        return LLMUsage(usage.prompt_tokens, usage.completion_tokens, usage.total_tokens)
    total.prompt_tokens += usage.prompt_tokens
    total.completion_tokens += usage.completion_tokens
    total.total_tokens += usage.total_tokens
    return total


def tool_message(call: LLMToolCall, outcome: ToolOutcome) -> LLMMessage:
    """The tool-role message answering ``call``."""
    if isinstance(outcome, PendingConfirmation):
        payload: dict[str, Any] = outcome.to_placeholder()
    elif outcome.success:
        payload = {"success": True, "result": outcome.result}
    else:
        payload = {"success": False, "error": outcome.error}
    return LLMMessage(
        role="tool",
        content=json.dumps(payload, ensure_ascii=False, default=str),
        tool_call_id=call.id,
        name=call.name,
    )


class BaseAgent:
    """A domain specialist. Subclasses set the class attributes below."""

    domain: AgentDomain = AgentDomain.ORCHESTRATOR
    name: str = ""
    description: str = ""
    system_prompt: str = ""
    tools: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    model: str | None = None
    # Shared-memory keys worth showing this agent; None means all
    memory_keys: tuple[str, ...] | None = None

    def __init__(
        self,
        llm: LLMClient,
        registry: ToolRegistry,
        config: AgentConfig | None = None,
    ) -> None:
        self._llm = llm
        self._registry = registry
        self._config = config or AgentConfig()

    def get_model(self) -> str:
        return self._config.domain_models.get(self.domain.value) or self.model or self._llm.default_model

    async def can_handle(self, intent: Intent, context: AgentContext) -> float:
        """Confidence in [0, 1] that this agent should take the request."""
        if CATEGORY_DOMAINS.get(intent.category) == self.domain:
            return intent.confidence
        values = [e.value.lower() for e in intent.entities]
        if any(v and v in cap.lower() for v in values for cap in self.capabilities):
            return 0.5
        return 0.0

    # ------------------------------------------------------------------
    # Prompt building
    # ------------------------------------------------------------------

    def build_system_prompt(self, context: AgentContext) -> str:
        lines = [
            self.system_prompt,
            "",
            "## Aktuell kontext",
            f"- Företagsform: {context.company_type}",
            f"- Språk: {context.locale}",
        ]
        if context.company_name:
            lines.append(f"- Företag: {context.company_name}")
        memory = self._relevant_memory(context)
        if memory:
            lines += ["", "## Relevant information", memory]
        return "\n".join(lines)

    def _relevant_memory(self, context: AgentContext) -> str:
        keys = [
            k for k in context.shared_memory
            if self.memory_keys is None or k in self.memory_keys
        ]
        return "\n".join(
            f"{k}: {json.dumps(context.shared_memory[k], ensure_ascii=False, default=str)}" for k in keys
        )

    def build_messages(self, message: str, context: AgentContext) -> list[LLMMessage]:
        return [
            LLMMessage(role="system", content=self.build_system_prompt(context)),
            *context.history,
            LLMMessage(role="user", content=message),
        ]

    def _options(self, messages: list[LLMMessage], context: AgentContext) -> CallOptions:
        return CallOptions(
            model=self.get_model(),
            messages=messages,
            tools=self._registry.definitions(self.tools),
            abort=context.abort,
        )

    # ------------------------------------------------------------------
    # Tool loop
    # ------------------------------------------------------------------

    async def run_turn(self, message: str, context: AgentContext) -> TurnResult:
        messages = self.build_messages(message, context)
        result = TurnResult(content="")

        for _ in range(self._config.max_tool_rounds):
            response = await self._llm.call(self._options(messages, context))
            result.rounds += 1
            result.usage = _add_usage(result.usage, response.usage)

            if not response.tool_calls:
                result.content = response.content or ""
                return result

            messages.append(LLMMessage(
                role="assistant",
                content=response.content or "",
                tool_calls=list(response.tool_calls),
            ))
            outcomes = await self._execute_calls(response.tool_calls, context)
            for call, outcome in zip(response.tool_calls, outcomes):
                messages.append(tool_message(call, outcome))
                self._collect(result, outcome)

        raise MaxIterationsExceeded(self._config.max_tool_rounds, self.domain.value)

    async def _execute_calls(self, calls: list[LLMToolCall], context: AgentContext) -> list[ToolOutcome]:
        if self._config.parallel_tools and len(calls) > 1:
            # gather keeps request order regardless of completion order
            return list(await asyncio.gather(*(self._execute_call(c, context) for c in calls)))
        return [await self._execute_call(c, context) for c in calls]

    async def _execute_call(self, call: LLMToolCall, context: AgentContext) -> ToolOutcome:
        log.info("agent_tool_call", agent=self.domain.value, tool=call.name, call_id=call.id)
        return await self._registry.execute(
            call.name,
            call.arguments,
            context,
            allowed=self.tools,
            tool_call_id=call.id,
        )

    @staticmethod
    def _collect(result: TurnResult, outcome: ToolOutcome) -> None:
        if isinstance(outcome, PendingConfirmation):
            result.confirmations.append(outcome)
        else:
            result.tool_results.append(outcome)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def handle(self, message: str, context: AgentContext) -> AgentResponse:
        start = time.monotonic()
        try:
            turn = await self.run_turn(message, context)
        except MaxIterationsExceeded as e:
            log.error("agent_max_iterations", agent=self.domain.value, rounds=e.max_rounds)
            await self._registry.audit.record(
                tool_name=f"agent:{self.domain.value}",
                parameters={"message": message, "conversation_id": context.conversation_id},
                status="error",
                user_id=context.user_id,
                company_id=context.company_id,
                error_message=str(e),
            )
            return self.error_response(str(e))
        except LLMError as e:
            log.warning("agent_llm_error", agent=self.domain.value, error=str(e))
            return self.error_response(str(e), should_retry=not isinstance(e, UnknownModelError))

        log.info(
            "agent_handled",
            agent=self.domain.value,
            rounds=turn.rounds,
            tool_results=len(turn.tool_results),
            confirmations=len(turn.confirmations),
        )
        return AgentResponse(
            success=True,
            message=turn.content,
            agent=self.domain,
            tool_results=turn.tool_results,
            confirmations=turn.confirmations,
            usage=turn.usage,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    async def consult(self, question: str, context: AgentContext) -> AgentResponse:
        """Answer another agent without taking over the conversation."""
        if context.consultation_depth >= self._config.max_consultation_depth:
            log.warning("agent_consultation_depth", agent=self.domain.value, depth=context.consultation_depth)
            return self.error_response("Maximum consultation depth reached")
        return await self.handle(question, replace(context, consultation_depth=context.consultation_depth + 1))

    async def on_message(self, message: AgentMessage, context: AgentContext) -> AgentResponse:
        """Bus handler."""
        if message.type == AgentMessageType.BROADCAST:
            context.shared_memory.update(message.payload)
            return AgentResponse(success=True, message="", agent=self.domain)
        if message.type == AgentMessageType.CONSULT:
            return await self.consult(message.content, context)
        return await self.handle(message.content, context)

    async def stream_turn(self, message: str, context: AgentContext) -> AsyncIterator[AgentEvent]:
        """Like ``run_turn`` but yields text and tool events as they happen."""
        messages = self.build_messages(message, context)

        for _ in range(self._config.max_tool_rounds):
            calls: list[LLMToolCall] = []
            outcomes: list[ToolOutcome] = []
            text: list[str] = []

            async for chunk in self._llm.stream(self._options(messages, context)):
                if isinstance(chunk, TextChunk):
                    text.append(chunk.content)
                    yield AgentEvent(type="text", content=chunk.content)
                elif isinstance(chunk, ToolCallEnd):
                    calls.append(chunk.call)
                    yield AgentEvent(type="tool_call", tool_call=chunk.call)
                    outcome = await self._execute_call(chunk.call, context)
                    outcomes.append(outcome)
                    if isinstance(outcome, PendingConfirmation):
                        yield AgentEvent(type="confirmation", confirmation=outcome)
                    else:
                        yield AgentEvent(type="tool_result", tool_result=outcome)

            if not calls:
                yield AgentEvent(type="done", content="".join(text))
                return

            messages.append(LLMMessage(role="assistant", content="".join(text), tool_calls=calls))
            for call, outcome in zip(calls, outcomes):
                messages.append(tool_message(call, outcome))

        raise MaxIterationsExceeded(self._config.max_tool_rounds, self.domain.value)

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------

    def error_response(self, error: str, should_retry: bool = False) -> AgentResponse:
        return AgentResponse(
            success=False,
            message=GENERIC_FAILURE,
            agent=self.domain,
            error=error,
            should_retry=should_retry,
        )
