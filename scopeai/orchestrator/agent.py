"""Orchestrator: classify, plan and dispatch a request to the domain agents."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator

from scopeai.agents.domains import DOMAIN_AGENTS
from scopeai.agents.registry import AgentRegistry, create_default_agents
from scopeai.config import Settings
from scopeai.core.audit import AuditLog
from scopeai.core.bus import AgentMessageBus
from scopeai.core.confirmations import ConfirmationStore
from scopeai.core.context import HistoryWindow
from scopeai.core.llm.client import LLMClient
from scopeai.core.llm.types import LLMUsage
from scopeai.core.metrics import MetricsCollector
from scopeai.errors import ConfirmationExpiredError, ScopeError
from scopeai.models import (
    AgentContext,
    AgentDomain,
    AgentResponse,
    AgentToolResult,
    Intent,
    IntentCategory,
)
from scopeai.orchestrator.classifier import (
    Classifier,
    FallbackClassifier,
    LLMClassifier,
    PatternClassifier,
)
from scopeai.orchestrator.planner import (
    WorkflowPlan,
    WorkflowStep,
    can_run_parallel,
    create_workflow_plan,
    dependents,
    get_executable_steps,
)
from scopeai.storage.base import AuditRepository, ConversationRepository
from scopeai.storage.ledger import Ledger
from scopeai.storage.memory import InMemoryConversationRepository
from scopeai.tools import builtin_tools
from scopeai.tools.navigation import match_page
from scopeai.tools.registry import ToolRegistry
from scopeai.utils.logging import bind_turn, get_logger

log = get_logger(__name__)

GENERIC_FAILURE = "Ett fel uppstod. Försök igen."
AWAITING_CONFIRMATION = "Väntar på din bekräftelse innan jag fortsätter."

_AGENT_NAMES: dict[AgentDomain, str] = {cls.domain: cls.name for cls in DOMAIN_AGENTS}


# ---------------------------------------------------------------------------
# Workflow state
# ---------------------------------------------------------------------------

@dataclass
class WorkflowState:
    """Progress of one plan. Survives between turns while confirmations are pending."""

    plan: WorkflowPlan
    intent: Intent
    message: str
    # Context of the turn that started the plan; resumes run against it
    context: AgentContext | None = None
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    responses: dict[str, AgentResponse] = field(default_factory=dict)
    # confirmation id -> step id
    pending: dict[str, str] = field(default_factory=dict)

    @property
    def suspended(self) -> set[str]:
        return set(self.pending.values())

    @property
    def satisfied(self) -> set[str]:
        """Steps whose dependents may run: completed ones and failed optional ones."""
        return set(self.completed) | {s for s in self.failed if self.plan.step(s).optional}

    @property
    def settled(self) -> set[str]:
        return set(self.completed) | set(self.failed) | set(self.skipped) | self.suspended

    def ready(self) -> list[WorkflowStep]:
        settled = self.settled
        return [s for s in get_executable_steps(self.plan, self.satisfied) if s.id not in settled]

    def batch(self) -> list[WorkflowStep]:
        """Ready steps that may run together; the rest wait for the next round."""
        batch: list[WorkflowStep] = []
        for step in self.ready():
            if all(can_run_parallel(self.plan, step.id, other.id) for other in batch):
                batch.append(step)
        return batch

    def fail(self, step: WorkflowStep) -> None:
        self.failed.append(step.id)
        if step.optional:
            return
        blocked = dependents(self.plan, step.id)
        for s in self.plan.steps:
            if s.id in blocked and s.id not in self.skipped:
                self.skipped.append(s.id)


class WorkflowStore:
    """Suspended workflows, one per conversation."""

    def __init__(self) -> None:
        self._states: dict[str, WorkflowState] = {}

    def get(self, conversation_id: str) -> WorkflowState | None:
        return self._states.get(conversation_id)

    def save(self, conversation_id: str, state: WorkflowState) -> None:
        self._states[conversation_id] = state

    def pop(self, conversation_id: str) -> WorkflowState | None:
        return self._states.pop(conversation_id, None)

    def find(self, confirmation_id: str) -> tuple[str, WorkflowState] | None:
        for conversation_id, state in self._states.items():
            if confirmation_id in state.pending:
                return conversation_id, state
        return None

    def clear(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)


class ConversationLocks:
    """Serializes turns per conversation.

    A lock lives only while some turn holds or waits on it, so finished
    conversations leave nothing behind.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._users[conversation_id] = self._users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[conversation_id] -= 1
            if self._users[conversation_id] == 0:
                del self._users[conversation_id]
                del self._locks[conversation_id]

    def active(self) -> list[str]:
        return list(self._locks)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class Orchestrator:
    """Entry point for a user turn.

    Turns are serialized per conversation. Within a turn, independent plan
    steps run concurrently on isolated context copies, bounded by
    ``max_parallel_steps``. A step that returns pending confirmations
    suspends the plan until :meth:`resolve_confirmation` is called.
    """

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolRegistry,
        agents: AgentRegistry,
        bus: AgentMessageBus | None = None,
        classifier: Classifier | None = None,
        conversations: ConversationRepository | None = None,
        settings: Settings | None = None,
        workflows: WorkflowStore | None = None,
        metrics: MetricsCollector | None = None,
        history: HistoryWindow | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._llm = llm
        self._tools = tools
        self._agents = agents
        self._bus = bus if bus is not None else AgentMessageBus()
        self._classifier = classifier or PatternClassifier()
        self._conversations = conversations if conversations is not None else InMemoryConversationRepository()
        self._workflows = workflows if workflows is not None else WorkflowStore()
        self._metrics = metrics if metrics is not None else MetricsCollector()
        self._history = history or HistoryWindow(
            max_messages=self._settings.agents.max_history_messages,
            max_tokens=self._settings.agents.max_history_tokens,
        )
        self._locks = ConversationLocks()
        agents.attach(self._bus)

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    @property
    def workflows(self) -> WorkflowStore:
        return self._workflows

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def conversations(self) -> ConversationRepository:
        return self._conversations

    @property
    def locks(self) -> ConversationLocks:
        return self._locks

    async def close(self) -> None:
        await self._llm.close()

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------

    async def handle(self, message: str, context: AgentContext) -> AgentResponse:
        with bind_turn(context.conversation_id, context.user_id, context.company_id):
            async with self._locks.hold(context.conversation_id):
                return await self._handle(message, context)

    async def _handle(self, message: str, context: AgentContext) -> AgentResponse:
        start = time.monotonic()
        await self._ensure_conversation(message, context)
        stored = await self._conversations.messages(
            context.conversation_id, limit=self._settings.agents.max_history_messages
        )
        context.history = self._history.from_stored(stored)
        await self._conversations.add_message(context.conversation_id, "user", message)

        try:
            intent = await self._classifier.classify(message, context)
        except ScopeError as e:
            log.error("intent_classification_failed", error=str(e))
            return await self._finish(message, context, None, self._error(str(e)), start, start)
        context.intent = intent
        classified = time.monotonic()
        log.info(
            "intent_classified",
            category=intent.category.value,
            confidence=intent.confidence,
            source=intent.source,
            multi=intent.requires_multi_agent,
            entities=len(intent.entities),
        )

        if self._workflows.pop(context.conversation_id) is not None:
            log.info("workflow_abandoned", conversation_id=context.conversation_id)

        try:
            response = await self._route(message, intent, context)
        except ScopeError as e:
            log.error("orchestrator_route_failed", error=str(e))
            response = self._error(str(e))
        return await self._finish(message, context, intent, response, start, classified)

    async def _route(self, message: str, intent: Intent, context: AgentContext) -> AgentResponse:
        if intent.confidence < self._settings.orchestrator.clarify_threshold:
            return self._clarify(intent)
        if intent.category == IntentCategory.NAVIGATION:
            return await self._navigate(message, context)

        plan = create_workflow_plan(intent, message)
        state = WorkflowState(plan=plan, intent=intent, message=message, context=context)
        return await self._run_workflow(state, context)

    async def _finish(
        self,
        message: str,
        context: AgentContext,
        intent: Intent | None,
        response: AgentResponse,
        start: float,
        classified: float,
    ) -> AgentResponse:
        now = time.monotonic()
        response.latency_ms = int((now - start) * 1000)
        await self._conversations.add_message(
            context.conversation_id,
            "assistant",
            response.message,
            metadata={
                "agent": response.agent.value,
                "success": response.success,
                "confirmations": [c.confirmation_id for c in response.confirmations],
            },
        )
        if intent is not None:
            self._metrics.record(
                user_id=context.user_id,
                company_id=context.company_id,
                conversation_id=context.conversation_id,
                intent=intent.category,
                intent_confidence=intent.confidence,
                selected_agent=response.agent,
                is_multi_agent=intent.requires_multi_agent,
                classification_time_ms=int((classified - start) * 1000),
                execution_time_ms=int((now - classified) * 1000),
                response=response,
            )
        return response

    async def _ensure_conversation(self, message: str, context: AgentContext) -> None:
        if await self._conversations.get_by_id(context.conversation_id) is None:
            await self._conversations.create(
                context.user_id,
                title=message[:50],
                conversation_id=context.conversation_id,
            )

    # ------------------------------------------------------------------
    # Special routes
    # ------------------------------------------------------------------

    def _clarify(self, intent: Intent) -> AgentResponse:
        options = [d for d in intent.suggested_domains if d in _AGENT_NAMES][:3]
        if not options and intent.matched and intent.target_domain != AgentDomain.ORCHESTRATOR:
            options = [intent.target_domain]
        if options:
            lines = [f"{i}) {_AGENT_NAMES[d]}" for i, d in enumerate(options, start=1)]
            text = "Jag är osäker på vad du menar. Handlar det om:\n" + "\n".join(lines) + "\n\nVilket passar bäst?"
        else:
            text = (
                "Jag är osäker på vad du menar. Kan du beskriva vad du vill göra? "
                "Jag kan hjälpa till med bokföring, fakturor, kvitton, löner och skatt."
            )
        log.info("orchestrator_clarify", confidence=intent.confidence, options=[d.value for d in options])
        return AgentResponse(success=True, message=text, agent=AgentDomain.ORCHESTRATOR)

    async def _navigate(self, message: str, context: AgentContext) -> AgentResponse:
        page = match_page(message)
        if page is None:
            return AgentResponse(
                success=True,
                message='Vart vill du navigera? Säg till exempel "gå till fakturor" eller "öppna kvitton".',
                agent=AgentDomain.ORCHESTRATOR,
            )
        outcome = await self._tools.execute("navigate", {"page": page}, context)
        # navigate is read-only, so it never comes back as a confirmation
        assert isinstance(outcome, AgentToolResult)
        if not outcome.success:
            return self._error(outcome.error or "navigation failed", tool_results=[outcome])
        data: dict[str, Any] = (outcome.result or {}).get("data", {})
        return AgentResponse(
            success=True,
            message=f"Navigerar till {page}...",
            agent=AgentDomain.ORCHESTRATOR,
            tool_results=[outcome],
            navigation=data,
        )

    # ------------------------------------------------------------------
    # Workflow execution
    # ------------------------------------------------------------------

    async def _run_workflow(self, state: WorkflowState, context: AgentContext) -> AgentResponse:
        plan = state.plan
        plan.status = "running"
        semaphore = asyncio.Semaphore(self._settings.orchestrator.max_parallel_steps)

        while True:
            ready = state.batch()
            if not ready:
                break
            log.info("workflow_dispatch", plan_id=plan.id, steps=[s.id for s in ready])
            results = await asyncio.gather(
                *(self._run_step(step, state, context, semaphore) for step in ready),
                return_exceptions=True,
            )
            for step, result in zip(ready, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    log.error("workflow_step_error", step=step.id, domain=step.domain.value, error=str(result))
                    result = self._error(str(result) or type(result).__name__, agent=step.domain)
                self._settle(state, step, result, context)

        if state.pending:
            plan.status = "suspended"
            self._workflows.save(context.conversation_id, state)
            log.info("workflow_suspended", plan_id=plan.id, pending=len(state.pending))
        else:
            plan.status = "failed" if any(not plan.step(s).optional for s in state.failed) else "completed"
            self._workflows.pop(context.conversation_id)
            log.info(
                "workflow_finished",
                plan_id=plan.id,
                status=plan.status,
                completed=len(state.completed),
                failed=len(state.failed),
                skipped=len(state.skipped),
            )
        return self._aggregate(state)

    async def _run_step(
        self,
        step: WorkflowStep,
        state: WorkflowState,
        context: AgentContext,
        semaphore: asyncio.Semaphore,
    ) -> AgentResponse:
        async with semaphore:
            # Each step gets its own copy so concurrent agents never share mutable state
            step_context = context.isolated()
            for dep in step.depends_on:
                earlier = state.responses.get(dep)
                if earlier is not None:
                    step_context.shared_memory[f"step:{dep}"] = earlier.message
            return await self._bus.request(
                AgentDomain.ORCHESTRATOR,
                step.domain,
                step.action,
                step_context,
                intent=state.intent,
                payload={"plan_id": state.plan.id, "step_id": step.id},
            )

    def _settle(self, state: WorkflowState, step: WorkflowStep, response: AgentResponse, context: AgentContext) -> None:
        state.responses[step.id] = response
        if response.confirmations:
            for confirmation in response.confirmations:
                state.pending[confirmation.confirmation_id] = step.id
        elif response.success:
            state.completed.append(step.id)
            context.shared_memory[f"step:{step.id}"] = response.message
        else:
            log.warning("workflow_step_failed", step=step.id, domain=step.domain.value, optional=step.optional)
            state.fail(step)

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    async def resolve_confirmation(
        self,
        confirmation_id: str,
        approve: bool,
        context: AgentContext,
    ) -> AgentResponse:
        """Apply a human decision and resume the suspended plan, if any.

        The resume runs under the conversation that owns the plan, whatever
        conversation the caller is in. Confirmation errors other than expiry
        propagate to the caller.
        """
        owner = self._workflows.find(confirmation_id)
        conversation_id = owner[0] if owner is not None else context.conversation_id
        with bind_turn(conversation_id, context.user_id, context.company_id):
            return await self._resume(confirmation_id, approve, context, conversation_id)

    async def _resume(
        self,
        confirmation_id: str,
        approve: bool,
        context: AgentContext,
        conversation_id: str,
    ) -> AgentResponse:
        async with self._locks.hold(conversation_id):
            # A turn that held the lock may have abandoned the plan meanwhile
            found = self._workflows.find(confirmation_id)
            result = await self._resolve_tool(confirmation_id, approve, context)
            if found is None:
                return AgentResponse(
                    success=result.success,
                    message=self._describe(result),
                    agent=AgentDomain.ORCHESTRATOR,
                    tool_results=[result],
                    error=result.error if not result.success else None,
                )

            owner_id, state = found
            run_context = state.context or replace(context, conversation_id=owner_id)
            step_id = state.pending.pop(confirmation_id)
            step = state.plan.step(step_id)
            response = state.responses[step_id]
            response.tool_results.append(result)
            response.confirmations = [
                c for c in response.confirmations if c.confirmation_id != confirmation_id
            ]
            if not result.success:
                response.success = False
                response.error = result.error
            # A step settles once its last confirmation is answered
            if step_id not in state.suspended:
                if response.success:
                    state.completed.append(step_id)
                    run_context.shared_memory[f"step:{step_id}"] = response.message
                else:
                    state.fail(step)
            log.info("workflow_resumed", plan_id=state.plan.id, step=step_id, approved=approve)
            resumed = await self._run_workflow(state, run_context)
            resumed.message = f"{self._describe(result)}\n\n{resumed.message}".strip()
            return resumed

    async def _resolve_tool(self, confirmation_id: str, approve: bool, context: AgentContext) -> AgentToolResult:
        try:
            return await self._tools.resolve(confirmation_id, approve, context)
        except ConfirmationExpiredError as e:
            tool_name = e.confirmation.tool_name if e.confirmation is not None else "unknown"
            return AgentToolResult(tool_name=tool_name, success=False, error=str(e))

    @staticmethod
    def _describe(result: AgentToolResult) -> str:
        if result.success:
            payload = result.result if isinstance(result.result, dict) else {}
            return str(payload.get("message") or "Klart.")
        return result.error or GENERIC_FAILURE

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _aggregate(self, state: WorkflowState) -> AgentResponse:
        plan = state.plan
        ordered = [(s, state.responses[s.id]) for s in plan.steps if s.id in state.responses]
        failed_required = [s for s in state.failed if not plan.step(s).optional]

        if len(plan.steps) == 1 and ordered:
            step, only = ordered[0]
            response = AgentResponse(
                success=only.success,
                message=only.message,
                agent=step.domain,
                tool_results=list(only.tool_results),
                confirmations=list(only.confirmations),
                navigation=only.navigation,
                error=only.error,
                should_retry=only.should_retry,
                usage=only.usage,
            )
            if state.pending:
                response.message = f"{response.message}\n\n{AWAITING_CONFIRMATION}".strip()
            return response

        sections: list[str] = []
        usage: LLMUsage | None = None
        response = AgentResponse(success=not failed_required, message="", agent=AgentDomain.ORCHESTRATOR)
        for step, result in ordered:
            name = _AGENT_NAMES.get(step.domain, step.domain.value)
            sections.append(f"**{name}**\n{result.message}")
            response.tool_results.extend(result.tool_results)
            response.confirmations.extend(result.confirmations)
            if result.navigation is not None:
                response.navigation = result.navigation
            if result.usage is not None:
                if usage is None:
                    usage = LLMUsage()
                usage.prompt_tokens += result.usage.prompt_tokens
                usage.completion_tokens += result.usage.completion_tokens
                usage.total_tokens += result.usage.total_tokens
        if state.skipped:
            skipped = ", ".join(plan.step(s).action.split("\n", 1)[0] for s in state.skipped)
            sections.append(f"Hoppade över: {skipped}")
        if state.pending:
            sections.append(AWAITING_CONFIRMATION)

        response.message = "\n\n".join(sections)
        response.usage = usage
        if failed_required:
            errors = [state.responses[s].error for s in failed_required if state.responses[s].error]
            response.error = "; ".join(e for e in errors if e) or "workflow step failed"
            response.should_retry = any(state.responses[s].should_retry for s in failed_required)
        return response

    @staticmethod
    def _error(
        error: str,
        agent: AgentDomain = AgentDomain.ORCHESTRATOR,
        tool_results: list[AgentToolResult] | None = None,
    ) -> AgentResponse:
        return AgentResponse(
            success=False,
            message=GENERIC_FAILURE,
            agent=agent,
            tool_results=list(tool_results or []),
            error=error,
        )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def create_orchestrator(
    settings: Settings | None = None,
    *,
    llm: LLMClient | None = None,
    ledger: Ledger | None = None,
    audit_repository: AuditRepository | None = None,
    conversations: ConversationRepository | None = None,
) -> Orchestrator:
    """Build an orchestrator with the default agents and tools."""
    settings = settings or Settings()
    llm = llm or LLMClient(settings.llm)
    tools = ToolRegistry(
        audit=AuditLog(audit_repository),
        confirmations=ConfirmationStore(ttl_seconds=settings.confirmations.ttl_seconds),
    )
    tools.register_all(builtin_tools(ledger if ledger is not None else Ledger()))
    agents = create_default_agents(llm, tools, settings.agents)

    classifier: Classifier = PatternClassifier()
    if settings.classifier.use_llm:
        classifier = FallbackClassifier(
            classifier,
            LLMClassifier(llm, model=settings.classifier.model, timeout=settings.classifier.timeout),
            llm_threshold=settings.classifier.llm_threshold,
        )

    return Orchestrator(
        llm=llm,
        tools=tools,
        agents=agents,
        classifier=classifier,
        conversations=conversations,
        settings=settings,
    )
