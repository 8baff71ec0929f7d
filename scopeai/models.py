"""Typed models shared by agents, tools and the orchestrator."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from scopeai.core.llm.types import LLMMessage, LLMUsage


class AgentDomain(str, Enum):
    ORCHESTRATOR = "orchestrator"
    BOKFORING = "bokforing"          # accounting, verifications, chart of accounts
    RECEIPTS = "receipts"
    INVOICES = "invoices"
    LONER = "loner"                  # payroll
    SKATT = "skatt"                  # tax, VAT
    RAPPORTER = "rapporter"          # financial reports
    COMPLIANCE = "compliance"
    STATISTIK = "statistik"          # KPIs, company health
    HANDELSER = "handelser"          # events, corporate actions
    INSTALLNINGAR = "installningar"  # settings, integrations


class IntentCategory(str, Enum):
    RECEIPT = "RECEIPT"
    INVOICE = "INVOICE"
    BOOKKEEPING = "BOOKKEEPING"
    PAYROLL = "PAYROLL"
    TAX = "TAX"
    REPORTING = "REPORTING"
    COMPLIANCE = "COMPLIANCE"
    STATISTICS = "STATISTICS"
    EVENTS = "EVENTS"
    SETTINGS = "SETTINGS"
    NAVIGATION = "NAVIGATION"
    GENERAL = "GENERAL"
    MULTI_DOMAIN = "MULTI_DOMAIN"


CATEGORY_DOMAINS: dict[IntentCategory, AgentDomain] = {
    IntentCategory.RECEIPT: AgentDomain.RECEIPTS,
    IntentCategory.INVOICE: AgentDomain.INVOICES,
    IntentCategory.BOOKKEEPING: AgentDomain.BOKFORING,
    IntentCategory.PAYROLL: AgentDomain.LONER,
    IntentCategory.TAX: AgentDomain.SKATT,
    IntentCategory.REPORTING: AgentDomain.RAPPORTER,
    IntentCategory.COMPLIANCE: AgentDomain.COMPLIANCE,
    IntentCategory.STATISTICS: AgentDomain.STATISTIK,
    IntentCategory.EVENTS: AgentDomain.HANDELSER,
    IntentCategory.SETTINGS: AgentDomain.INSTALLNINGAR,
    IntentCategory.NAVIGATION: AgentDomain.ORCHESTRATOR,
    IntentCategory.GENERAL: AgentDomain.ORCHESTRATOR,
    IntentCategory.MULTI_DOMAIN: AgentDomain.ORCHESTRATOR,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

@dataclass
class IntentEntity:
    type: Literal["amount", "date", "account", "person", "company", "document", "period", "other"]
    value: str
    raw: str
    confidence: float = 1.0


@dataclass
class Intent:
    category: IntentCategory
    confidence: float
    target_domain: AgentDomain = AgentDomain.ORCHESTRATOR
    sub_intent: str | None = None
    entities: list[IntentEntity] = field(default_factory=list)
    requires_multi_agent: bool = False
    suggested_domains: list[AgentDomain] = field(default_factory=list)
    source: Literal["pattern", "llm"] = "pattern"
    matched: bool = True

    def __post_init__(self) -> None:
        self.confidence = min(max(self.confidence, 0.0), 1.0)


# ---------------------------------------------------------------------------
# Agent context
# ---------------------------------------------------------------------------

@dataclass
class AgentContext:
    user_id: str
    company_id: str
    conversation_id: str = field(default_factory=lambda: uuid4().hex)
    company_type: Literal["AB", "EF", "HB", "KB", "FORENING"] = "AB"
    company_name: str | None = None
    locale: Literal["sv", "en"] = "sv"
    intent: Intent | None = None
    shared_memory: dict[str, Any] = field(default_factory=dict)
    history: list[LLMMessage] = field(default_factory=list)
    consultation_depth: int = 0
    abort: asyncio.Event | None = None

    def isolated(self) -> AgentContext:
        """Copy for a parallel workflow step; the abort signal stays shared."""
        clone = copy.copy(self)
        clone.shared_memory = copy.deepcopy(self.shared_memory)
        clone.history = list(self.history)
        return clone


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------

@dataclass
class AgentToolResult:
    tool_name: str
    success: bool
    result: Any = None
    error: str | None = None
    tool_call_id: str | None = None


@dataclass
class PendingConfirmation:
    tool_name: str
    args: dict[str, Any]
    summary: str
    user_id: str
    created_at: float
    ttl: float
    warnings: list[str] = field(default_factory=list)
    confirmation_id: str = field(default_factory=lambda: uuid4().hex)
    company_id: str = ""
    tool_call_id: str | None = None

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_placeholder(self) -> dict[str, Any]:
        """What the model sees in place of a tool result while a human decides."""
        return {
            "status": "pending_confirmation",
            "confirmation_id": self.confirmation_id,
            "summary": self.summary,
            "warnings": self.warnings,
        }


AuditStatus = Literal["success", "error", "pending", "rejected"]


@dataclass(frozen=True)
class ActionAuditLog:
    tool_name: str
    parameters: dict[str, Any]
    result: Any
    status: AuditStatus
    execution_time_ms: int
    user_id: str
    error_message: str | None = None
    confirmation_id: str | None = None
    company_id: str = ""
    timestamp: datetime = field(default_factory=_now)
    id: str = field(default_factory=lambda: uuid4().hex[:12])


# ---------------------------------------------------------------------------
# Agent responses
# ---------------------------------------------------------------------------

@dataclass
class AgentResponse:
    success: bool
    message: str
    agent: AgentDomain
    tool_results: list[AgentToolResult] = field(default_factory=list)
    confirmations: list[PendingConfirmation] = field(default_factory=list)
    navigation: dict[str, Any] | None = None
    error: str | None = None
    should_retry: bool = False
    usage: LLMUsage | None = None
    latency_ms: int | None = None


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@dataclass
class StoredMessage:
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Conversation:
    user_id: str
    title: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
