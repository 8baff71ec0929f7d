"""In-process metrics for orchestrated requests."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from scopeai.models import AgentDomain, AgentResponse, IntentCategory
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class AgentMetric:
    user_id: str
    intent: IntentCategory
    intent_confidence: float
    selected_agent: AgentDomain
    is_multi_agent: bool
    classification_time_ms: int
    execution_time_ms: int
    total_time_ms: int
    tools_called: list[str] = field(default_factory=list)
    tools_succeeded: int = 0
    tools_failed: int = 0
    response_success: bool = True
    has_confirmation: bool = False
    has_navigation: bool = False
    company_id: str = ""
    conversation_id: str = ""
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class MetricSummary:
    total_requests: int
    success_rate: float
    avg_response_time_ms: float
    agent_distribution: dict[str, int]
    intent_distribution: dict[str, int]
    top_tools: list[tuple[str, int]]


class MetricsCollector:
    """Keeps the most recent request metrics in memory."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._metrics: deque[AgentMetric] = deque(maxlen=max_entries)

    def record(
        self,
        *,
        user_id: str,
        intent: IntentCategory,
        intent_confidence: float,
        selected_agent: AgentDomain,
        is_multi_agent: bool,
        classification_time_ms: int,
        execution_time_ms: int,
        response: AgentResponse,
        company_id: str = "",
        conversation_id: str = "",
    ) -> AgentMetric:
        metric = AgentMetric(
            user_id=user_id,
            intent=intent,
            intent_confidence=intent_confidence,
            selected_agent=selected_agent,
            is_multi_agent=is_multi_agent,
            classification_time_ms=classification_time_ms,
            execution_time_ms=execution_time_ms,
            total_time_ms=classification_time_ms + execution_time_ms,
            tools_called=[r.tool_name for r in response.tool_results]
            + [c.tool_name for c in response.confirmations],
            tools_succeeded=sum(1 for r in response.tool_results if r.success),
            tools_failed=sum(1 for r in response.tool_results if not r.success),
            response_success=response.success,
            has_confirmation=bool(response.confirmations),
            has_navigation=response.navigation is not None,
            company_id=company_id,
            conversation_id=conversation_id,
            error=response.error,
        )
        self._metrics.append(metric)
        log.info(
            "request_metric",
            agent=selected_agent.value,
            intent=intent.value,
            success=response.success,
            total_ms=metric.total_time_ms,
            tools=len(metric.tools_called),
        )
        return metric

    def entries(self, user_id: str | None = None) -> list[AgentMetric]:
        if user_id is None:
            return list(self._metrics)
        return [m for m in self._metrics if m.user_id == user_id]

    def summary(self) -> MetricSummary:
        metrics = list(self._metrics)
        total = len(metrics)
        if not total:
            return MetricSummary(0, 0.0, 0.0, {}, {}, [])
        tools = Counter(name for m in metrics for name in m.tools_called)
        return MetricSummary(
            total_requests=total,
            success_rate=sum(1 for m in metrics if m.response_success) / total,
            avg_response_time_ms=sum(m.total_time_ms for m in metrics) / total,
            agent_distribution=dict(Counter(m.selected_agent.value for m in metrics)),
            intent_distribution=dict(Counter(m.intent.value for m in metrics)),
            top_tools=tools.most_common(10),
        )

    def clear(self) -> None:
        self._metrics.clear()

    def __len__(self) -> int:
        return len(self._metrics)
