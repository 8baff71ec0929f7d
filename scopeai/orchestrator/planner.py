"""Workflow plans: keyword templates, dynamic plans and dependency queries."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable, Literal
from uuid import uuid4

from scopeai.errors import PlanError
from scopeai.models import AgentDomain, Intent
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class WorkflowStep:
    id: str
    domain: AgentDomain
    action: str
    depends_on: list[str] = field(default_factory=list)
    optional: bool = False


@dataclass
class WorkflowPlan:
    name: str
    steps: list[WorkflowStep]
    description: str = ""
    template: str | None = None
    status: Literal["pending", "running", "suspended", "completed", "failed"] = "pending"
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    created_at: float = field(default_factory=time.time)

    def step(self, step_id: str) -> WorkflowStep:
        for s in self.steps:
            if s.id == step_id:
                return s
        raise KeyError(step_id)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Template:
    name: str
    description: str
    keywords: tuple[str, ...]
    # (id, domain, action, depends_on, optional)
    steps: tuple[tuple[str, AgentDomain, str, tuple[str, ...], bool], ...]


TEMPLATES: dict[str, _Template] = {
    "arsbokslut": _Template(
        name="Årsbokslut",
        description="Förbered årsbokslut med alla nödvändiga steg",
        keywords=("årsbokslut", "bokslut", "avsluta året", "stäng böckerna"),
        steps=(
            ("check-open", AgentDomain.BOKFORING, "Kontrollera och stäng öppna verifikationer", (), False),
            ("periodisering", AgentDomain.SKATT, "Beräkna periodiseringsfonder och skatteavsättningar",
             ("check-open",), False),
            ("generate-reports", AgentDomain.RAPPORTER, "Generera resultat- och balansräkning",
             ("periodisering",), False),
            ("check-compliance", AgentDomain.COMPLIANCE, "Kontrollera deadlines för årsredovisning",
             ("generate-reports",), False),
        ),
    ),
    "loneutbetalning": _Template(
        name="Löneutbetalning",
        description="Processa löneutbetalning och relaterade rapporter",
        keywords=("betala lön", "löneutbetalning", "lönedag"),
        steps=(
            ("calc-salary", AgentDomain.LONER, "Beräkna lön med skatt och avgifter", (), False),
            ("book-salary", AgentDomain.BOKFORING, "Bokför lönekostnader", ("calc-salary",), False),
            ("log-event", AgentDomain.HANDELSER, "Logga löneutbetalning i händelseloggen",
             ("book-salary",), False),
        ),
    ),
    "momsdeklaration": _Template(
        name="Momsdeklaration",
        description="Förbered och skicka momsdeklaration",
        keywords=("momsdeklaration", "deklarera moms", "moms till skatteverket"),
        steps=(
            ("check-receipts", AgentDomain.RECEIPTS, "Kontrollera att alla kvitton är bokförda", (), False),
            ("check-invoices", AgentDomain.INVOICES, "Kontrollera kundfakturor för perioden", (), False),
            ("calc-vat", AgentDomain.SKATT, "Beräkna moms för perioden",
             ("check-receipts", "check-invoices"), False),
            ("submit", AgentDomain.COMPLIANCE, "Förbered inlämning till Skatteverket", ("calc-vat",), False),
        ),
    ),
    "halsokontroll": _Template(
        name="Företagshälsokontroll",
        description="Komplett genomgång av företagets ekonomiska status",
        keywords=("hur går det", "företagets hälsa", "ekonomisk status", "översikt"),
        steps=(
            ("kpis", AgentDomain.STATISTIK, "Beräkna alla nyckeltal", (), False),
            ("reports", AgentDomain.RAPPORTER, "Generera finansiella rapporter", (), False),
            ("deadlines", AgentDomain.COMPLIANCE, "Kontrollera kommande deadlines", (), False),
            ("summary", AgentDomain.STATISTIK, "Sammanfatta företagets hälsa",
             ("kpis", "reports", "deadlines"), False),
        ),
    ),
    "ny-faktura": _Template(
        name="Ny kundfaktura",
        description="Skapa och bokför ny kundfaktura",
        keywords=("skapa faktura", "ny faktura", "fakturera"),
        steps=(
            ("create-invoice", AgentDomain.INVOICES, "Skapa faktura", (), False),
            ("book-invoice", AgentDomain.BOKFORING, "Bokför fakturan", ("create-invoice",), False),
            ("log-event", AgentDomain.HANDELSER, "Logga i händelseloggen", ("book-invoice",), True),
        ),
    ),
}


def match_template(message: str) -> str | None:
    lowered = message.lower()
    for key, template in TEMPLATES.items():
        if any(keyword in lowered for keyword in template.keywords):
            return key
    return None


def _from_template(key: str, message: str) -> WorkflowPlan:
    template = TEMPLATES[key]
    steps = [
        WorkflowStep(
            id=step_id,
            domain=domain,
            # The user's own words travel with the template task
            action=f"{action}\n\nAnvändarens fråga: {message}",
            depends_on=list(deps),
            optional=optional,
        )
        for step_id, domain, action, deps, optional in template.steps
    ]
    return WorkflowPlan(name=template.name, description=template.description, steps=steps, template=key)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

def create_workflow_plan(intent: Intent, message: str) -> WorkflowPlan:
    """Plan for a request: a matching template, else one step per domain."""
    key = match_template(message)
    if key is not None:
        plan = _from_template(key, message)
    else:
        domains = list(intent.suggested_domains) if intent.requires_multi_agent else []
        if not domains:
            domains = [intent.target_domain]
        steps = []
        for domain in domains:
            if any(s.domain == domain for s in steps):
                continue
            steps.append(WorkflowStep(id=f"step-{len(steps)}", domain=domain, action=message))
        plan = WorkflowPlan(
            name="Dynamiskt arbetsflöde",
            description=f"Genererat för: {message[:50]}",
            steps=steps,
        )

    validate(plan)
    log.info(
        "workflow_planned",
        plan_id=plan.id,
        template=plan.template,
        steps=[s.id for s in plan.steps],
    )
    return plan


def validate(plan: WorkflowPlan) -> None:
    """Raise :class:`PlanError` on duplicate ids, unknown dependencies or cycles."""
    ids: set[str] = set()
    for step in plan.steps:
        if step.id in ids:
            raise PlanError(f"Duplicate step id: {step.id}")
        ids.add(step.id)

    for step in plan.steps:
        for dep in step.depends_on:
            if dep not in ids:
                raise PlanError(f"Step {step.id} depends on unknown step {dep}")

    # Kahn's algorithm; anything left over sits on a cycle
    remaining = {s.id: set(s.depends_on) for s in plan.steps}
    while remaining:
        ready = [sid for sid, deps in remaining.items() if not deps]
        if not ready:
            raise PlanError(f"Dependency cycle among steps: {', '.join(sorted(remaining))}")
        for sid in ready:
            del remaining[sid]
        for deps in remaining.values():
            deps.difference_update(ready)


def get_executable_steps(plan: WorkflowPlan, completed: Iterable[str]) -> list[WorkflowStep]:
    """Steps not yet completed whose dependencies all are, in plan order."""
    done = set(completed)
    return [
        step for step in plan.steps
        if step.id not in done and all(dep in done for dep in step.depends_on)
    ]


def _ancestors(plan: WorkflowPlan, step_id: str) -> set[str]:
    found: set[str] = set()
    stack = list(plan.step(step_id).depends_on)
    while stack:
        current = stack.pop()
        if current in found:
            continue
        found.add(current)
        stack.extend(plan.step(current).depends_on)
    return found


def can_run_parallel(plan: WorkflowPlan, a: str, b: str) -> bool:
    """True when neither step depends on the other and they use different agents."""
    if a == b:
        return False
    if plan.step(a).domain == plan.step(b).domain:
        return False
    return a not in _ancestors(plan, b) and b not in _ancestors(plan, a)


def dependents(plan: WorkflowPlan, step_id: str) -> set[str]:
    """Every step that depends on ``step_id``, directly or transitively."""
    return {s.id for s in plan.steps if step_id in _ancestors(plan, s.id)}
