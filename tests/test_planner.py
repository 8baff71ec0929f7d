"""Tests for workflow planning and dependency queries."""

import pytest

from scopeai.errors import PlanError
from scopeai.models import AgentDomain, Intent, IntentCategory
from scopeai.orchestrator.planner import (
    TEMPLATES,
    WorkflowPlan,
    WorkflowStep,
    can_run_parallel,
    create_workflow_plan,
    dependents,
    get_executable_steps,
    match_template,
    validate,
)


def _plan(*steps: WorkflowStep) -> WorkflowPlan:
    return WorkflowPlan(name="test", steps=list(steps))


@pytest.fixture
def abc_plan():
    # A and B are independent, C waits for both
    return _plan(
        WorkflowStep(id="A", domain=AgentDomain.RECEIPTS, action="a"),
        WorkflowStep(id="B", domain=AgentDomain.INVOICES, action="b"),
        WorkflowStep(id="C", domain=AgentDomain.SKATT, action="c", depends_on=["A", "B"]),
    )


class TestExecutableSteps:
    def test_roots_first(self, abc_plan):
        assert [s.id for s in get_executable_steps(abc_plan, [])] == ["A", "B"]

    def test_partial_completion(self, abc_plan):
        assert [s.id for s in get_executable_steps(abc_plan, ["A"])] == ["B"]

    def test_join_after_both(self, abc_plan):
        assert [s.id for s in get_executable_steps(abc_plan, ["A", "B"])] == ["C"]

    def test_all_done(self, abc_plan):
        assert get_executable_steps(abc_plan, ["A", "B", "C"]) == []


class TestParallelism:
    def test_independent_steps(self, abc_plan):
        assert can_run_parallel(abc_plan, "A", "B")

    def test_dependency_blocks(self, abc_plan):
        assert not can_run_parallel(abc_plan, "A", "C")
        assert not can_run_parallel(abc_plan, "C", "B")

    def test_same_step(self, abc_plan):
        assert not can_run_parallel(abc_plan, "A", "A")

    def test_same_domain(self):
        plan = _plan(
            WorkflowStep(id="x", domain=AgentDomain.STATISTIK, action="x"),
            WorkflowStep(id="y", domain=AgentDomain.STATISTIK, action="y"),
        )
        assert not can_run_parallel(plan, "x", "y")

    def test_transitive_dependency(self):
        plan = _plan(
            WorkflowStep(id="1", domain=AgentDomain.BOKFORING, action="1"),
            WorkflowStep(id="2", domain=AgentDomain.SKATT, action="2", depends_on=["1"]),
            WorkflowStep(id="3", domain=AgentDomain.RAPPORTER, action="3", depends_on=["2"]),
        )
        assert not can_run_parallel(plan, "1", "3")
        assert dependents(plan, "1") == {"2", "3"}
        assert dependents(plan, "3") == set()


class TestValidate:
    def test_duplicate_ids(self):
        plan = _plan(
            WorkflowStep(id="a", domain=AgentDomain.SKATT, action=""),
            WorkflowStep(id="a", domain=AgentDomain.LONER, action=""),
        )
        with pytest.raises(PlanError, match="Duplicate"):
            validate(plan)

    def test_unknown_dependency(self):
        plan = _plan(WorkflowStep(id="a", domain=AgentDomain.SKATT, action="", depends_on=["ghost"]))
        with pytest.raises(PlanError, match="unknown step ghost"):
            validate(plan)

    def test_cycle(self):
        plan = _plan(
            WorkflowStep(id="a", domain=AgentDomain.SKATT, action="", depends_on=["b"]),
            WorkflowStep(id="b", domain=AgentDomain.LONER, action="", depends_on=["a"]),
            WorkflowStep(id="c", domain=AgentDomain.RAPPORTER, action=""),
        )
        with pytest.raises(PlanError, match="cycle"):
            validate(plan)

    def test_plan_error_is_value_error(self):
        assert issubclass(PlanError, ValueError)

    @pytest.mark.parametrize("key", sorted(TEMPLATES))
    def test_templates_are_valid(self, key):
        message = TEMPLATES[key].keywords[0]
        plan = create_workflow_plan(Intent(category=IntentCategory.GENERAL, confidence=0.5), message)
        assert plan.template == key
        validate(plan)


class TestTemplates:
    @pytest.mark.parametrize("message,key", [
        ("Hjälp mig med momsdeklarationen", "momsdeklaration"),
        ("Dags för årsbokslut", "arsbokslut"),
        ("Vi ska betala lön på fredag", "loneutbetalning"),
        ("Hur går det för företaget?", "halsokontroll"),
        ("Skapa faktura till Acme", "ny-faktura"),
    ])
    def test_keyword_match(self, message, key):
        assert match_template(message) == key

    def test_no_match(self):
        assert match_template("Vad kostar en kaffe?") is None

    def test_template_plan_carries_message(self):
        intent = Intent(category=IntentCategory.TAX, confidence=0.8, target_domain=AgentDomain.SKATT)
        plan = create_workflow_plan(intent, "Gör momsdeklarationen för Q1")

        assert plan.template == "momsdeklaration"
        assert [s.id for s in plan.steps] == ["check-receipts", "check-invoices", "calc-vat", "submit"]
        assert all("Gör momsdeklarationen för Q1" in s.action for s in plan.steps)
        assert plan.step("calc-vat").depends_on == ["check-receipts", "check-invoices"]
        assert can_run_parallel(plan, "check-receipts", "check-invoices")

    def test_step_lookup_missing(self):
        plan = create_workflow_plan(Intent(category=IntentCategory.GENERAL, confidence=0.5), "ny faktura")
        assert plan.step("log-event").optional
        with pytest.raises(KeyError):
            plan.step("nope")


class TestDynamicPlans:
    def test_single_domain(self):
        intent = Intent(category=IntentCategory.PAYROLL, confidence=0.8, target_domain=AgentDomain.LONER)
        plan = create_workflow_plan(intent, "Visa lönebeskeden")

        assert plan.template is None
        assert len(plan.steps) == 1
        assert plan.steps[0].domain == AgentDomain.LONER
        assert plan.steps[0].action == "Visa lönebeskeden"

    def test_multi_domain_runs_in_parallel(self):
        intent = Intent(
            category=IntentCategory.INVOICE,
            confidence=0.65,
            target_domain=AgentDomain.INVOICES,
            requires_multi_agent=True,
            suggested_domains=[AgentDomain.INVOICES, AgentDomain.SKATT, AgentDomain.INVOICES],
        )
        plan = create_workflow_plan(intent, "moms på fakturan")

        assert [s.domain for s in plan.steps] == [AgentDomain.INVOICES, AgentDomain.SKATT]
        assert [s.id for s in plan.steps] == ["step-0", "step-1"]
        assert all(not s.depends_on for s in plan.steps)
        assert can_run_parallel(plan, "step-0", "step-1")

    def test_multi_without_suggestions_falls_back_to_target(self):
        intent = Intent(
            category=IntentCategory.MULTI_DOMAIN,
            confidence=0.7,
            target_domain=AgentDomain.ORCHESTRATOR,
            requires_multi_agent=True,
        )
        plan = create_workflow_plan(intent, "allt möjligt")
        assert [s.domain for s in plan.steps] == [AgentDomain.ORCHESTRATOR]
