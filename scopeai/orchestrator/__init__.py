"""Intent classification, workflow planning and request orchestration."""

from scopeai.orchestrator.agent import Orchestrator, WorkflowState, WorkflowStore, create_orchestrator
from scopeai.orchestrator.classifier import (
    CATEGORY_PRIORITY,
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
    get_executable_steps,
    validate,
)

__all__ = [
    "Orchestrator",
    "WorkflowState",
    "WorkflowStore",
    "create_orchestrator",
    "CATEGORY_PRIORITY",
    "Classifier",
    "FallbackClassifier",
    "LLMClassifier",
    "PatternClassifier",
    "WorkflowPlan",
    "WorkflowStep",
    "can_run_parallel",
    "create_workflow_plan",
    "get_executable_steps",
    "validate",
]
