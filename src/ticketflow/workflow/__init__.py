"""Workflow definitions, validation and the engine that executes them."""

from ticketflow.workflow.conditions import evaluate_condition, evaluate_conditions, resolve_field
from ticketflow.workflow.engine import (
    WorkflowEngine,
    condition_branch_selector,
    first_listed_selector,
)
from ticketflow.workflow.models import (
    WorkflowCondition,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowSettings,
    WorkflowStep,
    WorkflowTrigger,
)
from ticketflow.workflow.steps import StepRunner
from ticketflow.workflow.validation import ensure_valid, validate_definition

__all__ = [
    "StepRunner",
    "WorkflowCondition",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowExecution",
    "WorkflowSettings",
    "WorkflowStep",
    "WorkflowTrigger",
    "condition_branch_selector",
    "ensure_valid",
    "evaluate_condition",
    "evaluate_conditions",
    "first_listed_selector",
    "resolve_field",
    "validate_definition",
]
