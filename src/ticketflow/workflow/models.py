"""Pydantic v2 models for workflow definitions and their running executions.

Definitions are frozen once built; executions are mutable run instances owned
by the :class:`~ticketflow.workflow.engine.WorkflowEngine`.

Structural fields on definitions default to empty values instead of being
required so that a malformed definition can still be parsed and then
rejected with the complete list of problems by
:func:`~ticketflow.workflow.validation.validate_definition`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ticketflow.domain.types import (
    TERMINAL_STATUSES,
    ConditionOperator,
    ExecutionStatus,
    StepKind,
    TriggerKind,
)


class WorkflowCondition(BaseModel):
    """A single ``(field, operator, value)`` test against an execution's data bag."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: ConditionOperator
    value: Any = None


class WorkflowStep(BaseModel):
    """One node of a workflow graph.

    A step with no ``next_steps`` is terminal.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    name: str = ""
    kind: StepKind | None = Field(default=None, validation_alias=AliasChoices("kind", "type"))
    config: dict[str, Any] | None = None
    conditions: list[WorkflowCondition] = Field(default_factory=list)
    next_steps: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("next_steps", "nextSteps")
    )

    @property
    def is_terminal(self) -> bool:
        """Return True if no step follows this one."""
        return not self.next_steps


class WorkflowTrigger(BaseModel):
    """What kind of inbound event starts the workflow, plus source-specific config."""

    model_config = ConfigDict(frozen=True)

    kind: TriggerKind = TriggerKind.COMMAND
    config: dict[str, Any] = Field(default_factory=dict)


class WorkflowSettings(BaseModel):
    """Execution policy for a workflow.

    ``retry_attempts`` is informational: failed steps are never retried by the
    engine, callers re-run the workflow instead.
    """

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = 3600.0
    retry_attempts: int = 0
    notify_on_completion: bool = False
    notify_on_error: bool = False


class WorkflowDefinition(BaseModel):
    """A registered, named graph of steps."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    description: str = ""
    trigger: WorkflowTrigger = Field(default_factory=WorkflowTrigger)
    steps: list[WorkflowStep] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @property
    def first_step(self) -> WorkflowStep | None:
        """Return the entry step, or None for an empty definition."""
        return self.steps[0] if self.steps else None

    def get_step(self, step_id: str) -> WorkflowStep | None:
        """Look up a step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class WorkflowContext(BaseModel):
    """Mutable per-run state: where the execution is and what it has gathered."""

    workflow_id: str
    execution_id: str
    channel_id: str = ""
    user_id: str = ""
    thread_ts: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    current_step: str = ""
    completed_steps: list[str] = Field(default_factory=list)
    skipped_steps: list[str] = Field(default_factory=list)
    awaiting_input: bool = False
    start_time: datetime
    last_activity: datetime


class WorkflowExecution(BaseModel):
    """One running (or finished) instance of a workflow definition."""

    id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    context: WorkflowContext
    start_time: datetime
    end_time: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        """Return True once the execution has completed, failed, or been cancelled."""
        return self.status in TERMINAL_STATUSES
