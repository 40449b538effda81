"""Domain types and errors for the ticketflow orchestrator."""

from ticketflow.domain.errors import (
    InvalidStateError,
    NotFoundError,
    TicketflowError,
    UnknownActionError,
    ValidationError,
    WorkflowTimeoutError,
)
from ticketflow.domain.types import (
    OUTSTANDING_NOTIFICATION_STATUSES,
    TERMINAL_STATUSES,
    ActionKind,
    ActivityKind,
    ConditionOperator,
    ExecutionStatus,
    MentionActionType,
    MentionConditionType,
    MentionType,
    NotificationKind,
    NotificationStatus,
    NotificationStrategy,
    ParticipantRole,
    Priority,
    Sentiment,
    StepKind,
    TriggerKind,
)

__all__ = [
    "OUTSTANDING_NOTIFICATION_STATUSES",
    "TERMINAL_STATUSES",
    "ActionKind",
    "ActivityKind",
    "ConditionOperator",
    "ExecutionStatus",
    "InvalidStateError",
    "MentionActionType",
    "MentionConditionType",
    "MentionType",
    "NotFoundError",
    "NotificationKind",
    "NotificationStatus",
    "NotificationStrategy",
    "ParticipantRole",
    "Priority",
    "Sentiment",
    "StepKind",
    "TicketflowError",
    "TriggerKind",
    "UnknownActionError",
    "ValidationError",
    "WorkflowTimeoutError",
]
