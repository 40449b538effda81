"""Domain enumerations shared by the workflow, escalation, and thread modules."""

from enum import StrEnum


class ExecutionStatus(StrEnum):
    """Lifecycle states of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepKind(StrEnum):
    """Kinds of workflow steps the engine knows how to dispatch."""

    MESSAGE = "message"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"
    INTEGRATION = "integration"


class ActionKind(StrEnum):
    """Built-in actions available to ``action`` steps."""

    ASSIGN_USER = "assign_user"
    CREATE_THREAD = "create_thread"
    ADD_REACTION = "add_reaction"
    UPDATE_DATA = "update_data"


class ConditionOperator(StrEnum):
    """Comparison operators for workflow conditions."""

    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"


class TriggerKind(StrEnum):
    """Event sources that can start a workflow."""

    MESSAGE = "message"
    MENTION = "mention"
    REACTION = "reaction"
    COMMAND = "command"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"


class MentionType(StrEnum):
    """What a Slack mention addressed."""

    USER = "user"
    CHANNEL = "channel"
    TEAM = "team"
    HERE = "here"
    EVERYONE = "everyone"


class Priority(StrEnum):
    """Priority levels, ordered from least to most pressing."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Sentiment(StrEnum):
    """Coarse sentiment of a message or thread."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class MentionConditionType(StrEnum):
    """Attributes of a mention event a rule condition can test."""

    KEYWORD = "keyword"
    USER = "user"
    CHANNEL = "channel"
    TIME = "time"
    SENTIMENT = "sentiment"
    URGENCY = "urgency"
    PRIORITY = "priority"
    CATEGORY = "category"


class MentionActionType(StrEnum):
    """Actions a mention rule can execute."""

    NOTIFY = "notify"
    ESCALATE = "escalate"
    ASSIGN = "assign"
    CREATE_THREAD = "create_thread"
    ADD_REACTION = "add_reaction"
    FORWARD = "forward"


class NotificationKind(StrEnum):
    """Why a mention notification was sent."""

    DIRECT = "direct"
    ESCALATION = "escalation"
    SUMMARY = "summary"


class NotificationStatus(StrEnum):
    """Delivery lifecycle of a mention notification."""

    PENDING = "pending"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    EXPIRED = "expired"


class NotificationStrategy(StrEnum):
    """How a team mention is fanned out to team members."""

    BROADCAST = "broadcast"
    SEQUENTIAL = "sequential"
    ONCALL = "oncall"


class ParticipantRole(StrEnum):
    """Role of a participant in a conversation thread."""

    REQUESTER = "requester"
    ASSIGNEE = "assignee"
    OBSERVER = "observer"
    ADMIN = "admin"


class ActivityKind(StrEnum):
    """Kinds of activity recorded against a thread."""

    MESSAGE = "message"
    REACTION = "reaction"
    MENTION = "mention"
    FILE_UPLOAD = "file_upload"
    BOT_ACTION = "bot_action"


# Statuses from which an execution never leaves.
TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)

# Notification statuses that still count as waiting for a human.
OUTSTANDING_NOTIFICATION_STATUSES: frozenset[NotificationStatus] = frozenset(
    {NotificationStatus.PENDING, NotificationStatus.SENT}
)
