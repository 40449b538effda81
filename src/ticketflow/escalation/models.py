"""Pydantic v2 models for mention routing: events, rules, teams and notifications."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ticketflow.domain.types import (
    MentionActionType,
    MentionConditionType,
    MentionType,
    NotificationKind,
    NotificationStatus,
    Priority,
    Sentiment,
)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class MentionContext(BaseModel):
    """Heuristic analysis of a mention's text."""

    model_config = ConfigDict(frozen=True)

    is_urgent: bool = False
    priority: Priority = Priority.MEDIUM
    category: str = "general"
    keywords: list[str] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    requires_response: bool = False
    escalation_level: int = 0


class MentionEvent(BaseModel):
    """An inbound mention.  ``message_ts`` doubles as the mention id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: MentionType = Field(
        default=MentionType.USER, validation_alias=AliasChoices("kind", "type")
    )
    mentioned_id: str = ""
    mentioned_by: str = ""
    channel: str = ""
    thread_ts: str | None = None
    message_ts: str = ""
    text: str = ""
    occurred_at: datetime | None = None
    context: MentionContext | None = None

    @property
    def mention_id(self) -> str:
        return self.message_ts

    @property
    def reply_ts(self) -> str:
        """Timestamp to thread replies under."""
        return self.thread_ts or self.message_ts

    def is_valid(self) -> bool:
        """Return True if every field needed for routing is present."""
        return bool(self.mentioned_id and self.mentioned_by and self.channel and self.message_ts)


class MentionCondition(BaseModel):
    """One test against a mention; ``negate`` inverts the outcome."""

    model_config = ConfigDict(frozen=True)

    type: MentionConditionType
    operator: str = "equals"
    value: Any = None
    negate: bool = False


class MentionAction(BaseModel):
    """One action of a rule, optionally delayed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: MentionActionType
    config: dict[str, Any] = Field(default_factory=dict)
    delay_seconds: float = Field(
        default=0.0, ge=0, validation_alias=AliasChoices("delay_seconds", "delay")
    )


class MentionRule(BaseModel):
    """Conditions (ANDed) plus the actions to run when they all hold."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    conditions: list[MentionCondition] = Field(default_factory=list)
    actions: list[MentionAction] = Field(default_factory=list)
    priority: int = 0
    enabled: bool = True
    cooldown_minutes: float | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("cooldown_minutes", "cooldown")
    )


class WorkingHours(BaseModel):
    """Daily window in ``HH:MM``.  A start after the end wraps past midnight."""

    model_config = ConfigDict(frozen=True)

    start: str = "09:00"
    end: str = "17:00"

    @field_validator("start", "end")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if not _HHMM_RE.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value


class TeamAvailability(BaseModel):
    """When a team can be reached.  ``working_days`` uses 0 for Sunday."""

    model_config = ConfigDict(frozen=True)

    timezone: str = "UTC"
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    working_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    holidays: list[str] = Field(default_factory=list)
    on_call: str | None = None


class TeamMention(BaseModel):
    """A team that can be mentioned, with its escalation chain."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    team_id: str
    team_name: str
    members: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    escalation_path: list[str] = Field(default_factory=list)
    response_time_minutes: float = Field(
        default=15.0,
        gt=0,
        validation_alias=AliasChoices("response_time_minutes", "response_time"),
    )
    availability: TeamAvailability = Field(default_factory=TeamAvailability)


class MentionNotification(BaseModel):
    """One outbound notification about a mention.

    Moves to ``acknowledged`` only through an explicit acknowledgment and to
    ``expired`` only through the cleanup sweep.
    """

    id: str
    mention_id: str
    recipient_id: str
    kind: NotificationKind
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime
    sent_at: datetime | None = None
    acknowledged_at: datetime | None = None
    expires_at: datetime
    team_id: str | None = None
    level: int | None = None
    delivery_channel: str | None = None
    delivery_ts: str | None = None


class AvailabilityResult(BaseModel):
    """Outcome of a team availability check."""

    model_config = ConfigDict(frozen=True)

    is_available: bool
    reason: str | None = None
    on_call: str | None = None


class MentionStats(BaseModel):
    """Mention activity over a trailing window."""

    model_config = ConfigDict(frozen=True)

    timeframe: str
    total_mentions: int = 0
    unique_users: int = 0
    top_mentioned_users: list[tuple[str, int]] = Field(default_factory=list)
    average_response_seconds: float | None = None
    escalation_rate: float = 0.0


class RoutingConfig(BaseModel):
    """Rules and teams loaded from the routing YAML file."""

    rules: list[MentionRule] = Field(default_factory=list)
    teams: list[TeamMention] = Field(default_factory=list)
