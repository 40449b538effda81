"""Pydantic v2 models describing a conversation thread's participants and activity."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ticketflow.domain.types import ActivityKind, ParticipantRole, Priority, Sentiment


class ThreadMetadata(BaseModel):
    """Linkage and classification data attached to a thread."""

    ticket_id: str | None = None
    task_id: str | None = None
    workflow_id: str | None = None
    category: str | None = None
    priority: str | None = None
    assignee: str | None = None
    tags: list[str] = Field(default_factory=list)
    custom_data: dict[str, Any] = Field(default_factory=dict)


class ThreadParticipant(BaseModel):
    """A user who has taken part in a thread."""

    user_id: str
    username: str | None = None
    joined_at: datetime
    last_activity: datetime
    message_count: int = 1
    role: ParticipantRole = ParticipantRole.OBSERVER


class ThreadActivity(BaseModel):
    """One entry in a thread's activity log."""

    model_config = ConfigDict(frozen=True)

    kind: ActivityKind
    user_id: str
    timestamp: datetime
    details: dict[str, Any] | None = None


class ThreadMessage(BaseModel):
    """A message kept in a thread's bounded message history."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    text: str
    channel: str
    thread_ts: str
    timestamp: datetime
    message_type: str = "user"


class ThreadSummary(BaseModel):
    """Derived, cached view of a thread."""

    model_config = ConfigDict(frozen=True)

    message_count: int
    participant_count: int
    last_activity: datetime
    duration_seconds: float
    key_topics: list[str] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    urgency: Priority = Priority.LOW


class ThreadStats(BaseModel):
    """Aggregate counters across every tracked thread."""

    model_config = ConfigDict(frozen=True)

    total_threads: int
    active_threads: int
    total_messages: int
    average_messages_per_thread: float
