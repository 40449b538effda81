"""Per-conversation state: participants, activity log, metadata and a cached summary."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from ticketflow.domain.types import ActivityKind, ParticipantRole, Priority, Sentiment
from ticketflow.scheduling.timers import Clock, utc_now
from ticketflow.threads.models import (
    ThreadActivity,
    ThreadMetadata,
    ThreadParticipant,
    ThreadSummary,
)

ACTIVE_WINDOW = timedelta(hours=24)
RECENT_ACTIVITY_WINDOW = timedelta(hours=1)
DEFAULT_ACTIVITY_LIMIT = 200

_WORD_RE = re.compile(r"[a-z][a-z0-9_-]{3,}")
_STOPWORDS = frozenset(
    {
        "this", "that", "with", "from", "have", "there", "their", "about", "would",
        "could", "should", "what", "when", "where", "which", "while", "been", "were",
        "will", "just", "thanks", "please", "here", "they", "them", "then", "than",
        "into", "your", "yours", "also", "some", "still",
    }
)
_MAX_TOPICS = 5


class ThreadContext:
    """Tracks the state of one Slack thread.

    Every mutation refreshes ``last_activity`` and drops the cached summary, so
    :meth:`get_summary` is recomputed at most once per mutation.
    """

    def __init__(
        self,
        thread_id: str,
        channel: str,
        parent_message_ts: str,
        created_by: str,
        *,
        clock: Clock = utc_now,
        activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
    ) -> None:
        self._clock = clock
        self._activity_limit = activity_limit
        self.thread_id = thread_id
        self.channel = channel
        self.parent_message_ts = parent_message_ts
        self.created_at: datetime = clock()
        self._last_activity: datetime = self.created_at
        self._participants: dict[str, ThreadParticipant] = {}
        self._activities: list[ThreadActivity] = []
        self._metadata = ThreadMetadata()
        self._explicitly_active = True
        self._summary: ThreadSummary | None = None

        self.add_participant(created_by, ParticipantRole.REQUESTER)

    @property
    def last_activity(self) -> datetime:
        """Timestamp of the most recent mutation."""
        return self._last_activity

    def add_participant(
        self,
        user_id: str,
        role: ParticipantRole = ParticipantRole.OBSERVER,
        username: str | None = None,
    ) -> ThreadParticipant:
        """Add *user_id* to the thread, or refresh them if already present.

        A returning participant has their activity time and message count
        bumped; a non-observer *role* upgrades their existing role.
        """
        now = self._clock()
        participant = self._participants.get(user_id)
        if participant is not None:
            participant.last_activity = now
            participant.message_count += 1
            if role != ParticipantRole.OBSERVER:
                participant.role = role
            if username and not participant.username:
                participant.username = username
        else:
            participant = ThreadParticipant(
                user_id=user_id,
                username=username,
                joined_at=now,
                last_activity=now,
                role=role,
            )
            self._participants[user_id] = participant
        self._touch(now)
        return participant

    def record_activity(
        self,
        kind: ActivityKind,
        user_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> ThreadActivity:
        """Append an entry to the bounded activity log."""
        now = self._clock()
        activity = ThreadActivity(
            kind=kind,
            user_id=user_id,
            timestamp=now,
            details=dict(details) if details is not None else None,
        )
        self._activities.append(activity)
        if len(self._activities) > self._activity_limit:
            del self._activities[: len(self._activities) - self._activity_limit]

        participant = self._participants.get(user_id)
        if participant is not None:
            participant.last_activity = now
            if kind == ActivityKind.MESSAGE:
                participant.message_count += 1

        self._touch(now)
        return activity

    def update_metadata(self, patch: Mapping[str, Any] | ThreadMetadata) -> None:
        """Merge *patch* into the metadata.

        Keys that are not metadata fields are merged into ``custom_data``.
        """
        if isinstance(patch, ThreadMetadata):
            patch = patch.model_dump(exclude_unset=True)
        merged = self._metadata.model_dump()
        for key, value in patch.items():
            if key in ThreadMetadata.model_fields:
                if key == "custom_data" and isinstance(value, Mapping):
                    merged["custom_data"] = {**merged["custom_data"], **value}
                else:
                    merged[key] = value
            else:
                merged["custom_data"][key] = value
        self._metadata = ThreadMetadata.model_validate(merged)
        self._touch(self._clock())

    def get_metadata(self) -> ThreadMetadata:
        """Return a copy of the metadata."""
        return self._metadata.model_copy(deep=True)

    def get_participants(self) -> list[ThreadParticipant]:
        """Return all participants in join order."""
        return list(self._participants.values())

    def get_participant(self, user_id: str) -> ThreadParticipant | None:
        """Look up a single participant."""
        return self._participants.get(user_id)

    def has_participant(self, user_id: str) -> bool:
        """Return True if *user_id* has taken part in the thread."""
        return user_id in self._participants

    def get_activities(self, limit: int = 50) -> list[ThreadActivity]:
        """Return up to *limit* most recent activities, newest first."""
        recent = self._activities[-limit:] if limit > 0 else []
        return sorted(recent, key=lambda activity: activity.timestamp, reverse=True)

    def age_seconds(self) -> float:
        """Seconds since the thread was first seen."""
        return (self._clock() - self.created_at).total_seconds()

    def seconds_since_last_activity(self) -> float:
        """Seconds since the most recent mutation."""
        return (self._clock() - self._last_activity).total_seconds()

    def is_active(self) -> bool:
        """Active unless marked inactive or idle for longer than 24 hours."""
        return self._explicitly_active and self._clock() - self._last_activity < ACTIVE_WINDOW

    def mark_inactive(self) -> None:
        """Override the thread as inactive regardless of recent activity."""
        self._explicitly_active = False

    def mark_active(self) -> None:
        """Clear the inactive override and refresh activity."""
        self._explicitly_active = True
        self._touch(self._clock())

    def get_summary(self) -> ThreadSummary:
        """Return the cached summary, computing it if a mutation invalidated it."""
        if self._summary is None:
            self._summary = self._generate_summary()
        return self._summary

    def _touch(self, now: datetime) -> None:
        self._last_activity = now
        self._summary = None

    def _generate_summary(self) -> ThreadSummary:
        message_count = sum(1 for a in self._activities if a.kind == ActivityKind.MESSAGE)
        return ThreadSummary(
            message_count=message_count,
            participant_count=len(self._participants),
            last_activity=self._last_activity,
            duration_seconds=(self._last_activity - self.created_at).total_seconds(),
            key_topics=self._extract_key_topics(),
            sentiment=self._analyze_sentiment(),
            urgency=self._analyze_urgency(),
        )

    def _extract_key_topics(self) -> list[str]:
        topics: list[str] = []
        if self._metadata.category:
            topics.append(self._metadata.category)
        topics.extend(tag for tag in self._metadata.tags if tag not in topics)

        words: Counter[str] = Counter()
        for activity in self._activities:
            text = (activity.details or {}).get("text")
            if isinstance(text, str):
                words.update(w for w in _WORD_RE.findall(text.lower()) if w not in _STOPWORDS)
        for word, _ in words.most_common():
            if len(topics) >= _MAX_TOPICS:
                break
            if word not in topics:
                topics.append(word)
        return topics

    def _analyze_sentiment(self) -> Sentiment:
        if self._metadata.priority in (Priority.HIGH, Priority.CRITICAL):
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    def _analyze_urgency(self) -> Priority:
        priority = self._metadata.priority
        if priority in Priority.__members__.values():
            return Priority(priority)

        cutoff = self._clock() - RECENT_ACTIVITY_WINDOW
        recent = sum(1 for activity in self._activities if activity.timestamp > cutoff)
        if recent > 10:
            return Priority.HIGH
        if recent > 5:
            return Priority.MEDIUM
        return Priority.LOW
