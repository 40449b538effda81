"""In-memory registry of thread contexts and their message history.

The store is the only owner of :class:`ThreadContext` objects.  A context is
created on first reference to a thread id and removed either explicitly with
:meth:`ThreadContextStore.delete` or by the hourly inactivity sweep; both
paths drop the thread's message history with it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

import structlog

from ticketflow.domain.errors import NotFoundError
from ticketflow.domain.types import ActivityKind
from ticketflow.observability.metrics import ACTIVE_THREAD_CONTEXTS
from ticketflow.scheduling.timers import Clock, Scheduler, utc_now
from ticketflow.threads.context import DEFAULT_ACTIVITY_LIMIT, ThreadContext
from ticketflow.threads.models import (
    ThreadActivity,
    ThreadMessage,
    ThreadMetadata,
    ThreadStats,
    ThreadSummary,
)

logger = structlog.get_logger()

SWEEP_OWNER = "sweep:threads"
DEFAULT_MESSAGE_LIMIT = 50
DEFAULT_INACTIVE_AFTER = timedelta(hours=24)
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600.0
_RECENT_WINDOW = timedelta(hours=1)


class ThreadContextStore:
    """Creates, looks up and expires :class:`ThreadContext` objects by thread id."""

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        clock: Clock = utc_now,
        activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
        message_limit: int = DEFAULT_MESSAGE_LIMIT,
        inactive_after: timedelta = DEFAULT_INACTIVE_AFTER,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self._clock = clock
        self._activity_limit = activity_limit
        self._message_limit = message_limit
        self._inactive_after = inactive_after
        self._cleanup_interval_seconds = cleanup_interval_seconds
        self._contexts: dict[str, ThreadContext] = {}
        self._messages: dict[str, list[ThreadMessage]] = {}

    def create_or_update(
        self,
        thread_id: str,
        channel: str,
        user_id: str,
        metadata: Mapping[str, Any] | ThreadMetadata | None = None,
        parent_message_ts: str | None = None,
    ) -> ThreadContext:
        """Return the context for *thread_id*, creating it on first reference.

        An existing thread gains *user_id* as a participant (or refreshes
        them) and merges *metadata*.  A new thread starts with *user_id* as
        its requester.
        """
        context = self._contexts.get(thread_id)
        if context is not None:
            context.add_participant(user_id)
            if metadata:
                context.update_metadata(metadata)
            logger.debug("Updated thread context", thread_id=thread_id, user_id=user_id)
            return context

        context = ThreadContext(
            thread_id=thread_id,
            channel=channel,
            parent_message_ts=parent_message_ts or thread_id,
            created_by=user_id,
            clock=self._clock,
            activity_limit=self._activity_limit,
        )
        if metadata:
            context.update_metadata(metadata)
        self._contexts[thread_id] = context
        self._messages[thread_id] = []
        ACTIVE_THREAD_CONTEXTS.set(len(self._contexts))
        logger.info("Created thread context", thread_id=thread_id, channel=channel, user_id=user_id)
        return context

    def record_activity(
        self,
        thread_id: str,
        kind: ActivityKind,
        user_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> ThreadActivity:
        """Append an activity to an existing thread.

        Raises:
            NotFoundError: If the thread is not tracked.
        """
        return self._require(thread_id).record_activity(kind, user_id, details)

    def get_summary(self, thread_id: str) -> ThreadSummary:
        """Return the (cached) summary of an existing thread.

        Raises:
            NotFoundError: If the thread is not tracked.
        """
        return self._require(thread_id).get_summary()

    def get_context(self, thread_id: str) -> ThreadContext | None:
        return self._contexts.get(thread_id)

    def has_thread(self, thread_id: str) -> bool:
        return thread_id in self._contexts

    def delete(self, thread_id: str) -> bool:
        """Remove a thread and its message history.  Returns False if unknown."""
        context = self._contexts.pop(thread_id, None)
        self._messages.pop(thread_id, None)
        if context is None:
            return False
        ACTIVE_THREAD_CONTEXTS.set(len(self._contexts))
        logger.info("Deleted thread context", thread_id=thread_id)
        return True

    # -- Message history -------------------------------------------------------

    def add_message(
        self,
        thread_id: str,
        user_id: str,
        text: str,
        message_type: str = "user",
    ) -> ThreadMessage:
        """Store a message in the bounded history and log it as an activity.

        Raises:
            NotFoundError: If the thread is not tracked.
        """
        context = self._require(thread_id)
        message = ThreadMessage(
            user_id=user_id,
            text=text,
            channel=context.channel,
            thread_ts=thread_id,
            timestamp=self._clock(),
            message_type=message_type,
        )
        history = self._messages.setdefault(thread_id, [])
        history.append(message)
        if len(history) > self._message_limit:
            del history[: len(history) - self._message_limit]

        if not context.has_participant(user_id):
            context.add_participant(user_id)
        context.record_activity(
            ActivityKind.MESSAGE,
            user_id,
            {"text": text, "message_type": message_type},
        )
        return message

    def get_messages(self, thread_id: str, limit: int | None = None) -> list[ThreadMessage]:
        """Return the stored messages of a thread, oldest first."""
        history = self._messages.get(thread_id, [])
        if limit is not None:
            return history[-limit:] if limit > 0 else []
        return list(history)

    def get_conversation_history(self, thread_id: str, limit: int = 10) -> str:
        """Render the last *limit* messages as a plain-text transcript."""
        lines = []
        for message in self.get_messages(thread_id, limit):
            speaker = "Bot" if message.message_type == "bot" else message.user_id
            lines.append(f"{speaker}: {message.text}")
        return "\n".join(lines)

    # -- Lookups ---------------------------------------------------------------

    def get_channel_threads(self, channel: str) -> list[ThreadContext]:
        """Threads in *channel*, most recently active first."""
        return self._sorted(c for c in self._contexts.values() if c.channel == channel)

    def get_ticket_threads(self, ticket_id: str) -> list[ThreadContext]:
        """Threads linked to a helpdesk ticket, most recently active first."""
        return self._sorted(
            c for c in self._contexts.values() if c.get_metadata().ticket_id == ticket_id
        )

    def get_task_threads(self, task_id: str) -> list[ThreadContext]:
        """Threads linked to a task-tracker task, most recently active first."""
        return self._sorted(
            c for c in self._contexts.values() if c.get_metadata().task_id == task_id
        )

    def get_stats(self) -> ThreadStats:
        """Aggregate counters; a thread is active if touched in the last hour."""
        cutoff = self._clock() - _RECENT_WINDOW
        total_messages = sum(len(history) for history in self._messages.values())
        total = len(self._contexts)
        return ThreadStats(
            total_threads=total,
            active_threads=sum(1 for c in self._contexts.values() if c.last_activity > cutoff),
            total_messages=total_messages,
            average_messages_per_thread=total_messages / total if total else 0.0,
        )

    # -- Lifecycle -------------------------------------------------------------

    def cleanup_inactive_threads(self) -> int:
        """Delete every thread whose last activity predates the inactivity cutoff."""
        cutoff = self._clock() - self._inactive_after
        stale = [tid for tid, c in self._contexts.items() if c.last_activity < cutoff]
        for thread_id in stale:
            self.delete(thread_id)
        if stale:
            logger.info("Cleaned up inactive threads", count=len(stale))
        return len(stale)

    def start_background_tasks(self) -> None:
        """Arm the periodic inactivity sweep."""
        self._scheduler.cancel_owner(SWEEP_OWNER)
        self._scheduler.every(
            SWEEP_OWNER, self._cleanup_interval_seconds, self.cleanup_inactive_threads
        )

    def shutdown(self) -> None:
        """Stop the sweep.  Tracked contexts are kept until the process exits."""
        self._scheduler.cancel_owner(SWEEP_OWNER)

    def _require(self, thread_id: str) -> ThreadContext:
        context = self._contexts.get(thread_id)
        if context is None:
            raise NotFoundError("thread", thread_id)
        return context

    @staticmethod
    def _sorted(contexts: Iterable[ThreadContext]) -> list[ThreadContext]:
        return sorted(contexts, key=lambda c: c.last_activity, reverse=True)

    def __len__(self) -> int:
        return len(self._contexts)

