"""Per-thread conversational state consulted by workflows and escalations."""

from ticketflow.threads.context import ThreadContext
from ticketflow.threads.models import (
    ThreadActivity,
    ThreadMessage,
    ThreadMetadata,
    ThreadParticipant,
    ThreadStats,
    ThreadSummary,
)
from ticketflow.threads.store import ThreadContextStore

__all__ = [
    "ThreadActivity",
    "ThreadContext",
    "ThreadContextStore",
    "ThreadMessage",
    "ThreadMetadata",
    "ThreadParticipant",
    "ThreadStats",
    "ThreadSummary",
]
