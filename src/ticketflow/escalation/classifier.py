"""Keyword heuristics that turn mention text into a :class:`MentionContext`.

The heuristics are deliberately simple substring checks.  The router only
depends on the :class:`MentionClassifier` protocol, so a stronger classifier
can be dropped in without touching routing.
"""

from __future__ import annotations

import re
from typing import Protocol

from ticketflow.domain.types import Priority, Sentiment
from ticketflow.escalation.models import MentionContext

URGENT_KEYWORDS: tuple[str, ...] = (
    "urgent",
    "asap",
    "emergency",
    "critical",
    "help",
    "issue",
    "problem",
    "down",
    "broken",
)
CRITICAL_KEYWORDS: tuple[str, ...] = ("critical", "emergency")
LOW_PRIORITY_PHRASES: tuple[str, ...] = ("when you can", "no rush")
POSITIVE_WORDS: tuple[str, ...] = ("thanks", "great", "awesome", "good", "excellent")
NEGATIVE_WORDS: tuple[str, ...] = ("problem", "issue", "error", "broken", "failed", "wrong")
QUESTION_MARKERS: tuple[str, ...] = (
    "?",
    "how",
    "what",
    "when",
    "where",
    "why",
    "can you",
    "could you",
)

# First match wins, so order matters.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "technical": ("bug", "error", "issue", "problem", "broken", "fix", "code"),
    "support": ("help", "question", "how", "what", "support"),
    "feature": ("feature", "enhancement", "improvement", "add", "new"),
    "urgent": ("urgent", "critical", "emergency", "asap", "immediately"),
    "meeting": ("meeting", "call", "discuss", "sync", "standup"),
}
DEFAULT_CATEGORY = "general"

_KEYWORD_RE = re.compile(r"\b\w{3,}\b")


class MentionClassifier(Protocol):
    """Anything that can derive a mention context from raw text."""

    def classify(self, text: str) -> MentionContext: ...


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(needle in text for needle in needles)


def categorize(text: str) -> str:
    """Return the first category whose keywords appear in lower-cased *text*."""
    for category, keywords in CATEGORY_KEYWORDS.items():
        if _contains_any(text, keywords):
            return category
    return DEFAULT_CATEGORY


class KeywordMentionClassifier:
    """Substring-table classifier for urgency, priority, category and sentiment."""

    def classify(self, text: str) -> MentionContext:
        lowered = text.lower()
        is_urgent = _contains_any(lowered, URGENT_KEYWORDS)

        if _contains_any(lowered, CRITICAL_KEYWORDS):
            priority = Priority.CRITICAL
        elif is_urgent:
            priority = Priority.HIGH
        elif _contains_any(lowered, LOW_PRIORITY_PHRASES):
            priority = Priority.LOW
        else:
            priority = Priority.MEDIUM

        if _contains_any(lowered, POSITIVE_WORDS):
            sentiment = Sentiment.POSITIVE
        elif _contains_any(lowered, NEGATIVE_WORDS):
            sentiment = Sentiment.NEGATIVE
        else:
            sentiment = Sentiment.NEUTRAL

        return MentionContext(
            is_urgent=is_urgent,
            priority=priority,
            category=categorize(lowered),
            keywords=_KEYWORD_RE.findall(lowered),
            sentiment=sentiment,
            requires_response=_contains_any(lowered, QUESTION_MARKERS),
        )
