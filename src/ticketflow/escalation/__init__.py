"""Mention classification, rule evaluation, team availability and escalation."""

from ticketflow.escalation.availability import check_team_availability
from ticketflow.escalation.classifier import KeywordMentionClassifier, MentionClassifier
from ticketflow.escalation.models import (
    AvailabilityResult,
    MentionAction,
    MentionCondition,
    MentionContext,
    MentionEvent,
    MentionNotification,
    MentionRule,
    MentionStats,
    RoutingConfig,
    TeamAvailability,
    TeamMention,
    WorkingHours,
)
from ticketflow.escalation.router import EscalationRouter
from ticketflow.escalation.rules import default_rules, load_routing_config

__all__ = [
    "AvailabilityResult",
    "EscalationRouter",
    "KeywordMentionClassifier",
    "MentionAction",
    "MentionClassifier",
    "MentionCondition",
    "MentionContext",
    "MentionEvent",
    "MentionNotification",
    "MentionRule",
    "MentionStats",
    "RoutingConfig",
    "TeamAvailability",
    "TeamMention",
    "WorkingHours",
    "check_team_availability",
    "default_rules",
    "load_routing_config",
]
