"""Mention rule evaluation, the built-in rule set, and YAML routing config loading.

Rules and teams can be kept in ``config/escalation_rules.yaml``::

    rules:
      - id: db_outage
        conditions:
          - {type: keyword, operator: contains, value: database}
        actions:
          - {type: notify, config: {recipient: U_DBA}}
        priority: 150
        cooldown: 15
    teams:
      - team_id: platform
        team_name: Platform
        members: [U1, U2]
        escalation_path: [U_LEAD, U_MANAGER]
        response_time: 10

When the file has no ``rules`` section the built-in defaults apply.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError as PydanticValidationError

from ticketflow.domain.errors import ValidationError
from ticketflow.domain.types import MentionConditionType
from ticketflow.escalation.availability import parse_hhmm, within_window
from ticketflow.escalation.models import (
    MentionCondition,
    MentionContext,
    MentionEvent,
    MentionRule,
    RoutingConfig,
)

logger = structlog.get_logger()

DEFAULT_RULES_PATH = Path(__file__).resolve().parents[3] / "config" / "escalation_rules.yaml"

_DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "id": "urgent_mention",
        "name": "Urgent Mention Handler",
        "conditions": [{"type": "urgency", "operator": "equals", "value": True}],
        "actions": [
            {"type": "notify"},
            {"type": "add_reaction", "config": {"emoji": "eyes"}},
        ],
        "priority": 100,
        "cooldown": 5,
    },
    {
        "id": "critical_mention",
        "name": "Critical Mention Handler",
        "conditions": [{"type": "keyword", "operator": "contains", "value": "critical"}],
        "actions": [
            {"type": "notify", "config": {"broadcast": True}},
            {"type": "escalate", "config": {"level": 0}},
        ],
        "priority": 200,
        "cooldown": 10,
    },
]


def default_rules() -> list[MentionRule]:
    """Return fresh copies of the built-in rules."""
    return [MentionRule.model_validate(rule) for rule in _DEFAULT_RULES]


def _matches(pattern: Any, text: str) -> bool:
    try:
        return re.search(str(pattern), text, re.IGNORECASE) is not None
    except re.error:
        logger.warning("Invalid pattern in mention condition", pattern=pattern)
        return False


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "contains":
        if isinstance(expected, list | tuple | set):
            return actual in expected
        return str(expected).lower() in str(actual).lower()
    if operator == "matches":
        return _matches(expected, str(actual))
    if operator == "equals":
        return bool(actual == expected)
    return False


def _in_time_range(value: Any, moment: datetime) -> bool:
    start, sep, end = str(value).partition("-")
    if not sep:
        return False
    try:
        return within_window(moment.time(), parse_hhmm(start.strip()), parse_hhmm(end.strip()))
    except ValueError:
        return False


def evaluate_mention_condition(
    condition: MentionCondition,
    event: MentionEvent,
    context: MentionContext,
    now: datetime,
) -> bool:
    """Evaluate one condition against a classified mention.

    Unknown condition types and operators evaluate to False before negation.
    """
    result: bool
    match condition.type:
        case MentionConditionType.KEYWORD:
            if condition.operator == "matches":
                result = _matches(condition.value, event.text)
            else:
                result = str(condition.value).lower() in event.text.lower()
        case MentionConditionType.USER:
            result = _compare(event.mentioned_id, condition.operator, condition.value)
        case MentionConditionType.CHANNEL:
            result = _compare(event.channel, condition.operator, condition.value)
        case MentionConditionType.URGENCY:
            result = context.is_urgent == condition.value
        case MentionConditionType.SENTIMENT:
            result = _compare(context.sentiment.value, condition.operator, condition.value)
        case MentionConditionType.PRIORITY:
            result = _compare(context.priority.value, condition.operator, condition.value)
        case MentionConditionType.CATEGORY:
            result = _compare(context.category, condition.operator, condition.value)
        case MentionConditionType.TIME:
            moment = event.occurred_at or now
            result = condition.operator == "in_range" and _in_time_range(condition.value, moment)
        case _:
            result = False
    return not result if condition.negate else result


def rule_matches(
    rule: MentionRule, event: MentionEvent, context: MentionContext, now: datetime
) -> bool:
    """True if *rule* is enabled and every one of its conditions holds."""
    return rule.enabled and all(
        evaluate_mention_condition(condition, event, context, now)
        for condition in rule.conditions
    )


def order_rules(rules: Iterable[MentionRule]) -> list[MentionRule]:
    """Highest priority first; ties keep registration order."""
    return sorted(rules, key=lambda rule: rule.priority, reverse=True)


def load_routing_config(path: Path = DEFAULT_RULES_PATH) -> RoutingConfig:
    """Load mention rules and teams from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Validated config.  Falls back to the built-in rules and no teams if
        the file is missing, empty, or contains invalid YAML.

    Raises:
        ValidationError: If the YAML parses but describes invalid rules or teams.
    """
    if not path.exists():
        return RoutingConfig(rules=default_rules())

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError:
        logger.warning("Invalid YAML in routing config, using defaults", path=str(path))
        return RoutingConfig(rules=default_rules())

    if not raw:
        return RoutingConfig(rules=default_rules())

    try:
        config = RoutingConfig.model_validate(raw)
    except PydanticValidationError as exc:
        violations = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        raise ValidationError(violations, subject="routing config") from exc

    if "rules" not in raw:
        config = config.model_copy(update={"rules": default_rules()})
    logger.info(
        "Loaded routing config",
        path=str(path),
        rules=len(config.rules),
        teams=len(config.teams),
    )
    return config
