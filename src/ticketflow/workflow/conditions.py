"""Pure evaluation of workflow conditions against an execution's data bag."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ticketflow.domain.types import ConditionOperator
from ticketflow.workflow.models import WorkflowCondition

_MISSING = object()


def resolve_field(data: Mapping[str, Any], field: str) -> Any:
    """Look up *field* in *data*, following dotted paths through nested mappings.

    An exact top-level key wins over a dotted path, so ``"a.b"`` stored as a
    literal key is still reachable.

    Returns:
        The value found, or ``None`` when any segment is missing.
    """
    if field in data:
        return data[field]
    current: Any = data
    for part in field.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return None
    return current


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(condition: WorkflowCondition, data: Mapping[str, Any]) -> bool:
    """Evaluate a single condition.  Never raises for odd operand types."""
    value = resolve_field(data, condition.field)

    match condition.operator:
        case ConditionOperator.EQUALS:
            return bool(value == condition.value)
        case ConditionOperator.CONTAINS:
            if value is None:
                return False
            if isinstance(value, list | tuple | set | frozenset | dict):
                try:
                    return condition.value in value
                except TypeError:
                    # unhashable needle against a set/dict
                    return False
            return str(condition.value) in str(value)
        case ConditionOperator.GREATER_THAN | ConditionOperator.LESS_THAN:
            left = _as_number(value)
            right = _as_number(condition.value)
            if left is None or right is None:
                return False
            if condition.operator == ConditionOperator.GREATER_THAN:
                return left > right
            return left < right
        case ConditionOperator.EXISTS:
            return value is not None
    return False


def evaluate_conditions(
    conditions: Iterable[WorkflowCondition], data: Mapping[str, Any]
) -> bool:
    """AND together every condition.  An empty list is vacuously true."""
    return all(evaluate_condition(condition, data) for condition in conditions)
