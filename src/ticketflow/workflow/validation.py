"""Structural validation of workflow definitions before registration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ticketflow.domain.errors import ValidationError
from ticketflow.domain.types import StepKind
from ticketflow.workflow.models import WorkflowDefinition

DELAY_KEYS = frozenset({"seconds", "duration"})


def validate_definition(definition: WorkflowDefinition) -> list[str]:
    """Collect every structural problem in *definition*.

    Checks that the definition has an id, a name and at least one step, that
    every step has an id, a kind and a config payload, that every delay step
    says how long to wait, that step ids are unique, and that every
    ``next_steps`` link points at a known step.

    Args:
        definition: The parsed definition to check.

    Returns:
        A list of violation messages.  Empty means the definition is valid.
    """
    errors: list[str] = []

    if not definition.id:
        errors.append("Workflow ID is required")
    if not definition.name:
        errors.append("Workflow name is required")
    if not definition.steps:
        errors.append("Workflow must have at least one step")

    seen: set[str] = set()
    for index, step in enumerate(definition.steps):
        if not step.id:
            errors.append(f"Step {index} missing ID")
        elif step.id in seen:
            errors.append(f"Duplicate step ID: {step.id}")
        else:
            seen.add(step.id)
        if step.kind is None:
            errors.append(f"Step {index} missing kind")
        if step.config is None:
            errors.append(f"Step {index} missing config")
        elif step.kind == StepKind.DELAY and not DELAY_KEYS.intersection(step.config):
            errors.append(f"Step {index} delay needs 'seconds' or 'duration'")

    for index, step in enumerate(definition.steps):
        label = step.id or str(index)
        for target in step.next_steps:
            if target not in seen:
                errors.append(f"Step {label} links to unknown step '{target}'")

    return errors


def parse_definition(raw: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
    """Coerce *raw* into a :class:`WorkflowDefinition`.

    Raises:
        ValidationError: If pydantic cannot coerce the mapping (for example an
            unknown step kind).  Pydantic's messages become the violations.
    """
    if isinstance(raw, WorkflowDefinition):
        return raw
    try:
        return WorkflowDefinition.model_validate(raw)
    except PydanticValidationError as exc:
        violations = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        raise ValidationError(violations) from exc


def ensure_valid(raw: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
    """Parse and validate *raw*, raising one error that lists every violation.

    Raises:
        ValidationError: If the definition is malformed in any way.
    """
    definition = parse_definition(raw)
    violations = validate_definition(definition)
    if violations:
        raise ValidationError(violations)
    return definition
