"""Domain-specific exception classes for the ticketflow orchestrator."""

from __future__ import annotations


class TicketflowError(Exception):
    """Base class for all domain errors raised by the orchestrator."""


class ValidationError(TicketflowError):
    """Raised when a definition is structurally invalid.

    Every violation found is collected so callers can fix them all at once.

    Attributes:
        violations: Human-readable descriptions of each problem found.
    """

    def __init__(self, violations: list[str], subject: str = "workflow definition") -> None:
        self.violations = list(violations)
        self.subject = subject
        super().__init__(f"Invalid {subject}: {', '.join(self.violations)}")


class NotFoundError(TicketflowError):
    """Raised when an operation references an unknown entity.

    Attributes:
        kind: The entity kind (``"workflow"``, ``"execution"``, ...).
        identifier: The id that could not be resolved.
    """

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")


class InvalidStateError(TicketflowError):
    """Raised when an entity is not in a state compatible with the operation.

    Attributes:
        kind: The entity kind.
        identifier: The entity id.
        state: The state the entity was found in.
    """

    def __init__(self, kind: str, identifier: str, state: str) -> None:
        self.kind = kind
        self.identifier = identifier
        self.state = state
        super().__init__(f"{kind.capitalize()} {identifier} is in state '{state}'")


class UnknownActionError(TicketflowError):
    """Raised when an action step names an action with no handler.

    Attributes:
        action: The unrecognised action name.
    """

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Unknown action: {action}")


class WorkflowTimeoutError(TicketflowError, TimeoutError):
    """Raised (and recorded) when an execution exceeds its configured timeout.

    Attributes:
        execution_id: The execution that timed out.
        timeout_seconds: The timeout that was exceeded.
    """

    def __init__(self, execution_id: str, timeout_seconds: float) -> None:
        self.execution_id = execution_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Workflow execution timeout after {timeout_seconds:g}s"
        )
