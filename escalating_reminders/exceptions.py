"""Escalation engine error taxonomy.

Only ValidationError, NotFoundError, ForbiddenError and
InvalidStateTransitionError are meant to reach end users. The rest are
resolved inside the engine (returned state, skipped cycle, logged attempt).
"""


class EscalationError(Exception):
    """Base class for escalation engine errors."""


class ValidationError(EscalationError):
    """Malformed escalation profile or tier list."""


class NotFoundError(EscalationError):
    """Unknown escalation state or profile."""


class ForbiddenError(EscalationError):
    """Profile belongs to another user or is a shared preset."""


class ConflictError(EscalationError):
    """Write lost a race to a concurrent one for the same key."""


class InvalidStateTransitionError(EscalationError):
    """Requested transition is not allowed from the current status."""

    def __init__(self, state_id, current_status, action: str):
        self.state_id = state_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} escalation {state_id} in status {current_status}"
        )


class LeaseContentionError(EscalationError):
    """Another worker currently holds the lease for this escalation state."""


class DispatchFailureError(EscalationError):
    """A single notification target failed to deliver."""


class UnknownAgentTypeError(EscalationError):
    """No executor is registered for the requested agent type."""
