"""Translation of engine errors into HTTP responses."""

from fastapi import HTTPException, status

from escalating_reminders.exceptions import (
    ConflictError,
    EscalationError,
    ForbiddenError,
    InvalidStateTransitionError,
    LeaseContentionError,
    NotFoundError,
    ValidationError,
)

_STATUS_CODES: list[tuple[type[EscalationError], int]] = [
    (ValidationError, 422),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (LeaseContentionError, status.HTTP_409_CONFLICT),
]


def to_http_exception(exc: EscalationError) -> HTTPException:
    """Map an engine error to the matching HTTPException."""
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Escalation engine error",
    )
