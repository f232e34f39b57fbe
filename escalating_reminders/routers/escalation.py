"""Escalation router.

Internal endpoints used by the reminder trigger, completion, snooze and
command-handling services to drive escalations.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from escalating_reminders.dependencies import get_current_user_id, get_state_machine
from escalating_reminders.exceptions import EscalationError
from escalating_reminders.models.escalation_state import EscalationState
from escalating_reminders.routers.errors import to_http_exception
from escalating_reminders.schemas.escalation_state import (
    EscalationAcknowledgeRequest,
    EscalationCancelRequest,
    EscalationStartRequest,
    EscalationStateListResponse,
    EscalationStateResponse,
    NotificationAttemptResponse,
    NotificationLogResponse,
)
from escalating_reminders.services.escalation_state_machine import (
    EscalationStateMachine,
)

router = APIRouter(prefix="/api", tags=["escalations"])


async def _get_owned_state(
    machine: EscalationStateMachine,
    state_id: uuid.UUID,
    user_id: str,
) -> EscalationState:
    try:
        state = await machine.get_state(state_id)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc

    # Other users' escalations are reported as missing
    if state.owner_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Escalation state {state_id} not found",
        )
    return state


@router.post(
    "/escalations",
    response_model=EscalationStateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_escalation(
    data: EscalationStartRequest,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    """Start escalating a reminder.

    Starting a reminder that is already escalating returns the running
    escalation.
    """
    try:
        state = await machine.start(data.reminder_id, data.profile_id, user_id)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationStateResponse.model_validate(state)


@router.get(
    "/escalations/due",
    response_model=EscalationStateListResponse,
)
async def list_due_escalations(
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateListResponse:
    """List escalations waiting for their next tier, oldest-due first."""
    states = await machine.find_due_for_advancement(limit)
    return EscalationStateListResponse(
        states=[EscalationStateResponse.model_validate(s) for s in states],
        count=len(states),
    )


@router.get(
    "/escalations/{state_id}",
    response_model=EscalationStateResponse,
)
async def get_escalation(
    state_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    state = await _get_owned_state(machine, state_id, user_id)
    return EscalationStateResponse.model_validate(state)


@router.get(
    "/escalations/{state_id}/attempts",
    response_model=NotificationLogResponse,
)
async def get_escalation_attempts(
    state_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> NotificationLogResponse:
    """Get the notification log of an escalation, in tier order."""
    await _get_owned_state(machine, state_id, user_id)
    attempts = await machine.list_attempts(state_id)
    return NotificationLogResponse(
        escalation_state_id=state_id,
        attempts=[NotificationAttemptResponse.model_validate(a) for a in attempts],
        count=len(attempts),
    )


@router.post(
    "/escalations/{state_id}/acknowledge",
    response_model=EscalationStateResponse,
)
async def acknowledge_escalation(
    state_id: uuid.UUID,
    data: EscalationAcknowledgeRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    """Acknowledge an escalation, stopping further tiers.

    Returns 409 if the escalation was already cancelled or exhausted.
    """
    await _get_owned_state(machine, state_id, user_id)
    acknowledged_by = (data.acknowledged_by if data else None) or user_id
    try:
        state = await machine.acknowledge(state_id, acknowledged_by)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationStateResponse.model_validate(state)


@router.post(
    "/escalations/{state_id}/cancel",
    response_model=EscalationStateResponse,
)
async def cancel_escalation(
    state_id: uuid.UUID,
    data: EscalationCancelRequest,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    """Cancel a running escalation.

    Returns 409 if the escalation was already acknowledged, exhausted, or
    cancelled for a different reason.
    """
    await _get_owned_state(machine, state_id, user_id)
    try:
        state = await machine.cancel(state_id, data.reason)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationStateResponse.model_validate(state)


@router.post(
    "/escalations/{state_id}/advance",
    response_model=EscalationStateResponse,
)
async def advance_escalation(
    state_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    """Advance a due escalation now instead of waiting for the next poll.

    Escalations that are not due or no longer active are returned
    unchanged. Returns 409 while another worker is advancing it.
    """
    await _get_owned_state(machine, state_id, user_id)
    try:
        state = await machine.advance(state_id)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationStateResponse.model_validate(state)


@router.get(
    "/reminders/{reminder_id}/escalations",
    response_model=EscalationStateListResponse,
)
async def list_reminder_escalations(
    reminder_id: str,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateListResponse:
    """Escalation history of a reminder, newest first."""
    states = [
        state
        for state in await machine.list_for_reminder(reminder_id)
        if state.owner_id == user_id
    ]
    return EscalationStateListResponse(
        states=[EscalationStateResponse.model_validate(s) for s in states],
        count=len(states),
    )


@router.post(
    "/reminders/{reminder_id}/escalation/acknowledge",
    response_model=EscalationStateResponse,
)
async def acknowledge_reminder_escalation(
    reminder_id: str,
    data: EscalationAcknowledgeRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    """Acknowledge whatever escalation is currently running for a reminder."""
    acknowledged_by = (data.acknowledged_by if data else None) or user_id
    try:
        state = await machine.acknowledge_reminder(
            reminder_id, acknowledged_by, owner_id=user_id
        )
    except EscalationError as exc:
        raise to_http_exception(exc) from exc

    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active escalation for reminder {reminder_id}",
        )
    return EscalationStateResponse.model_validate(state)


@router.post(
    "/reminders/{reminder_id}/escalation/cancel",
    response_model=EscalationStateResponse,
)
async def cancel_reminder_escalation(
    reminder_id: str,
    data: EscalationCancelRequest,
    user_id: str = Depends(get_current_user_id),
    machine: EscalationStateMachine = Depends(get_state_machine),
) -> EscalationStateResponse:
    """Cancel the running escalation of a completed, snoozed or deleted reminder."""
    try:
        state = await machine.cancel_reminder(
            reminder_id, data.reason, owner_id=user_id
        )
    except EscalationError as exc:
        raise to_http_exception(exc) from exc

    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active escalation for reminder {reminder_id}",
        )
    return EscalationStateResponse.model_validate(state)
