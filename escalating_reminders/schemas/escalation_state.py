"""Escalation state and notification log schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from escalating_reminders.models.escalation_state import CancelReason, EscalationStatus
from escalating_reminders.models.notification_attempt import AttemptOutcome


class EscalationStartRequest(BaseModel):
    """Start escalating a reminder with a profile."""

    reminder_id: str = Field(min_length=1, max_length=64)
    profile_id: str = Field(min_length=1, max_length=64)


class EscalationAcknowledgeRequest(BaseModel):
    """Acknowledge an escalation on behalf of an actor."""

    # Defaults to the calling user
    acknowledged_by: str | None = Field(default=None, min_length=1, max_length=64)


class EscalationCancelRequest(BaseModel):
    """Stop an escalation because the reminder changed."""

    reason: CancelReason


class EscalationStateResponse(BaseModel):
    """Single escalation state."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reminder_id: str
    owner_id: str
    profile_id: str
    current_tier: int
    tier_count: int
    status: EscalationStatus
    started_at: datetime
    next_advance_at: datetime | None
    acknowledged_by: str | None
    acknowledged_at: datetime | None
    cancel_reason: CancelReason | None
    ended_at: datetime | None


class NotificationAttemptResponse(BaseModel):
    """Single notification log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tier_number: int
    target: str
    agent_id: str | None
    contact_ref: str | None
    dispatched_at: datetime
    outcome: AttemptOutcome
    error: str | None
    message_id: str | None


class NotificationLogResponse(BaseModel):
    """Notification log for an escalation state."""

    escalation_state_id: uuid.UUID
    attempts: list[NotificationAttemptResponse]
    count: int


class EscalationStateListResponse(BaseModel):
    """A list of escalation states."""

    states: list[EscalationStateResponse]
    count: int
