"""Notification agent protocol schemas.

The payload every agent receives and the result every agent returns,
independent of the channel (push, email, SMS, webhook) behind it.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ReminderImportance = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

CommandAction = Literal["snooze", "dismiss", "complete", "acknowledge"]


class AgentAction(BaseModel):
    """Action the recipient can take on a notification."""

    action: CommandAction
    label: str
    requires_confirmation: bool = False
    params: dict[str, Any] | None = None


DEFAULT_ACTIONS: tuple[AgentAction, ...] = (
    AgentAction(action="acknowledge", label="Acknowledge"),
    AgentAction(action="snooze", label="Snooze", params={"duration": "15m"}),
    AgentAction(action="complete", label="Mark complete"),
)


class ContactRecipient(BaseModel):
    """Trusted contact a notification is addressed to, when not the owner."""

    contact_ref: str
    name: str
    email: str | None = None
    phone: str | None = None


class NotificationPayload(BaseModel):
    """Payload handed to an agent for a single delivery."""

    model_config = ConfigDict(frozen=True)

    notification_id: str
    reminder_id: str
    user_id: str
    title: str
    message: str
    escalation_tier: int = Field(ge=1)
    importance: ReminderImportance = "MEDIUM"
    timestamp: datetime
    actions: list[AgentAction] = Field(default_factory=list)
    recipient: ContactRecipient | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    escalation_countdown: int | None = Field(
        default=None,
        description="Seconds until the next tier, when there is one.",
    )


class SendResult(BaseModel):
    """Result of one agent send attempt.

    ``skipped`` marks a target with no usable channel configuration; it is
    neither a delivery nor a failure.
    """

    success: bool
    message_id: str | None = None
    delivered_at: datetime | None = None
    error: str | None = None
    skipped: bool = False


class ContactRef(BaseModel):
    """Trusted contact as seen by the dispatcher."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str | None = None
    phone: str | None = None


class AgentSubscription(BaseModel):
    """A user's subscription to one agent, as handed to its executor."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    user_id: str
    agent_type: str
    is_enabled: bool = True
    configuration: dict[str, Any] = Field(default_factory=dict)
