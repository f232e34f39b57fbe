# Database Models
from escalating_reminders.models.base import Base, TimestampMixin
from escalating_reminders.models.escalation_profile import EscalationProfile
from escalating_reminders.models.escalation_state import (
    CancelReason,
    EscalationState,
    EscalationStatus,
)
from escalating_reminders.models.notification_attempt import (
    AttemptOutcome,
    NotificationAttempt,
)
from escalating_reminders.models.trusted_contact import TrustedContact
from escalating_reminders.models.user_agent_subscription import UserAgentSubscription

__all__ = [
    "AttemptOutcome",
    "Base",
    "CancelReason",
    "EscalationProfile",
    "EscalationState",
    "EscalationStatus",
    "NotificationAttempt",
    "TimestampMixin",
    "TrustedContact",
    "UserAgentSubscription",
]
