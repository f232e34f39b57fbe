"""Notification attempt model.

Append-only log of every delivery attempt made while dispatching a tier.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from escalating_reminders.models.base import Base, UTCDateTime, enum_column, utcnow


class AttemptOutcome(str, enum.Enum):
    """Outcome of a single delivery attempt."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationAttempt(Base):
    """One delivery attempt to one target for one tier.

    The unique constraint on (escalation_state_id, tier_number, target)
    ensures a tier is logged once per target even if two workers race.
    """

    __tablename__ = "notification_attempts"
    __table_args__ = (
        UniqueConstraint(
            "escalation_state_id",
            "tier_number",
            "target",
            name="uq_notification_attempts_state_tier_target",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    escalation_state_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("escalation_states.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    tier_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # "agent:<agent_id>" or "contact:<contact_ref>"
    target: Mapped[str] = mapped_column(
        String(160),
        nullable=False,
    )

    agent_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    contact_ref: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    dispatched_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    outcome: Mapped[AttemptOutcome] = mapped_column(
        enum_column(AttemptOutcome, "attemptoutcome"),
        nullable=False,
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationAttempt(state={self.escalation_state_id}, "
            f"tier={self.tier_number}, target={self.target!r}, "
            f"outcome={self.outcome.value})>"
        )
