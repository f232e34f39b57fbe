"""Escalation state model.

One run of an escalation profile against one reminder. Terminal rows are
kept for history; only ``active`` rows are ever mutated.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from escalating_reminders.core.tiers import TierSnapshot, snapshot_from_json
from escalating_reminders.models.base import (
    Base,
    JSONType,
    UTCDateTime,
    enum_column,
    utcnow,
)


class EscalationStatus(str, enum.Enum):
    """Lifecycle status of an escalation state."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


class CancelReason(str, enum.Enum):
    """Why an active escalation was stopped by a collaborator."""

    ACKNOWLEDGED = "acknowledged"
    COMPLETED = "completed"
    SNOOZED = "snoozed"
    DELETED = "deleted"


TERMINAL_STATUSES = frozenset(
    {
        EscalationStatus.ACKNOWLEDGED,
        EscalationStatus.CANCELLED,
        EscalationStatus.EXHAUSTED,
    }
)


class EscalationState(Base):
    """Escalation progress for a reminder.

    The partial unique index on ``reminder_id`` restricted to active rows
    guarantees at most one active escalation per reminder, which is what
    makes duplicate ``start`` calls collapse onto a single state.
    """

    __tablename__ = "escalation_states"
    __table_args__ = (
        Index(
            "uq_escalation_states_active_reminder",
            "reminder_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index(
            "ix_escalation_states_due",
            "status",
            "next_advance_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    reminder_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    owner_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # Informational only; ``tiers`` is the authoritative snapshot
    profile_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    tiers: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
    )

    # 0 until tier 1 has been dispatched
    current_tier: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    status: Mapped[EscalationStatus] = mapped_column(
        enum_column(EscalationStatus, "escalationstatus"),
        nullable=False,
        default=EscalationStatus.ACTIVE,
    )

    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    next_advance_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    acknowledged_by: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    acknowledged_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    cancel_reason: Mapped[CancelReason | None] = mapped_column(
        enum_column(CancelReason, "escalationcancelreason"),
        nullable=True,
    )

    ended_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    @property
    def tier_snapshot(self) -> TierSnapshot:
        return snapshot_from_json(self.tiers)

    @property
    def tier_count(self) -> int:
        return len(self.tiers)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<EscalationState(id={self.id}, reminder={self.reminder_id!r}, "
            f"tier={self.current_tier}/{len(self.tiers or [])}, "
            f"status={self.status.value})>"
        )
