"""Trusted contact model.

Third parties a user allows to be notified at tiers that opt in.
"""

import uuid

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from escalating_reminders.models.base import Base, TimestampMixin


class TrustedContact(Base, TimestampMixin):
    """Trusted contact for reminder escalation.

    A contact is reachable by email, phone, or both. ``position`` orders
    contacts within a user's list.
    """

    __tablename__ = "trusted_contacts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    phone: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<TrustedContact(name={self.name!r}, user={self.user_id!r})>"
