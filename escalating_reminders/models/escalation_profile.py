"""Escalation profile model.

A named, ordered list of tiers. Profiles with no owner are shared presets.
"""

import uuid
from typing import Any

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from escalating_reminders.models.base import Base, JSONType, TimestampMixin


def _profile_id() -> str:
    return f"esc_{uuid.uuid4().hex}"


class EscalationProfile(Base, TimestampMixin):
    """User-owned or preset escalation profile.

    ``tiers`` holds the raw tier dicts as edited by the owner. Escalations
    never read this column after start; they embed a validated snapshot.
    """

    __tablename__ = "escalation_profiles"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=_profile_id,
    )

    # NULL for shared presets
    user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    is_preset: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    tiers: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationProfile(id={self.id!r}, name={self.name!r}, "
            f"preset={self.is_preset}, tiers={len(self.tiers or [])})>"
        )
