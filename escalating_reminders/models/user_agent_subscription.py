"""User agent subscription model.

Which notification channels a user has turned on, with the per-channel
settings (webhook URL, device token, ...) the channel needs to deliver.
"""

import uuid
from typing import Any

from sqlalchemy import Boolean, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from escalating_reminders.models.base import Base, JSONType, TimestampMixin


class UserAgentSubscription(Base, TimestampMixin):
    """A user's subscription to one agent type.

    One row per (user, agent type). A disabled subscription is kept so the
    configuration survives toggling the channel off and on.
    """

    __tablename__ = "user_agent_subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "agent_type",
            name="uq_user_agent_subscriptions_user_agent",
        ),
    )

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

    agent_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    is_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    configuration: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return (
            f"<UserAgentSubscription(user={self.user_id!r}, "
            f"agent_type={self.agent_type!r}, enabled={self.is_enabled})>"
        )
