"""Agent subscription service.

Manages which agents a user has subscribed to and the per-agent settings
their executors deliver with. Agent execution reads subscriptions through
the ``AgentSubscriptionProvider`` shape only.
"""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escalating_reminders.exceptions import ConflictError, NotFoundError
from escalating_reminders.logging_config import get_logger
from escalating_reminders.models.user_agent_subscription import UserAgentSubscription
from escalating_reminders.schemas.agent import AgentSubscription
from escalating_reminders.schemas.agent_subscription import AgentSubscriptionUpsert

logger = get_logger(__name__)


class AgentSubscriptionProvider(Protocol):
    async def get_subscription(
        self, user_id: str, agent_type: str
    ) -> AgentSubscription | None:
        ...


async def get_subscription(
    db: AsyncSession,
    user_id: str,
    agent_type: str,
) -> UserAgentSubscription | None:
    result = await db.execute(
        select(UserAgentSubscription).where(
            UserAgentSubscription.user_id == user_id,
            UserAgentSubscription.agent_type == agent_type,
        )
    )
    return result.scalar_one_or_none()


async def list_subscriptions(
    db: AsyncSession,
    user_id: str,
) -> list[UserAgentSubscription]:
    """Get all of a user's subscriptions, enabled or not, by agent type."""
    result = await db.execute(
        select(UserAgentSubscription)
        .where(UserAgentSubscription.user_id == user_id)
        .order_by(UserAgentSubscription.agent_type)
    )
    return list(result.scalars().all())


async def upsert_subscription(
    db: AsyncSession,
    user_id: str,
    agent_type: str,
    data: AgentSubscriptionUpsert,
) -> UserAgentSubscription:
    """Subscribe a user to an agent, or replace the existing settings.

    Raises:
        ConflictError: If a concurrent request created the subscription first.
    """
    subscription = await get_subscription(db, user_id, agent_type)
    created = subscription is None
    if subscription is None:
        subscription = UserAgentSubscription(user_id=user_id, agent_type=agent_type)
        db.add(subscription)

    subscription.is_enabled = data.is_enabled
    subscription.configuration = dict(data.configuration)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(
            f"Subscription to {agent_type} was modified concurrently, retry"
        ) from e
    await db.refresh(subscription)

    logger.info(
        "Created agent subscription" if created else "Updated agent subscription",
        user_id=user_id,
        agent_type=agent_type,
        is_enabled=subscription.is_enabled,
    )
    return subscription


async def delete_subscription(db: AsyncSession, user_id: str, agent_type: str) -> None:
    """Unsubscribe a user from an agent.

    Raises:
        NotFoundError: If the user is not subscribed to the agent.
    """
    subscription = await get_subscription(db, user_id, agent_type)
    if subscription is None:
        raise NotFoundError(f"No subscription to agent {agent_type}")

    await db.delete(subscription)
    await db.commit()

    logger.info("Deleted agent subscription", user_id=user_id, agent_type=agent_type)


class DatabaseAgentSubscriptionProvider:
    """Subscriptions read from the ``user_agent_subscriptions`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get_subscription(
        self, user_id: str, agent_type: str
    ) -> AgentSubscription | None:
        async with self._session_maker() as db:
            subscription = await get_subscription(db, user_id, agent_type)
        if subscription is None:
            return None
        return AgentSubscription.model_validate(subscription)
