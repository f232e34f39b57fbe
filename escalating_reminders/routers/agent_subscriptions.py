"""Agent subscriptions router.

Lets a user turn notification agents on and off and store the settings
each agent needs. Escalations only deliver through enabled subscriptions.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from escalating_reminders.database import get_db
from escalating_reminders.dependencies import get_current_user_id
from escalating_reminders.exceptions import EscalationError
from escalating_reminders.routers.errors import to_http_exception
from escalating_reminders.schemas.agent_subscription import (
    AgentSubscriptionListResponse,
    AgentSubscriptionResponse,
    AgentSubscriptionUpsert,
)
from escalating_reminders.services.agent_subscriptions import (
    delete_subscription,
    list_subscriptions,
    upsert_subscription,
)

router = APIRouter(
    prefix="/api/agent-subscriptions",
    tags=["agent-subscriptions"],
)


@router.get("", response_model=AgentSubscriptionListResponse)
async def get_subscriptions(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> AgentSubscriptionListResponse:
    subscriptions = await list_subscriptions(db, user_id)
    return AgentSubscriptionListResponse(
        subscriptions=[
            AgentSubscriptionResponse.model_validate(s) for s in subscriptions
        ],
        count=len(subscriptions),
    )


@router.put("/{agent_type}", response_model=AgentSubscriptionResponse)
async def put_subscription(
    agent_type: str,
    data: AgentSubscriptionUpsert,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> AgentSubscriptionResponse:
    """Subscribe to an agent, or replace its settings."""
    try:
        subscription = await upsert_subscription(db, user_id, agent_type, data)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return AgentSubscriptionResponse.model_validate(subscription)


@router.delete("/{agent_type}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_subscription(
    agent_type: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await delete_subscription(db, user_id, agent_type)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
