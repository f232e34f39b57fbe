"""Agent subscription schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AgentSubscriptionUpsert(BaseModel):
    """Request schema for subscribing to an agent or changing its settings."""

    is_enabled: bool = True
    configuration: dict[str, Any] = Field(default_factory=dict)


class AgentSubscriptionResponse(BaseModel):
    """Response schema for an agent subscription."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    agent_type: str
    is_enabled: bool
    configuration: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class AgentSubscriptionListResponse(BaseModel):
    subscriptions: list[AgentSubscriptionResponse]
    count: int
