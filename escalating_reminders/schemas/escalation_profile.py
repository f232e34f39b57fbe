"""Escalation profile schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EscalationTierSchema(BaseModel):
    """One tier as submitted by a profile owner."""

    model_config = ConfigDict(populate_by_name=True)

    tier_number: int = Field(ge=1, alias="tierNumber")
    delay_minutes: int = Field(ge=0, alias="delayMinutes")
    agent_ids: list[str] = Field(default_factory=list, alias="agentIds")
    include_trusted_contacts: bool = Field(
        default=False, alias="includeTrustedContacts"
    )
    message: str | None = Field(default=None, max_length=1000)


class EscalationProfileCreate(BaseModel):
    """Request schema for creating a custom profile."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    tiers: list[EscalationTierSchema]


class EscalationProfileUpdate(BaseModel):
    """Request schema for updating a custom profile.

    All fields are optional; only provided fields are updated.
    """

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    tiers: list[EscalationTierSchema] | None = None


class EscalationProfileResponse(BaseModel):
    """Response schema for an escalation profile."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str | None
    name: str
    description: str | None
    is_preset: bool
    tiers: list[EscalationTierSchema]
    created_at: datetime
    updated_at: datetime


class EscalationProfileListResponse(BaseModel):
    """Profiles visible to a user: their own, then the presets."""

    profiles: list[EscalationProfileResponse]
    count: int
