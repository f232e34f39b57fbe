"""Escalation profiles router.

CRUD endpoints for a user's custom escalation profiles. Presets are
listed alongside them but are read-only.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from escalating_reminders.database import get_db
from escalating_reminders.dependencies import get_current_user_id
from escalating_reminders.exceptions import EscalationError
from escalating_reminders.routers.errors import to_http_exception
from escalating_reminders.schemas.escalation_profile import (
    EscalationProfileCreate,
    EscalationProfileListResponse,
    EscalationProfileResponse,
    EscalationProfileUpdate,
)
from escalating_reminders.services.escalation_profile import (
    create_profile,
    delete_profile,
    get_profile,
    list_profiles,
    update_profile,
)

router = APIRouter(
    prefix="/api/escalation-profiles",
    tags=["escalation-profiles"],
)


@router.get("", response_model=EscalationProfileListResponse)
async def get_profiles(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> EscalationProfileListResponse:
    """List the current user's profiles and the shared presets."""
    profiles = await list_profiles(db, user_id)
    return EscalationProfileListResponse(
        profiles=[EscalationProfileResponse.model_validate(p) for p in profiles],
        count=len(profiles),
    )


@router.post(
    "",
    response_model=EscalationProfileResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_profile(
    data: EscalationProfileCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> EscalationProfileResponse:
    """Create a custom profile.

    Returns 422 if the tiers are not numbered 1..N without gaps.
    """
    try:
        profile = await create_profile(db, user_id, data)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationProfileResponse.model_validate(profile)


@router.get("/{profile_id}", response_model=EscalationProfileResponse)
async def get_profile_by_id(
    profile_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> EscalationProfileResponse:
    try:
        profile = await get_profile(db, profile_id, user_id)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationProfileResponse.model_validate(profile)


@router.patch("/{profile_id}", response_model=EscalationProfileResponse)
async def edit_profile(
    profile_id: str,
    data: EscalationProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> EscalationProfileResponse:
    """Update a custom profile. Running escalations keep their old tiers."""
    try:
        profile = await update_profile(db, user_id, profile_id, data)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
    return EscalationProfileResponse.model_validate(profile)


@router.delete("/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_profile(
    profile_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a custom profile."""
    try:
        await delete_profile(db, user_id, profile_id)
    except EscalationError as exc:
        raise to_http_exception(exc) from exc
