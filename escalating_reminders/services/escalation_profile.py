"""Escalation profile service.

Profile management for owners plus the resolver that turns a profile into
the immutable tier snapshot an escalation runs against.
"""

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from escalating_reminders.core.tiers import TierSnapshot, build_snapshot, snapshot_to_json
from escalating_reminders.exceptions import ForbiddenError, NotFoundError
from escalating_reminders.logging_config import get_logger
from escalating_reminders.models.escalation_profile import EscalationProfile
from escalating_reminders.schemas.escalation_profile import (
    EscalationProfileCreate,
    EscalationProfileUpdate,
    EscalationTierSchema,
)

logger = get_logger(__name__)


def _tiers_to_json(tiers: list[EscalationTierSchema]) -> list[dict]:
    return snapshot_to_json(
        build_snapshot([tier.model_dump() for tier in tiers])
    )


async def list_profiles(db: AsyncSession, user_id: str) -> list[EscalationProfile]:
    """List the user's own profiles followed by the shared presets.

    Args:
        db: Database session.
        user_id: Owner's ID.

    Returns:
        Profiles visible to the user.
    """
    result = await db.execute(
        select(EscalationProfile)
        .where(
            or_(
                EscalationProfile.user_id == user_id,
                EscalationProfile.is_preset.is_(True),
            )
        )
        .order_by(EscalationProfile.is_preset, EscalationProfile.name)
    )
    return list(result.scalars().all())


async def get_profile(
    db: AsyncSession,
    profile_id: str,
    user_id: str,
) -> EscalationProfile:
    """Get a profile visible to the user (own or preset).

    Raises:
        NotFoundError: If the profile does not exist or belongs to someone else.
    """
    result = await db.execute(
        select(EscalationProfile).where(
            EscalationProfile.id == profile_id,
            or_(
                EscalationProfile.user_id == user_id,
                EscalationProfile.is_preset.is_(True),
            ),
        )
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise NotFoundError(f"Escalation profile {profile_id} not found")
    return profile


async def _get_owned_profile(
    db: AsyncSession,
    profile_id: str,
    user_id: str,
) -> EscalationProfile:
    profile = await db.get(EscalationProfile, profile_id)
    if profile is None:
        raise NotFoundError(f"Escalation profile {profile_id} not found")
    if profile.is_preset:
        raise ForbiddenError("Preset profiles cannot be modified")
    if profile.user_id != user_id:
        raise ForbiddenError("You do not have permission to modify this profile")
    return profile


async def create_profile(
    db: AsyncSession,
    user_id: str,
    data: EscalationProfileCreate,
) -> EscalationProfile:
    """Create a custom profile after validating its tiers.

    Raises:
        ValidationError: If the tier list is malformed.
    """
    profile = EscalationProfile(
        user_id=user_id,
        name=data.name,
        description=data.description,
        is_preset=False,
        tiers=_tiers_to_json(data.tiers),
    )
    db.add(profile)
    await db.commit()
    await db.refresh(profile)

    logger.info(
        "Created escalation profile",
        profile_id=profile.id,
        user_id=user_id,
        tiers=len(profile.tiers),
    )
    return profile


async def update_profile(
    db: AsyncSession,
    user_id: str,
    profile_id: str,
    updates: EscalationProfileUpdate,
) -> EscalationProfile:
    """Update a custom profile.

    Only fields provided in the request are updated. Escalations already
    running keep the tiers they were started with.

    Raises:
        NotFoundError: If the profile does not exist.
        ForbiddenError: If the profile is a preset or owned by someone else.
        ValidationError: If the new tier list is malformed.
    """
    profile = await _get_owned_profile(db, profile_id, user_id)

    if updates.tiers is not None:
        profile.tiers = _tiers_to_json(updates.tiers)
    if updates.name is not None:
        profile.name = updates.name
    if "description" in updates.model_fields_set:
        profile.description = updates.description

    await db.commit()
    await db.refresh(profile)

    logger.info(
        "Updated escalation profile",
        profile_id=profile_id,
        fields=sorted(updates.model_fields_set),
    )
    return profile


async def delete_profile(db: AsyncSession, user_id: str, profile_id: str) -> None:
    """Delete a custom profile.

    Raises:
        NotFoundError: If the profile does not exist.
        ForbiddenError: If the profile is a preset or owned by someone else.
    """
    profile = await _get_owned_profile(db, profile_id, user_id)
    await db.delete(profile)
    await db.commit()

    logger.info("Deleted escalation profile", profile_id=profile_id, user_id=user_id)


class ProfileResolver:
    """Resolves a profile into a validated, immutable tier snapshot."""

    async def resolve(
        self,
        db: AsyncSession,
        profile_id: str,
        owner_id: str,
    ) -> TierSnapshot:
        """Look up a profile in the owner's namespace, then among presets.

        Raises:
            NotFoundError: If neither namespace has the profile.
            ValidationError: If the stored tiers are malformed.
        """
        result = await db.execute(
            select(EscalationProfile).where(
                EscalationProfile.id == profile_id,
                EscalationProfile.user_id == owner_id,
            )
        )
        profile = result.scalar_one_or_none()

        if profile is None:
            result = await db.execute(
                select(EscalationProfile).where(
                    EscalationProfile.id == profile_id,
                    EscalationProfile.user_id.is_(None),
                    EscalationProfile.is_preset.is_(True),
                )
            )
            profile = result.scalar_one_or_none()

        if profile is None:
            raise NotFoundError(f"Escalation profile {profile_id} not found")

        # build_snapshot copies into frozen models, detached from the ORM row
        return build_snapshot(profile.tiers)
