"""Preset escalation profiles.

Shared profiles available to every user. Seeded into the database on
startup; owners cannot edit or delete them.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escalating_reminders.core.tiers import build_snapshot, snapshot_to_json
from escalating_reminders.logging_config import get_logger
from escalating_reminders.models.escalation_profile import EscalationProfile

logger = get_logger(__name__)

ALL_CHANNELS = ["email", "sms", "push"]

ESCALATION_PRESETS: list[dict[str, Any]] = [
    {
        "id": "esc_preset_gentle",
        "name": "Gentle",
        "description": "Gradual escalation over hours. Good for low-stakes reminders.",
        "tiers": [
            {"tierNumber": 1, "delayMinutes": 0, "agentIds": ["email"]},
            {"tierNumber": 2, "delayMinutes": 60, "agentIds": ["email", "push"]},
            {"tierNumber": 3, "delayMinutes": 180, "agentIds": ALL_CHANNELS},
        ],
    },
    {
        "id": "esc_preset_urgent",
        "name": "Urgent",
        "description": "Rapid escalation within minutes. For time-sensitive tasks.",
        "tiers": [
            {"tierNumber": 1, "delayMinutes": 0, "agentIds": ["email", "sms"]},
            {"tierNumber": 2, "delayMinutes": 5, "agentIds": ALL_CHANNELS},
            {"tierNumber": 3, "delayMinutes": 15, "agentIds": ALL_CHANNELS},
            {
                "tierNumber": 4,
                "delayMinutes": 30,
                "agentIds": ALL_CHANNELS,
                "includeTrustedContacts": True,
            },
        ],
    },
    {
        "id": "esc_preset_critical",
        "name": "Critical",
        "description": "Immediate multi-channel with social escalation. For health/safety.",
        "tiers": [
            {"tierNumber": 1, "delayMinutes": 0, "agentIds": ALL_CHANNELS},
            *[
                {
                    "tierNumber": number,
                    "delayMinutes": delay,
                    "agentIds": ALL_CHANNELS,
                    "includeTrustedContacts": True,
                }
                for number, delay in ((2, 2), (3, 5), (4, 10), (5, 15))
            ],
        ],
    },
]


def get_escalation_preset(preset_id: str) -> dict[str, Any] | None:
    """Get a built-in preset by ID."""
    return next((p for p in ESCALATION_PRESETS if p["id"] == preset_id), None)


async def seed_presets(db: AsyncSession) -> int:
    """Insert any built-in preset missing from the database.

    Existing preset rows are left untouched.

    Returns:
        Number of presets inserted.
    """
    result = await db.execute(
        select(EscalationProfile.id).where(EscalationProfile.is_preset.is_(True))
    )
    existing = set(result.scalars().all())

    inserted = 0
    for preset in ESCALATION_PRESETS:
        if preset["id"] in existing:
            continue
        db.add(
            EscalationProfile(
                id=preset["id"],
                user_id=None,
                name=preset["name"],
                description=preset["description"],
                is_preset=True,
                tiers=snapshot_to_json(build_snapshot(preset["tiers"])),
            )
        )
        inserted += 1

    if inserted:
        await db.commit()
        logger.info("Seeded escalation presets", count=inserted)

    return inserted
