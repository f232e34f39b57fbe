"""Immutable escalation tier snapshots.

Pure data models, no database dependencies. A ``TierSnapshot`` is the
validated, frozen copy of a profile's tier list that an escalation state
owns for its whole lifetime; edits to the profile never reach it.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic import ValidationError as PydanticValidationError

from escalating_reminders.exceptions import ValidationError


class TierSpec(BaseModel):
    """One validated escalation tier."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tier_number: int = Field(ge=1, alias="tierNumber")
    delay_minutes: int = Field(ge=0, alias="delayMinutes")
    agent_ids: frozenset[str] = Field(default=frozenset(), alias="agentIds")
    include_trusted_contacts: bool = Field(
        default=False, alias="includeTrustedContacts"
    )
    message: str | None = None

    @field_serializer("agent_ids")
    def _serialize_agent_ids(self, agent_ids: frozenset[str]) -> list[str]:
        return sorted(agent_ids)


TierSnapshot = tuple[TierSpec, ...]


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}"


def build_snapshot(raw_tiers: Iterable[Mapping[str, Any] | TierSpec] | None) -> TierSnapshot:
    """Validate a raw tier list and freeze it into an ordered snapshot.

    Accepts camelCase (``tierNumber``) or snake_case keys.

    Raises:
        ValidationError: empty list, gap or duplicate in tier numbers,
            negative delay, or a tier with nothing to notify.
    """
    if not raw_tiers:
        raise ValidationError("Escalation profile must have at least one tier")

    tiers: list[TierSpec] = []
    for index, raw in enumerate(raw_tiers):
        if isinstance(raw, TierSpec):
            tiers.append(raw)
            continue
        try:
            tiers.append(TierSpec.model_validate(raw))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid tier at position {index}: {_describe(e)}") from e

    if not tiers:
        raise ValidationError("Escalation profile must have at least one tier")

    numbers = [tier.tier_number for tier in tiers]
    if len(set(numbers)) != len(numbers):
        raise ValidationError(f"Duplicate tier numbers: {sorted(numbers)}")
    if sorted(numbers) != list(range(1, len(numbers) + 1)):
        raise ValidationError(
            f"Tier numbers must be contiguous starting from 1, got {sorted(numbers)}"
        )

    for tier in tiers:
        if not tier.agent_ids and not tier.include_trusted_contacts:
            raise ValidationError(
                f"Tier {tier.tier_number} has no agents and excludes trusted contacts"
            )

    return tuple(sorted(tiers, key=lambda tier: tier.tier_number))


def snapshot_to_json(snapshot: TierSnapshot) -> list[dict[str, Any]]:
    """Serialize a snapshot for storage on an escalation state."""
    return [tier.model_dump(mode="json") for tier in snapshot]


def snapshot_from_json(data: list[dict[str, Any]]) -> TierSnapshot:
    """Rebuild a stored snapshot."""
    return tuple(TierSpec.model_validate(item) for item in data)


def get_tier(snapshot: TierSnapshot, tier_number: int) -> TierSpec:
    """Return the tier with the given number (1-based)."""
    return snapshot[tier_number - 1]
