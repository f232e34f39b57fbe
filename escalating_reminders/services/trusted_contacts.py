"""Trusted contact resolution.

Read-only lookup of the third parties a reminder owner lets escalations
reach. The dispatcher depends on the ``TrustedContactProvider`` shape only.
"""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escalating_reminders.models.trusted_contact import TrustedContact
from escalating_reminders.schemas.agent import ContactRef


class TrustedContactProvider(Protocol):
    async def list_trusted_contacts(self, owner_id: str) -> list[ContactRef]:
        ...


async def get_trusted_contacts(
    db: AsyncSession,
    owner_id: str,
) -> list[TrustedContact]:
    """Get a user's trusted contacts in display order.

    Args:
        db: Database session.
        owner_id: Reminder owner's ID.

    Returns:
        List of trusted contacts, ordered by position.
    """
    result = await db.execute(
        select(TrustedContact)
        .where(TrustedContact.user_id == owner_id)
        .order_by(TrustedContact.position, TrustedContact.created_at)
    )
    return list(result.scalars().all())


class DatabaseTrustedContactProvider:
    """Trusted contacts read from the ``trusted_contacts`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_trusted_contacts(self, owner_id: str) -> list[ContactRef]:
        async with self._session_maker() as db:
            contacts = await get_trusted_contacts(db, owner_id)
        return [
            ContactRef(
                id=str(contact.id),
                name=contact.name,
                email=contact.email,
                phone=contact.phone,
            )
            for contact in contacts
        ]
