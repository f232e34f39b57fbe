"""Reminder lookup contract.

Reminders are owned by another service; the escalation engine only reads
the few fields it needs to build a notification.
"""

from dataclasses import dataclass
from typing import Protocol

from escalating_reminders.schemas.agent import ReminderImportance


@dataclass(frozen=True)
class ReminderInfo:
    """Read-only view of a reminder."""

    id: str
    owner_id: str
    title: str
    importance: ReminderImportance = "MEDIUM"
    description: str | None = None


class ReminderReader(Protocol):
    async def get_reminder(self, reminder_id: str) -> ReminderInfo | None:
        ...
