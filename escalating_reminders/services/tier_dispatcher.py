"""Tier dispatcher.

Fans a tier out to its notification targets: the tier's agents, plus the
owner's trusted contacts when the tier opts in. Every target is attempted
independently under its own timeout and logged as one NotificationAttempt.
A failing target never stops the others and never raises out of dispatch.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escalating_reminders.config import settings
from escalating_reminders.core.tiers import TierSpec, get_tier
from escalating_reminders.exceptions import DispatchFailureError, UnknownAgentTypeError
from escalating_reminders.logging_config import get_logger
from escalating_reminders.models.escalation_state import EscalationState
from escalating_reminders.models.notification_attempt import (
    AttemptOutcome,
    NotificationAttempt,
)
from escalating_reminders.schemas.agent import (
    DEFAULT_ACTIONS,
    ContactRecipient,
    ContactRef,
    NotificationPayload,
)
from escalating_reminders.services.agent_execution import AgentExecutionService
from escalating_reminders.services.reminders import ReminderInfo, ReminderReader
from escalating_reminders.services.trusted_contacts import TrustedContactProvider

logger = get_logger(__name__)

# Target key recorded when the contact list itself could not be fetched
CONTACT_RESOLUTION_TARGET = "contact:*"


@dataclass(frozen=True)
class DispatchTarget:
    """One recipient/channel pair for a tier."""

    key: str
    agent_type: str | None
    agent_id: str | None = None
    contact: ContactRef | None = None


async def get_attempts_for_tier(
    db: AsyncSession,
    state_id: uuid.UUID,
    tier_number: int,
) -> list[NotificationAttempt]:
    """Get the attempts already logged for one tier of one escalation."""
    result = await db.execute(
        select(NotificationAttempt)
        .where(
            NotificationAttempt.escalation_state_id == state_id,
            NotificationAttempt.tier_number == tier_number,
        )
        .order_by(NotificationAttempt.target)
    )
    return list(result.scalars().all())


def contact_channel(contact: ContactRef) -> str | None:
    """Pick the agent type used to reach a trusted contact."""
    if contact.email:
        return "email"
    if contact.phone:
        return "sms"
    return None


def build_tier_message(
    tier: TierSpec,
    reminder: ReminderInfo | None,
    tier_count: int,
) -> str:
    """Message body for a tier: explicit tier text, then reminder text."""
    if tier.message:
        return tier.message
    if reminder is not None:
        return reminder.description or reminder.title
    return f"You have an unacknowledged reminder (escalation {tier.tier_number}/{tier_count})."


class TierDispatcher:
    """Resolves tier targets and fans out delivery attempts."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        agents: AgentExecutionService,
        contacts: TrustedContactProvider,
        reminders: ReminderReader | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_maker = session_maker
        self._agents = agents
        self._contacts = contacts
        self._reminders = reminders
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.escalation_dispatch_timeout_seconds
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    async def dispatch(
        self,
        state: EscalationState,
        tier_number: int,
        now: datetime | None = None,
    ) -> list[NotificationAttempt]:
        """Deliver one tier of an escalation and log every attempt.

        Args:
            state: Escalation state being advanced (read-only here).
            tier_number: Tier to dispatch (1-based).
            now: Dispatch timestamp; defaults to the current time.

        Returns:
            The logged attempts for this tier. If another worker logged the
            tier concurrently, its attempts are returned instead.
        """
        now = now or self._clock()
        snapshot = state.tier_snapshot
        tier = get_tier(snapshot, tier_number)
        reminder = await self._load_reminder(state.reminder_id)

        attempts: list[NotificationAttempt] = []
        targets = [
            DispatchTarget(key=f"agent:{agent_id}", agent_type=agent_id, agent_id=agent_id)
            for agent_id in sorted(tier.agent_ids)
        ]

        if tier.include_trusted_contacts:
            try:
                contacts = await self._contacts.list_trusted_contacts(state.owner_id)
            except Exception as e:
                logger.warning(
                    "Trusted contact resolution failed",
                    escalation_state_id=str(state.id),
                    tier=tier_number,
                    error=str(e),
                )
                attempts.append(
                    self._attempt(
                        state, tier_number, CONTACT_RESOLUTION_TARGET, now,
                        AttemptOutcome.FAILED,
                        error=f"Trusted contact resolution failed: {e}",
                    )
                )
            else:
                for contact in contacts:
                    key = f"contact:{contact.id}"
                    channel = contact_channel(contact)
                    if channel is None:
                        attempts.append(
                            self._attempt(
                                state, tier_number, key, now,
                                AttemptOutcome.SKIPPED,
                                contact_ref=contact.id,
                                error="Contact has no email or phone",
                            )
                        )
                        continue
                    targets.append(
                        DispatchTarget(key=key, agent_type=channel, contact=contact)
                    )

        message = build_tier_message(tier, reminder, len(snapshot))
        countdown = (
            get_tier(snapshot, tier_number + 1).delay_minutes * 60
            if tier_number < len(snapshot)
            else None
        )

        results = await asyncio.gather(
            *(
                self._deliver(
                    state,
                    tier_number,
                    target,
                    self._build_payload(
                        state, tier_number, target, reminder, message, countdown, now
                    ),
                    now,
                )
                for target in targets
            )
        )
        attempts.extend(results)

        attempts = await self._record(state, tier_number, attempts)

        outcomes = [attempt.outcome for attempt in attempts]
        logger.info(
            "Tier dispatched",
            escalation_state_id=str(state.id),
            reminder_id=state.reminder_id,
            tier=tier_number,
            targets=len(attempts),
            sent=outcomes.count(AttemptOutcome.SENT),
            failed=outcomes.count(AttemptOutcome.FAILED),
            skipped=outcomes.count(AttemptOutcome.SKIPPED),
        )
        return attempts

    async def _load_reminder(self, reminder_id: str) -> ReminderInfo | None:
        if self._reminders is None:
            return None
        try:
            return await self._reminders.get_reminder(reminder_id)
        except Exception as e:
            logger.warning(
                "Reminder lookup failed, using generic notification text",
                reminder_id=reminder_id,
                error=str(e),
            )
            return None

    def _build_payload(
        self,
        state: EscalationState,
        tier_number: int,
        target: DispatchTarget,
        reminder: ReminderInfo | None,
        message: str,
        countdown: int | None,
        now: datetime,
    ) -> NotificationPayload:
        recipient = None
        if target.contact is not None:
            recipient = ContactRecipient(
                contact_ref=target.contact.id,
                name=target.contact.name,
                email=target.contact.email,
                phone=target.contact.phone,
            )

        return NotificationPayload(
            notification_id=f"notif_{uuid.uuid4().hex}",
            reminder_id=state.reminder_id,
            user_id=state.owner_id,
            title=reminder.title if reminder else "Reminder",
            message=message,
            escalation_tier=tier_number,
            importance=reminder.importance if reminder else "MEDIUM",
            timestamp=now,
            actions=list(DEFAULT_ACTIONS),
            recipient=recipient,
            metadata={
                "escalation_state_id": str(state.id),
                "tier_count": state.tier_count,
            },
            escalation_countdown=countdown,
        )

    async def _deliver(
        self,
        state: EscalationState,
        tier_number: int,
        target: DispatchTarget,
        payload: NotificationPayload,
        now: datetime,
    ) -> NotificationAttempt:
        contact_ref = target.contact.id if target.contact else None
        try:
            result = await asyncio.wait_for(
                self._agents.execute(target.agent_type, state.owner_id, payload),
                timeout=self._timeout,
            )
            if result.skipped:
                return self._attempt(
                    state, tier_number, target.key, now, AttemptOutcome.SKIPPED,
                    agent_id=target.agent_id, contact_ref=contact_ref,
                    error=result.error,
                )
            if not result.success:
                raise DispatchFailureError(result.error or "Delivery failed")
        except TimeoutError:
            error = f"Timed out after {self._timeout}s"
        except (DispatchFailureError, UnknownAgentTypeError) as e:
            error = str(e)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        else:
            return self._attempt(
                state, tier_number, target.key, now, AttemptOutcome.SENT,
                agent_id=target.agent_id, contact_ref=contact_ref,
                message_id=result.message_id,
            )

        logger.warning(
            "Notification target failed",
            escalation_state_id=str(state.id),
            tier=tier_number,
            target=target.key,
            error=error,
        )
        return self._attempt(
            state, tier_number, target.key, now, AttemptOutcome.FAILED,
            agent_id=target.agent_id, contact_ref=contact_ref, error=error,
        )

    @staticmethod
    def _attempt(
        state: EscalationState,
        tier_number: int,
        target: str,
        now: datetime,
        outcome: AttemptOutcome,
        agent_id: str | None = None,
        contact_ref: str | None = None,
        error: str | None = None,
        message_id: str | None = None,
    ) -> NotificationAttempt:
        return NotificationAttempt(
            id=uuid.uuid4(),
            escalation_state_id=state.id,
            tier_number=tier_number,
            target=target,
            agent_id=agent_id,
            contact_ref=contact_ref,
            dispatched_at=now,
            outcome=outcome,
            error=error,
            message_id=message_id,
        )

    async def _record(
        self,
        state: EscalationState,
        tier_number: int,
        attempts: list[NotificationAttempt],
    ) -> list[NotificationAttempt]:
        if not attempts:
            return attempts

        async with self._session_maker() as db:
            db.add_all(attempts)
            try:
                await db.commit()
            except IntegrityError:
                # Another worker already logged this tier
                await db.rollback()
                logger.debug(
                    "Tier attempts already recorded (race condition)",
                    escalation_state_id=str(state.id),
                    tier=tier_number,
                )
                return await get_attempts_for_tier(db, state.id, tier_number)
        return attempts
