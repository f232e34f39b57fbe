"""Escalation state machine.

Owns the lifecycle of one reminder's escalation:

    (none) --start--> ACTIVE(tier=1) --advance--> ... ACTIVE(tier=N) --advance--> EXHAUSTED
    ACTIVE --acknowledge--> ACKNOWLEDGED
    ACTIVE --cancel--> CANCELLED

Every transition is committed as a conditional UPDATE guarded on the status
(and, for advance, the tier) the transition was computed from. A user
action that lands while a worker is dispatching therefore always wins and
the worker's stale advancement is discarded. Notification attempts already
logged are kept.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escalating_reminders.config import settings
from escalating_reminders.core.tiers import get_tier, snapshot_to_json
from escalating_reminders.exceptions import (
    InvalidStateTransitionError,
    LeaseContentionError,
    NotFoundError,
    ValidationError,
)
from escalating_reminders.logging_config import get_logger
from escalating_reminders.models.escalation_state import (
    CancelReason,
    EscalationState,
    EscalationStatus,
)
from escalating_reminders.models.notification_attempt import NotificationAttempt
from escalating_reminders.services.escalation_profile import ProfileResolver
from escalating_reminders.services.event_bus import (
    ESCALATION_ACKNOWLEDGED,
    ESCALATION_ADVANCED,
    ESCALATION_CANCELLED,
    ESCALATION_EXHAUSTED,
    ESCALATION_STARTED,
    EscalationEvent,
    EventBus,
)
from escalating_reminders.services.lease import LeaseGuard, new_owner_token
from escalating_reminders.services.tier_dispatcher import (
    TierDispatcher,
    get_attempts_for_tier,
)

logger = get_logger(__name__)


async def _load_state(db: AsyncSession, state_id: uuid.UUID) -> EscalationState:
    state = await db.get(EscalationState, state_id, populate_existing=True)
    if state is None:
        raise NotFoundError(f"Escalation state {state_id} not found")
    return state


async def _active_for_reminder(
    db: AsyncSession,
    reminder_id: str,
) -> EscalationState | None:
    result = await db.execute(
        select(EscalationState)
        .where(
            EscalationState.reminder_id == reminder_id,
            EscalationState.status == EscalationStatus.ACTIVE,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _check_reminder_owner(state: EscalationState, owner_id: str) -> None:
    # Same error as a missing profile so the other escalation stays invisible
    if state.owner_id != owner_id:
        logger.warning(
            "Start rejected, reminder escalating for another user",
            reminder_id=state.reminder_id,
            user_id=owner_id,
        )
        raise NotFoundError(f"Reminder {state.reminder_id} not found")


class EscalationStateMachine:
    """Start, advance, acknowledge and cancel escalations."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        dispatcher: TierDispatcher,
        lease_guard: LeaseGuard,
        resolver: ProfileResolver | None = None,
        event_bus: EventBus | None = None,
        lease_ttl_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_maker = session_maker
        self._dispatcher = dispatcher
        self._lease = lease_guard
        self._resolver = resolver or ProfileResolver()
        self._events = event_bus
        self._lease_ttl = (
            lease_ttl_seconds
            if lease_ttl_seconds is not None
            else settings.escalation_lease_ttl_seconds
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _publish(
        self,
        event_type: str,
        state: EscalationState,
        now: datetime,
        **data: Any,
    ) -> None:
        if self._events is None:
            return
        await self._events.publish(
            EscalationEvent(
                type=event_type,
                escalation_state_id=state.id,
                reminder_id=state.reminder_id,
                tier=state.current_tier,
                occurred_at=now,
                data=data,
            )
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(
        self,
        reminder_id: str,
        profile_id: str,
        owner_id: str,
        now: datetime | None = None,
    ) -> EscalationState:
        """Start escalating a reminder and dispatch tier 1.

        Duplicate starts for a reminder that already has an active
        escalation return that escalation unchanged.

        Args:
            reminder_id: Reminder to escalate.
            profile_id: Profile to snapshot (owner's own or a preset).
            owner_id: Reminder owner.
            now: Start time; defaults to the current time.

        Returns:
            The escalation state, normally already at tier 1.

        Raises:
            NotFoundError: If the profile is unknown to the owner, or the
                reminder is already escalating for a different user.
            ValidationError: If the profile's tiers are malformed.
        """
        now = now or self._clock()

        async with self._session_maker() as db:
            existing = await _active_for_reminder(db, reminder_id)
            if existing is not None:
                _check_reminder_owner(existing, owner_id)
                logger.info(
                    "Escalation already active for reminder",
                    reminder_id=reminder_id,
                    escalation_state_id=str(existing.id),
                )
                return existing

            snapshot = await self._resolver.resolve(db, profile_id, owner_id)

            # Tier 0 and immediately due: if this call dies before dispatching
            # tier 1, the scheduler picks the state up on its next poll.
            state = EscalationState(
                id=uuid.uuid4(),
                reminder_id=reminder_id,
                owner_id=owner_id,
                profile_id=profile_id,
                tiers=snapshot_to_json(snapshot),
                current_tier=0,
                status=EscalationStatus.ACTIVE,
                started_at=now,
                next_advance_at=now,
            )
            db.add(state)
            try:
                await db.commit()
            except IntegrityError:
                # Duplicate trigger won the race for the active slot
                await db.rollback()
                existing = await _active_for_reminder(db, reminder_id)
                if existing is None:
                    raise
                _check_reminder_owner(existing, owner_id)
                logger.info(
                    "Escalation already started (race condition)",
                    reminder_id=reminder_id,
                    escalation_state_id=str(existing.id),
                )
                return existing

        logger.info(
            "Escalation started",
            escalation_state_id=str(state.id),
            reminder_id=reminder_id,
            profile_id=profile_id,
            tiers=len(snapshot),
        )
        await self._publish(ESCALATION_STARTED, state, now, profile_id=profile_id)

        try:
            return await self.advance(state.id, now=now)
        except LeaseContentionError:
            # A scheduler worker already claimed the fresh state and will
            # dispatch tier 1 itself
            logger.info(
                "Tier 1 dispatch taken over by another worker",
                escalation_state_id=str(state.id),
            )
            return await self.get_state(state.id)

    async def advance(
        self,
        state_id: uuid.UUID,
        now: datetime | None = None,
    ) -> EscalationState:
        """Dispatch the next tier of a due escalation and move it forward.

        A state that is no longer active or not yet due is returned
        unchanged. The tier is dispatched even if every target fails.
        If attempts for the tier were already logged by a crashed earlier
        try, dispatch is skipped and only the tier/schedule is committed.

        Raises:
            LeaseContentionError: If another worker holds the lease.
            NotFoundError: If the state does not exist.
        """
        now = now or self._clock()
        token = new_owner_token()

        if not await self._lease.acquire(state_id, token, self._lease_ttl):
            raise LeaseContentionError(
                f"Escalation {state_id} is being advanced by another worker"
            )

        try:
            # Re-read under the lease: acknowledge/cancel may have landed
            # since the caller looked at this state
            async with self._session_maker() as db:
                state = await _load_state(db, state_id)

                if state.status != EscalationStatus.ACTIVE:
                    logger.debug(
                        "Escalation no longer active, skipping advance",
                        escalation_state_id=str(state_id),
                        status=state.status.value,
                    )
                    return state

                if state.next_advance_at is None or state.next_advance_at > now:
                    logger.debug(
                        "Escalation not yet due, skipping advance",
                        escalation_state_id=str(state_id),
                    )
                    return state

                expected_tier = state.current_tier
                tier_number = expected_tier + 1
                if tier_number > state.tier_count:
                    return state

                already_logged = await get_attempts_for_tier(db, state.id, tier_number)

            if already_logged:
                logger.info(
                    "Tier already dispatched, resuming commit",
                    escalation_state_id=str(state_id),
                    tier=tier_number,
                    attempts=len(already_logged),
                )
                attempts = already_logged
            else:
                attempts = await self._dispatcher.dispatch(state, tier_number, now=now)

            if not await self._lease.renew(state_id, token, self._lease_ttl):
                logger.warning(
                    "Lease lost during dispatch, leaving commit to the next holder",
                    escalation_state_id=str(state_id),
                    tier=tier_number,
                )
                raise LeaseContentionError(
                    f"Lease on escalation {state_id} expired during dispatch"
                )

            snapshot = state.tier_snapshot
            values: dict[str, Any] = {"current_tier": tier_number}
            if tier_number >= len(snapshot):
                values.update(
                    status=EscalationStatus.EXHAUSTED,
                    next_advance_at=None,
                    ended_at=now,
                )
            else:
                next_tier = get_tier(snapshot, tier_number + 1)
                values["next_advance_at"] = now + timedelta(
                    minutes=next_tier.delay_minutes
                )

            async with self._session_maker() as db:
                result = await db.execute(
                    update(EscalationState)
                    .where(
                        EscalationState.id == state_id,
                        EscalationState.status == EscalationStatus.ACTIVE,
                        EscalationState.current_tier == expected_tier,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                state = await _load_state(db, state_id)

            if result.rowcount == 0:
                logger.info(
                    "Advancement discarded, escalation changed concurrently",
                    escalation_state_id=str(state_id),
                    tier=tier_number,
                    status=state.status.value,
                )
                return state
        finally:
            await self._lease.release(state_id, token)

        logger.info(
            "Escalation advanced",
            escalation_state_id=str(state_id),
            reminder_id=state.reminder_id,
            tier=state.current_tier,
            status=state.status.value,
            next_advance_at=(
                state.next_advance_at.isoformat() if state.next_advance_at else None
            ),
        )
        await self._publish(
            ESCALATION_ADVANCED,
            state,
            now,
            attempts=len(attempts),
            next_advance_at=state.next_advance_at,
        )
        if state.status == EscalationStatus.EXHAUSTED:
            await self._publish(ESCALATION_EXHAUSTED, state, now)
        return state

    async def _finish(
        self,
        state_id: uuid.UUID,
        action: str,
        values: dict[str, Any],
        is_repeat: Callable[[EscalationState], bool],
    ) -> tuple[EscalationState, bool]:
        """Move an active state to a terminal status.

        Returns the state and whether this call performed the transition.
        A repeat of the same terminal transition is accepted as a no-op.
        """
        async with self._session_maker() as db:
            state = await _load_state(db, state_id)
            if is_repeat(state):
                return state, False
            if state.status != EscalationStatus.ACTIVE:
                raise InvalidStateTransitionError(state_id, state.status.value, action)

            result = await db.execute(
                update(EscalationState)
                .where(
                    EscalationState.id == state_id,
                    EscalationState.status == EscalationStatus.ACTIVE,
                )
                .values(next_advance_at=None, **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            state = await _load_state(db, state_id)

            if result.rowcount == 0:
                # Lost to a concurrent transition; judge against what won
                if is_repeat(state):
                    return state, False
                raise InvalidStateTransitionError(state_id, state.status.value, action)

        return state, True

    async def acknowledge(
        self,
        state_id: uuid.UUID,
        acknowledged_by: str,
        now: datetime | None = None,
    ) -> EscalationState:
        """Acknowledge an escalation, stopping further tiers.

        Already-acknowledged states are returned unchanged, whoever
        acknowledged them.

        Raises:
            NotFoundError: If the state does not exist.
            InvalidStateTransitionError: If the state is cancelled or exhausted.
        """
        now = now or self._clock()
        state, changed = await self._finish(
            state_id,
            "acknowledge",
            {
                "status": EscalationStatus.ACKNOWLEDGED,
                "acknowledged_by": acknowledged_by,
                "acknowledged_at": now,
                "ended_at": now,
            },
            lambda s: s.status == EscalationStatus.ACKNOWLEDGED,
        )
        if changed:
            logger.info(
                "Escalation acknowledged",
                escalation_state_id=str(state_id),
                reminder_id=state.reminder_id,
                tier=state.current_tier,
                acknowledged_by=acknowledged_by,
            )
            await self._publish(
                ESCALATION_ACKNOWLEDGED, state, now, acknowledged_by=acknowledged_by
            )
        return state

    async def cancel(
        self,
        state_id: uuid.UUID,
        reason: CancelReason | str,
        now: datetime | None = None,
    ) -> EscalationState:
        """Cancel a running escalation.

        Cancelling again with the same reason is a no-op.

        Raises:
            NotFoundError: If the state does not exist.
            InvalidStateTransitionError: If the state is acknowledged,
                exhausted, or already cancelled for a different reason.
            ValidationError: If the reason is not a known cancel reason.
        """
        now = now or self._clock()
        try:
            reason = CancelReason(reason)
        except ValueError as e:
            raise ValidationError(f"Unknown cancel reason {reason!r}") from e
        state, changed = await self._finish(
            state_id,
            "cancel",
            {
                "status": EscalationStatus.CANCELLED,
                "cancel_reason": reason,
                "ended_at": now,
            },
            lambda s: (
                s.status == EscalationStatus.CANCELLED and s.cancel_reason == reason
            ),
        )
        if changed:
            logger.info(
                "Escalation cancelled",
                escalation_state_id=str(state_id),
                reminder_id=state.reminder_id,
                tier=state.current_tier,
                reason=reason.value,
            )
            await self._publish(ESCALATION_CANCELLED, state, now, reason=reason.value)
        return state

    async def defer_advancement(
        self,
        state_id: uuid.UUID,
        until: datetime,
    ) -> bool:
        """Push an active state's next advancement back to ``until``.

        Returns:
            True if the state was still active and got deferred.
        """
        async with self._session_maker() as db:
            result = await db.execute(
                update(EscalationState)
                .where(
                    EscalationState.id == state_id,
                    EscalationState.status == EscalationStatus.ACTIVE,
                )
                .values(next_advance_at=until)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reminder-level helpers for completion, snooze and command handlers
    # ------------------------------------------------------------------

    async def acknowledge_reminder(
        self,
        reminder_id: str,
        acknowledged_by: str,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> EscalationState | None:
        """Acknowledge the reminder's active escalation, if it has one.

        With ``owner_id``, an escalation owned by someone else counts as absent.
        """
        state = await self.get_active_for_reminder(reminder_id)
        if state is None or (owner_id is not None and state.owner_id != owner_id):
            return None
        return await self.acknowledge(state.id, acknowledged_by, now=now)

    async def cancel_reminder(
        self,
        reminder_id: str,
        reason: CancelReason | str,
        owner_id: str | None = None,
        now: datetime | None = None,
    ) -> EscalationState | None:
        """Cancel the reminder's active escalation, if it has one."""
        state = await self.get_active_for_reminder(reminder_id)
        if state is None or (owner_id is not None and state.owner_id != owner_id):
            return None
        return await self.cancel(state.id, reason, now=now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_due_for_advancement(
        self,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[EscalationState]:
        """Active states whose next advancement is due, oldest-due first."""
        now = now or self._clock()
        async with self._session_maker() as db:
            result = await db.execute(
                select(EscalationState)
                .where(
                    EscalationState.status == EscalationStatus.ACTIVE,
                    EscalationState.next_advance_at <= now,
                )
                .order_by(EscalationState.next_advance_at, EscalationState.id)
                .limit(settings.escalation_batch_size if limit is None else limit)
            )
            return list(result.scalars().all())

    async def get_state(self, state_id: uuid.UUID) -> EscalationState:
        """Get an escalation state.

        Raises:
            NotFoundError: If the state does not exist.
        """
        async with self._session_maker() as db:
            return await _load_state(db, state_id)

    async def get_active_for_reminder(self, reminder_id: str) -> EscalationState | None:
        async with self._session_maker() as db:
            return await _active_for_reminder(db, reminder_id)

    async def list_for_reminder(self, reminder_id: str) -> list[EscalationState]:
        """Escalation history of a reminder, newest first."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(EscalationState)
                .where(EscalationState.reminder_id == reminder_id)
                .order_by(EscalationState.started_at.desc())
            )
            return list(result.scalars().all())

    async def list_attempts(self, state_id: uuid.UUID) -> list[NotificationAttempt]:
        """Notification log of an escalation, in tier order.

        Raises:
            NotFoundError: If the state does not exist.
        """
        async with self._session_maker() as db:
            await _load_state(db, state_id)
            result = await db.execute(
                select(NotificationAttempt)
                .where(NotificationAttempt.escalation_state_id == state_id)
                .order_by(NotificationAttempt.tier_number, NotificationAttempt.target)
            )
            return list(result.scalars().all())
