"""Due escalation scheduler.

Polls for escalation states whose next advancement is due and advances
them through a bounded pool of concurrent workers. One state's failure
never blocks the rest of the batch. States that keep failing are pushed
back with exponential backoff instead of being retried every poll.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from escalating_reminders.config import settings
from escalating_reminders.exceptions import LeaseContentionError
from escalating_reminders.logging_config import correlation_id_ctx, get_logger
from escalating_reminders.models.escalation_state import EscalationState
from escalating_reminders.services.escalation_state_machine import (
    EscalationStateMachine,
)

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


@dataclass
class CycleReport:
    """Outcome counts of one poll cycle."""

    discovered: int = 0
    advanced: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0


class DueEscalationScheduler:
    """Discovers due escalations and drives them through ``advance``."""

    def __init__(
        self,
        state_machine: EscalationStateMachine,
        batch_size: int | None = None,
        worker_count: int | None = None,
        backoff_threshold: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._state_machine = state_machine
        self.batch_size = batch_size or settings.escalation_batch_size
        self.worker_count = worker_count or settings.escalation_worker_count
        self.backoff_threshold = (
            backoff_threshold
            if backoff_threshold is not None
            else settings.escalation_backoff_threshold
        )
        self.backoff_base_seconds = (
            backoff_base_seconds
            if backoff_base_seconds is not None
            else settings.escalation_backoff_base_seconds
        )
        self.backoff_max_seconds = (
            backoff_max_seconds
            if backoff_max_seconds is not None
            else settings.escalation_backoff_max_seconds
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        # Consecutive advance failures per state, reset on success
        self._failures: dict[uuid.UUID, int] = {}
        # Deferral target per backed-off state, so it is not forgotten while parked
        self._retry_at: dict[uuid.UUID, datetime] = {}

    def failure_count(self, state_id: uuid.UUID) -> int:
        return self._failures.get(state_id, 0)

    def backoff_delay(self, failures: int) -> timedelta | None:
        """Deferral for a state that has failed ``failures`` times in a row.

        None while the count is below the threshold.
        """
        if failures < self.backoff_threshold:
            return None
        seconds = min(
            self.backoff_base_seconds * 2 ** (failures - self.backoff_threshold),
            self.backoff_max_seconds,
        )
        return timedelta(seconds=seconds)

    async def run_cycle(self, now: datetime | None = None) -> CycleReport:
        """Run one poll: find due states and advance them concurrently.

        Args:
            now: Poll time; defaults to the current time.

        Returns:
            Counts of what happened to the discovered states.
        """
        now = now or self._clock()
        token = correlation_id_ctx.set(f"cycle-{uuid.uuid4().hex[:12]}")
        try:
            return await self._run_cycle(now)
        finally:
            correlation_id_ctx.reset(token)

    async def _run_cycle(self, now: datetime) -> CycleReport:
        report = CycleReport()

        try:
            due = await self._state_machine.find_due_for_advancement(
                self.batch_size, now=now
            )
        except Exception as e:
            logger.error("Failed to query due escalations", error=str(e))
            return report

        report.discovered = len(due)
        self._forget_stale_failures(due, now)
        if not due:
            logger.debug("No escalations due")
            return report

        semaphore = asyncio.Semaphore(self.worker_count)

        async def worker(state: EscalationState) -> None:
            async with semaphore:
                await self._advance_one(state, now, report)

        await asyncio.gather(*(worker(state) for state in due))

        logger.info("Escalation cycle completed", **asdict(report))
        return report

    def _forget_stale_failures(self, due: list[EscalationState], now: datetime) -> None:
        """Drop failure counts for states that left the due set.

        A state that failed and was then acknowledged, cancelled or advanced
        by another worker never comes back through ``_advance_one``.
        Deferred states are kept until their retry time has passed.
        """
        due_ids = {state.id for state in due}
        for state_id in list(self._failures):
            if state_id in due_ids:
                continue
            retry_at = self._retry_at.get(state_id)
            if retry_at is not None and retry_at > now:
                continue
            self._forget(state_id)

    def _forget(self, state_id: uuid.UUID) -> None:
        self._failures.pop(state_id, None)
        self._retry_at.pop(state_id, None)

    async def _advance_one(
        self,
        state: EscalationState,
        now: datetime,
        report: CycleReport,
    ) -> None:
        try:
            advanced = await self._state_machine.advance(state.id, now=now)
        except LeaseContentionError:
            # Someone else is on it; the state stays due for the next poll
            logger.debug(
                "Escalation leased by another worker, skipping",
                escalation_state_id=str(state.id),
            )
            report.skipped += 1
            return
        except Exception as e:
            report.failed += 1
            await self._record_failure(state, now, e, report)
            return

        self._forget(state.id)
        report.advanced += 1
        logger.debug(
            "Escalation advanced by scheduler",
            escalation_state_id=str(state.id),
            tier=advanced.current_tier,
            status=advanced.status.value,
        )

    async def _record_failure(
        self,
        state: EscalationState,
        now: datetime,
        error: Exception,
        report: CycleReport,
    ) -> None:
        failures = self._failures.get(state.id, 0) + 1
        self._failures[state.id] = failures

        logger.warning(
            "Escalation advance failed",
            escalation_state_id=str(state.id),
            reminder_id=state.reminder_id,
            failures=failures,
            error=str(error),
        )

        delay = self.backoff_delay(failures)
        if delay is None:
            return

        until = now + delay
        try:
            deferred = await self._state_machine.defer_advancement(state.id, until)
        except Exception as e:
            logger.error(
                "Failed to defer escalation",
                escalation_state_id=str(state.id),
                error=str(e),
            )
            return

        if deferred:
            self._retry_at[state.id] = until
            report.deferred += 1
            logger.warning(
                "Escalation deferred after repeated failures",
                escalation_state_id=str(state.id),
                failures=failures,
                retry_at=until.isoformat(),
            )
        else:
            # No longer active; nothing left to retry
            self._forget(state.id)


def start_scheduler(
    due_scheduler: DueEscalationScheduler | None = None,
) -> AsyncIOScheduler:
    """Start the background escalation poller.

    Args:
        due_scheduler: Cycle runner to host; defaults to the application's.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    if due_scheduler is None:
        from escalating_reminders.dependencies import get_due_scheduler

        due_scheduler = get_due_scheduler()

    scheduler = AsyncIOScheduler()

    if settings.escalation_scheduler_enabled:
        scheduler.add_job(
            due_scheduler.run_cycle,
            trigger=IntervalTrigger(seconds=settings.escalation_poll_interval_seconds),
            id="escalation_advance",
            name="Due Escalation Advance",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "Scheduled escalation advance job",
            interval_seconds=settings.escalation_poll_interval_seconds,
            batch_size=due_scheduler.batch_size,
            workers=due_scheduler.worker_count,
        )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background escalation poller."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance.

    Returns:
        The scheduler instance or None if not started
    """
    return scheduler


@asynccontextmanager
async def scheduler_lifespan() -> AsyncGenerator[None, None]:
    """Async context manager for scheduler lifecycle."""
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()
