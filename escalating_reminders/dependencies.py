"""Application wiring.

Builds the escalation engine's collaborators once per process and exposes
them as FastAPI dependencies. Tests swap them out through
``app.dependency_overrides`` or ``reset_dependencies``.
"""

import importlib

from fastapi import Header, HTTPException, status

from escalating_reminders.config import settings
from escalating_reminders.database import get_session_maker
from escalating_reminders.logging_config import get_logger
from escalating_reminders.services.agent_execution import (
    AgentExecutionService,
    AgentExecutor,
)
from escalating_reminders.services.agent_subscriptions import (
    DatabaseAgentSubscriptionProvider,
)
from escalating_reminders.services.escalation_profile import ProfileResolver
from escalating_reminders.services.escalation_scheduler import DueEscalationScheduler
from escalating_reminders.services.escalation_state_machine import (
    EscalationStateMachine,
)
from escalating_reminders.services.event_bus import EventBus
from escalating_reminders.services.lease import get_lease_guard
from escalating_reminders.services.reminders import ReminderReader
from escalating_reminders.services.tier_dispatcher import TierDispatcher
from escalating_reminders.services.trusted_contacts import (
    DatabaseTrustedContactProvider,
)

logger = get_logger(__name__)

_agent_execution: AgentExecutionService | None = None
_event_bus: EventBus | None = None
_reminder_reader: ReminderReader | None = None
_state_machine: EscalationStateMachine | None = None
_due_scheduler: DueEscalationScheduler | None = None


async def get_current_user_id(
    x_user_id: str | None = Header(default=None),
) -> str:
    """Caller identity forwarded by the upstream gateway."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


def get_agent_execution_service() -> AgentExecutionService:
    """Get the agent registry.

    Deliveries to the owner go only through agents the owner has an
    enabled subscription to.
    """
    global _agent_execution
    if _agent_execution is None:
        _agent_execution = AgentExecutionService(
            subscriptions=DatabaseAgentSubscriptionProvider(get_session_maker()),
        )
    return _agent_execution


def register_agent_executor(executor: AgentExecutor) -> None:
    """Register a channel executor with the process-wide agent registry."""
    get_agent_execution_service().register_executor(executor)


def load_agent_executors(paths: list[str]) -> list[str]:
    """Import, build and register executors named by ``module:factory`` paths.

    Returns:
        Agent types registered after loading, sorted.

    Raises:
        ValueError: If a path is not of the form ``module:factory``.
        ImportError: If a module cannot be imported.
        AttributeError: If the module has no such factory.
    """
    for path in paths:
        module_name, sep, attr = path.partition(":")
        if not sep or not module_name or not attr:
            raise ValueError(f"Agent executor path must be 'module:factory', got {path!r}")
        factory = getattr(importlib.import_module(module_name), attr)
        register_agent_executor(factory())

    registered = get_agent_execution_service().registered_types
    if not registered:
        logger.warning(
            "No agent executors registered; every agent target will fail. "
            "Set AGENT_EXECUTORS or call register_agent_executor at startup."
        )
    return registered


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def set_reminder_reader(reader: ReminderReader | None) -> None:
    """Install the reminder lookup used to title notifications."""
    global _reminder_reader, _state_machine, _due_scheduler
    _reminder_reader = reader
    _state_machine = None
    _due_scheduler = None


def get_state_machine() -> EscalationStateMachine:
    """Get or create the escalation state machine."""
    global _state_machine
    if _state_machine is None:
        session_maker = get_session_maker()
        dispatcher = TierDispatcher(
            session_maker,
            get_agent_execution_service(),
            DatabaseTrustedContactProvider(session_maker),
            reminders=_reminder_reader,
            timeout_seconds=settings.escalation_dispatch_timeout_seconds,
        )
        _state_machine = EscalationStateMachine(
            session_maker,
            dispatcher,
            get_lease_guard(),
            resolver=ProfileResolver(),
            event_bus=get_event_bus(),
            lease_ttl_seconds=settings.escalation_lease_ttl_seconds,
        )
    return _state_machine


def get_due_scheduler() -> DueEscalationScheduler:
    """Get or create the due-escalation cycle runner."""
    global _due_scheduler
    if _due_scheduler is None:
        _due_scheduler = DueEscalationScheduler(get_state_machine())
    return _due_scheduler


def reset_dependencies() -> None:
    """Drop all cached collaborators."""
    global _agent_execution, _event_bus, _reminder_reader
    global _state_machine, _due_scheduler
    _agent_execution = None
    _event_bus = None
    _reminder_reader = None
    _state_machine = None
    _due_scheduler = None
