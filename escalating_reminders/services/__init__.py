# Escalation engine services
from escalating_reminders.services.escalation_scheduler import (
    CycleReport,
    DueEscalationScheduler,
    get_scheduler,
    start_scheduler,
    stop_scheduler,
)
from escalating_reminders.services.escalation_state_machine import (
    EscalationStateMachine,
)
from escalating_reminders.services.tier_dispatcher import TierDispatcher

__all__ = [
    "CycleReport",
    "DueEscalationScheduler",
    "EscalationStateMachine",
    "TierDispatcher",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
]
