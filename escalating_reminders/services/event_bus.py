"""In-process domain event bus.

Escalation transitions publish events here for downstream consumers
(notification log UI, metrics). Handlers are optional and isolated:
a failing handler is logged and never affects the transition.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from escalating_reminders.logging_config import get_logger

logger = get_logger(__name__)

ESCALATION_STARTED = "escalation.started"
ESCALATION_ADVANCED = "escalation.advanced"
ESCALATION_EXHAUSTED = "escalation.exhausted"
ESCALATION_ACKNOWLEDGED = "escalation.acknowledged"
ESCALATION_CANCELLED = "escalation.cancelled"


@dataclass(frozen=True)
class EscalationEvent:
    """A transition of one escalation state."""

    type: str
    escalation_state_id: uuid.UUID
    reminder_id: str
    tier: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[EscalationEvent], Awaitable[None]]


class EventBus:
    """Simple pub/sub keyed by event type."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event_type]

    async def publish(self, event: EscalationEvent) -> None:
        handlers = list(self._handlers.get(event.type, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "Escalation event handler failed",
                    event_type=event.type,
                    escalation_state_id=str(event.escalation_state_id),
                    error=str(result),
                )
