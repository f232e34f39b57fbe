"""Agent execution service.

Routes a notification to the executor registered for its agent type. The
dispatcher only ever talks to this service, never to concrete channels.

When a subscription provider is configured, a notification addressed to
the owner is only sent through agents the owner has an enabled
subscription to, and the subscription is handed to the executor. Trusted
contact notifications carry their own address and skip the check.
"""

from typing import Protocol, runtime_checkable

from escalating_reminders.exceptions import UnknownAgentTypeError
from escalating_reminders.logging_config import get_logger
from escalating_reminders.schemas.agent import (
    AgentSubscription,
    NotificationPayload,
    SendResult,
)
from escalating_reminders.services.agent_subscriptions import AgentSubscriptionProvider

logger = get_logger(__name__)


@runtime_checkable
class AgentExecutor(Protocol):
    """One notification channel (push, email, SMS, webhook, ...)."""

    agent_type: str

    # Subscription configuration keys the channel cannot deliver without
    required_config: tuple[str, ...]

    async def send(
        self,
        user_id: str,
        payload: NotificationPayload,
        subscription: AgentSubscription | None = None,
    ) -> SendResult:
        """Attempt one delivery. Ordinary delivery failures are returned, not raised."""
        ...


class AgentExecutionService:
    """Registry of agent executors keyed by agent type."""

    def __init__(
        self,
        executors: list[AgentExecutor] | None = None,
        subscriptions: AgentSubscriptionProvider | None = None,
    ):
        self._executors: dict[str, AgentExecutor] = {}
        self._subscriptions = subscriptions
        for executor in executors or []:
            self.register_executor(executor)

    def register_executor(self, executor: AgentExecutor) -> None:
        """Register an executor, replacing any previous one for the same type."""
        if executor.agent_type in self._executors:
            logger.warning(
                "Agent executor already registered, overwriting",
                agent_type=executor.agent_type,
            )
        self._executors[executor.agent_type] = executor
        logger.info("Registered agent executor", agent_type=executor.agent_type)

    @property
    def registered_types(self) -> list[str]:
        return sorted(self._executors)

    async def execute(
        self,
        agent_type: str,
        user_id: str,
        payload: NotificationPayload,
    ) -> SendResult:
        """Send one notification through the executor for ``agent_type``.

        Returns a failed result if the user has no enabled subscription to
        the agent, and a skipped one if the subscription lacks settings the
        executor requires.

        Raises:
            UnknownAgentTypeError: If no executor is registered for the type.
        """
        executor = self._executors.get(agent_type)
        if executor is None:
            raise UnknownAgentTypeError(
                f"No executor registered for agent type {agent_type!r}. "
                f"Available types: {', '.join(self.registered_types) or 'none'}"
            )

        subscription = None
        if self._subscriptions is not None and payload.recipient is None:
            try:
                subscription = await self._subscriptions.get_subscription(
                    user_id, agent_type
                )
            except Exception as e:
                logger.error(
                    "Agent subscription lookup failed",
                    agent_type=agent_type,
                    user_id=user_id,
                    error=str(e),
                )
                return SendResult(
                    success=False, error=f"Subscription lookup failed: {e}"
                )

            if subscription is None or not subscription.is_enabled:
                logger.warning(
                    "User not subscribed to agent",
                    agent_type=agent_type,
                    user_id=user_id,
                    notification_id=payload.notification_id,
                )
                return SendResult(
                    success=False,
                    error=(
                        f"User {user_id} is not subscribed to agent {agent_type} "
                        "or subscription is disabled"
                    ),
                )

            missing = [
                key
                for key in executor.required_config
                if not subscription.configuration.get(key)
            ]
            if missing:
                logger.info(
                    "Agent subscription incomplete, skipping",
                    agent_type=agent_type,
                    user_id=user_id,
                    missing=missing,
                )
                return SendResult(
                    success=False,
                    skipped=True,
                    error=f"Agent {agent_type} is not configured: missing {', '.join(missing)}",
                )

        try:
            return await executor.send(user_id, payload, subscription)
        except Exception as e:
            logger.error(
                "Agent executor raised during send",
                agent_type=agent_type,
                notification_id=payload.notification_id,
                error=str(e),
            )
            return SendResult(success=False, error=str(e) or type(e).__name__)
