"""Tests for the agent execution registry."""

from datetime import UTC, datetime

import pytest

from escalating_reminders.exceptions import UnknownAgentTypeError
from escalating_reminders.schemas.agent import (
    AgentSubscription,
    ContactRecipient,
    NotificationPayload,
    SendResult,
)
from escalating_reminders.services.agent_execution import (
    AgentExecutionService,
    AgentExecutor,
)
from tests.conftest import OWNER, FakeAgent, FakeSubscriptions


def make_payload(**overrides) -> NotificationPayload:
    fields = dict(
        notification_id="notif_1",
        reminder_id="rem-1",
        user_id=OWNER,
        title="Take medication",
        message="Evening dose, 10mg",
        escalation_tier=1,
        timestamp=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
    )
    fields.update(overrides)
    return NotificationPayload(**fields)


class TestAgentExecutionService:
    """Tests for AgentExecutionService."""

    def test_fake_agent_satisfies_protocol(self):
        assert isinstance(FakeAgent("push"), AgentExecutor)

    def test_registered_types_sorted(self):
        service = AgentExecutionService([FakeAgent("sms"), FakeAgent("email")])

        assert service.registered_types == ["email", "sms"]

    @pytest.mark.asyncio
    async def test_routes_to_executor(self):
        email, sms = FakeAgent("email"), FakeAgent("sms")
        service = AgentExecutionService([email, sms])
        payload = make_payload()

        result = await service.execute("sms", OWNER, payload)

        assert result.success is True
        assert result.message_id == "sms-msg"
        assert sms.calls == [(OWNER, payload)]
        assert sms.subscriptions == [None]
        assert email.calls == []

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        service = AgentExecutionService([FakeAgent("email")])

        with pytest.raises(UnknownAgentTypeError, match="pager"):
            await service.execute("pager", OWNER, make_payload())

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_failed_result(self):
        service = AgentExecutionService(
            [FakeAgent("push", error=ConnectionError("gateway down"))]
        )

        result = await service.execute("push", OWNER, make_payload())

        assert result.success is False
        assert result.error == "gateway down"

    @pytest.mark.asyncio
    async def test_register_replaces_existing(self):
        replacement = FakeAgent("email", result=SendResult(success=True, message_id="v2"))
        service = AgentExecutionService([FakeAgent("email")])

        service.register_executor(replacement)
        result = await service.execute("email", OWNER, make_payload())

        assert result.message_id == "v2"
        assert service.registered_types == ["email"]


class TestSubscriptionChecks:
    """Tests for AgentExecutionService with a subscription provider."""

    @pytest.mark.asyncio
    async def test_enabled_subscription_passed_to_executor(self):
        subscription = AgentSubscription(
            user_id=OWNER, agent_type="webhook", configuration={"url": "https://hooks.test"}
        )
        webhook = FakeAgent("webhook", required_config=("url",))
        service = AgentExecutionService(
            [webhook], subscriptions=FakeSubscriptions([subscription])
        )

        result = await service.execute("webhook", OWNER, make_payload())

        assert result.success is True
        assert webhook.subscriptions == [subscription]

    @pytest.mark.asyncio
    async def test_not_subscribed(self):
        push = FakeAgent("push")
        service = AgentExecutionService([push], subscriptions=FakeSubscriptions())

        result = await service.execute("push", OWNER, make_payload())

        assert result.success is False
        assert result.skipped is False
        assert result.error == (
            f"User {OWNER} is not subscribed to agent push or subscription is disabled"
        )
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_disabled_subscription(self):
        push = FakeAgent("push")
        service = AgentExecutionService(
            [push],
            subscriptions=FakeSubscriptions(
                [AgentSubscription(user_id=OWNER, agent_type="push", is_enabled=False)]
            ),
        )

        result = await service.execute("push", OWNER, make_payload())

        assert result.success is False
        assert "subscription is disabled" in result.error
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_other_users_subscription_ignored(self):
        service = AgentExecutionService(
            [FakeAgent("push")],
            subscriptions=FakeSubscriptions(
                [AgentSubscription(user_id="someone-else", agent_type="push")]
            ),
        )

        result = await service.execute("push", OWNER, make_payload())

        assert result.success is False

    @pytest.mark.asyncio
    async def test_missing_required_config_skipped(self):
        webhook = FakeAgent("webhook", required_config=("url",))
        service = AgentExecutionService(
            [webhook],
            subscriptions=FakeSubscriptions(
                [AgentSubscription(user_id=OWNER, agent_type="webhook")]
            ),
        )

        result = await service.execute("webhook", OWNER, make_payload())

        assert result.success is False
        assert result.skipped is True
        assert "url" in result.error
        assert webhook.calls == []

    @pytest.mark.asyncio
    async def test_lookup_failure_becomes_failed_result(self):
        service = AgentExecutionService(
            [FakeAgent("push")],
            subscriptions=FakeSubscriptions(error=ConnectionError("db down")),
        )

        result = await service.execute("push", OWNER, make_payload())

        assert result.success is False
        assert "db down" in result.error

    @pytest.mark.asyncio
    async def test_contact_delivery_not_checked(self):
        email = FakeAgent("email")
        service = AgentExecutionService([email], subscriptions=FakeSubscriptions())
        payload = make_payload(
            recipient=ContactRecipient(
                contact_ref="contact-1", name="Alex Rivera", email="alex@example.com"
            )
        )

        result = await service.execute("email", OWNER, payload)

        assert result.success is True
        assert email.subscriptions == [None]

    @pytest.mark.asyncio
    async def test_unknown_type_checked_before_subscription(self):
        subscriptions = FakeSubscriptions(error=AssertionError("should not be called"))
        service = AgentExecutionService([], subscriptions=subscriptions)

        with pytest.raises(UnknownAgentTypeError):
            await service.execute("pager", OWNER, make_payload())
