"""Pytest configuration and shared fixtures.

Each test gets its own SQLite file so concurrent workers use real,
separate connections the way they would against PostgreSQL.
"""

import asyncio
import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set testing mode BEFORE importing application modules
os.environ["TESTING"] = "true"
os.environ["ESCALATION_LEASE_BACKEND"] = "memory"
os.environ["ESCALATION_SCHEDULER_ENABLED"] = "false"
os.environ["SEED_PRESETS_ON_STARTUP"] = "false"

from escalating_reminders.config import settings

settings.testing = True

from escalating_reminders.core.tiers import build_snapshot, snapshot_to_json
from escalating_reminders.models import (
    Base,
    EscalationProfile,
    TrustedContact,
    UserAgentSubscription,
)
from escalating_reminders.schemas.agent import (
    AgentSubscription,
    ContactRef,
    NotificationPayload,
    SendResult,
)
from escalating_reminders.services.agent_execution import AgentExecutionService
from escalating_reminders.services.escalation_state_machine import (
    EscalationStateMachine,
)
from escalating_reminders.services.event_bus import EventBus
from escalating_reminders.services.lease import InMemoryLeaseGuard
from escalating_reminders.services.reminders import ReminderInfo
from escalating_reminders.services.tier_dispatcher import TierDispatcher

# Fixed start time used by scenario tests
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

OWNER = "user-1"


class FakeAgent:
    """Records sends and returns a canned result."""

    def __init__(
        self,
        agent_type: str,
        result: SendResult | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
        on_send: Callable[[NotificationPayload], Awaitable[None]] | None = None,
        required_config: tuple[str, ...] = (),
    ):
        self.agent_type = agent_type
        self.required_config = required_config
        self.result = result or SendResult(success=True, message_id=f"{agent_type}-msg")
        self.delay = delay
        self.error = error
        self.on_send = on_send
        self.calls: list[tuple[str, NotificationPayload]] = []
        self.subscriptions: list[AgentSubscription | None] = []

    async def send(
        self,
        user_id: str,
        payload: NotificationPayload,
        subscription: AgentSubscription | None = None,
    ) -> SendResult:
        self.calls.append((user_id, payload))
        self.subscriptions.append(subscription)
        if self.on_send is not None:
            await self.on_send(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeContacts:
    """In-memory trusted contact provider."""

    def __init__(self, contacts: list[ContactRef] | None = None, error: Exception | None = None):
        self.contacts = contacts or []
        self.error = error

    async def list_trusted_contacts(self, owner_id: str) -> list[ContactRef]:
        if self.error is not None:
            raise self.error
        return list(self.contacts)


class FakeSubscriptions:
    """In-memory subscription provider keyed by (user, agent type)."""

    def __init__(
        self,
        subscriptions: list[AgentSubscription] | None = None,
        error: Exception | None = None,
    ):
        self.subscriptions = {(s.user_id, s.agent_type): s for s in subscriptions or []}
        self.error = error

    async def get_subscription(
        self, user_id: str, agent_type: str
    ) -> AgentSubscription | None:
        if self.error is not None:
            raise self.error
        return self.subscriptions.get((user_id, agent_type))


class FakeReminders:
    def __init__(self, reminders: dict[str, ReminderInfo] | None = None):
        self.reminders = reminders or {}

    async def get_reminder(self, reminder_id: str) -> ReminderInfo | None:
        return self.reminders.get(reminder_id)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'escalations.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def agents() -> dict[str, FakeAgent]:
    return {
        agent_type: FakeAgent(agent_type)
        for agent_type in ("agentA", "agentB", "agentC", "email", "sms", "push")
    }


@pytest.fixture
def agent_execution(agents) -> AgentExecutionService:
    return AgentExecutionService(list(agents.values()))


@pytest.fixture
def contacts() -> FakeContacts:
    return FakeContacts(
        [
            ContactRef(id="contact-1", name="Alex Rivera", email="alex@example.com"),
            ContactRef(id="contact-2", name="Sam Chen", phone="+15550100"),
        ]
    )


@pytest.fixture
def reminders() -> FakeReminders:
    return FakeReminders(
        {
            "rem-1": ReminderInfo(
                id="rem-1",
                owner_id=OWNER,
                title="Take medication",
                importance="HIGH",
                description="Evening dose, 10mg",
            ),
        }
    )


@pytest.fixture
def lease_guard() -> InMemoryLeaseGuard:
    return InMemoryLeaseGuard()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def dispatcher(session_maker, agent_execution, contacts, reminders) -> TierDispatcher:
    return TierDispatcher(
        session_maker,
        agent_execution,
        contacts,
        reminders=reminders,
        timeout_seconds=0.5,
        clock=lambda: T0,
    )


@pytest.fixture
def state_machine(session_maker, dispatcher, lease_guard, event_bus) -> EscalationStateMachine:
    return EscalationStateMachine(
        session_maker,
        dispatcher,
        lease_guard,
        event_bus=event_bus,
        lease_ttl_seconds=30,
        clock=lambda: T0,
    )


SCENARIO_TIERS: list[dict[str, Any]] = [
    {"tierNumber": 1, "delayMinutes": 0, "agentIds": ["agentA"]},
    {"tierNumber": 2, "delayMinutes": 5, "agentIds": ["agentB"]},
    {
        "tierNumber": 3,
        "delayMinutes": 10,
        "agentIds": ["agentC"],
        "includeTrustedContacts": True,
    },
]


async def add_profile(
    session_maker: async_sessionmaker[AsyncSession],
    tiers: list[dict[str, Any]] | None = None,
    user_id: str | None = OWNER,
    is_preset: bool = False,
    profile_id: str | None = None,
) -> EscalationProfile:
    """Insert a profile row directly."""
    profile = EscalationProfile(
        id=profile_id or f"esc_{uuid.uuid4().hex[:12]}",
        user_id=user_id,
        name="Test profile",
        is_preset=is_preset,
        tiers=snapshot_to_json(build_snapshot(tiers or SCENARIO_TIERS)),
    )
    async with session_maker() as db:
        db.add(profile)
        await db.commit()
    return profile


async def add_trusted_contact(
    session_maker: async_sessionmaker[AsyncSession],
    user_id: str = OWNER,
    name: str = "Alex Rivera",
    email: str | None = "alex@example.com",
    phone: str | None = None,
    position: int = 0,
) -> TrustedContact:
    contact = TrustedContact(
        user_id=user_id,
        name=name,
        email=email,
        phone=phone,
        position=position,
    )
    async with session_maker() as db:
        db.add(contact)
        await db.commit()
    return contact


async def add_subscription(
    session_maker: async_sessionmaker[AsyncSession],
    agent_type: str,
    user_id: str = OWNER,
    is_enabled: bool = True,
    configuration: dict[str, Any] | None = None,
) -> UserAgentSubscription:
    subscription = UserAgentSubscription(
        user_id=user_id,
        agent_type=agent_type,
        is_enabled=is_enabled,
        configuration=configuration or {},
    )
    async with session_maker() as db:
        db.add(subscription)
        await db.commit()
    return subscription
