"""Tests for the escalation, profile and agent subscription HTTP endpoints."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from escalating_reminders.database import get_db
from escalating_reminders.dependencies import get_state_machine
from escalating_reminders.main import app
from escalating_reminders.services.escalation_presets import seed_presets
from tests.conftest import OWNER, add_profile

HEADERS = {"X-User-Id": OWNER}
OTHER_HEADERS = {"X-User-Id": "someone-else"}


@pytest_asyncio.fixture
async def client(session_maker, state_machine):
    """Test client wired to the per-test database and state machine."""
    async with session_maker() as db:
        await seed_presets(db)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_state_machine] = lambda: state_machine
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def start(client, profile_id, reminder_id="rem-1", headers=HEADERS):
    return await client.post(
        "/api/escalations",
        json={"reminder_id": reminder_id, "profile_id": profile_id},
        headers=headers,
    )


class TestStartEscalation:
    """Tests for POST /api/escalations."""

    @pytest.mark.asyncio
    async def test_requires_user_header(self, client, session_maker):
        profile = await add_profile(session_maker)

        response = await start(client, profile.id, headers={})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_start(self, client, session_maker, agents):
        profile = await add_profile(session_maker)

        response = await start(client, profile.id)

        assert response.status_code == 201
        data = response.json()
        assert data["reminder_id"] == "rem-1"
        assert data["owner_id"] == OWNER
        assert data["current_tier"] == 1
        assert data["tier_count"] == 3
        assert data["status"] == "active"
        assert len(agents["agentA"].calls) == 1

    @pytest.mark.asyncio
    async def test_duplicate_start_returns_running(self, client, session_maker):
        profile = await add_profile(session_maker)

        first = await start(client, profile.id)
        second = await start(client, profile.id)

        assert second.status_code == 201
        assert second.json()["id"] == first.json()["id"]

    @pytest.mark.asyncio
    async def test_start_by_other_user_not_found(self, client, session_maker):
        profile = await add_profile(session_maker)
        await start(client, profile.id)

        response = await start(client, "esc_preset_gentle", headers=OTHER_HEADERS)

        assert response.status_code == 404
        assert "owner_id" not in response.text

    @pytest.mark.asyncio
    async def test_start_with_preset(self, client):
        response = await start(client, "esc_preset_gentle")

        assert response.status_code == 201
        assert response.json()["profile_id"] == "esc_preset_gentle"

    @pytest.mark.asyncio
    async def test_unknown_profile(self, client):
        response = await start(client, "esc_missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_fields(self, client):
        response = await client.post(
            "/api/escalations", json={"reminder_id": "rem-1"}, headers=HEADERS
        )

        assert response.status_code == 422


class TestEscalationEndpoints:
    """Tests for reading and transitioning escalations."""

    @pytest.mark.asyncio
    async def test_get_escalation(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.get(f"/api/escalations/{state_id}", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["id"] == state_id

    @pytest.mark.asyncio
    async def test_other_users_escalation_hidden(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.get(
            f"/api/escalations/{state_id}", headers=OTHER_HEADERS
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_escalation(self, client):
        response = await client.get(f"/api/escalations/{uuid.uuid4()}", headers=HEADERS)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_attempts(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.get(
            f"/api/escalations/{state_id}/attempts", headers=HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["escalation_state_id"] == state_id
        assert data["count"] == 1
        assert data["attempts"][0]["target"] == "agent:agentA"
        assert data["attempts"][0]["outcome"] == "sent"

    @pytest.mark.asyncio
    async def test_acknowledge_defaults_to_caller(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.post(
            f"/api/escalations/{state_id}/acknowledge", headers=HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "acknowledged"
        assert data["acknowledged_by"] == OWNER
        assert data["next_advance_at"] is None

    @pytest.mark.asyncio
    async def test_acknowledge_on_behalf_of(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.post(
            f"/api/escalations/{state_id}/acknowledge",
            json={"acknowledged_by": "caregiver-7"},
            headers=HEADERS,
        )

        assert response.json()["acknowledged_by"] == "caregiver-7"

    @pytest.mark.asyncio
    async def test_acknowledge_cancelled_conflict(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]
        await client.post(
            f"/api/escalations/{state_id}/cancel",
            json={"reason": "completed"},
            headers=HEADERS,
        )

        response = await client.post(
            f"/api/escalations/{state_id}/acknowledge", headers=HEADERS
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.post(
            f"/api/escalations/{state_id}/cancel",
            json={"reason": "snoozed"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancel_reason"] == "snoozed"

    @pytest.mark.asyncio
    async def test_cancel_invalid_reason(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.post(
            f"/api/escalations/{state_id}/cancel",
            json={"reason": "bored"},
            headers=HEADERS,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_advance_not_due_unchanged(self, client, session_maker):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        response = await client.post(
            f"/api/escalations/{state_id}/advance", headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["current_tier"] == 1

    @pytest.mark.asyncio
    async def test_due_listing(self, client, session_maker, state_machine):
        profile = await add_profile(session_maker)
        state_id = (await start(client, profile.id)).json()["id"]

        with patch.object(
            state_machine,
            "find_due_for_advancement",
            new_callable=AsyncMock,
        ) as mock_find:
            mock_find.return_value = [await state_machine.get_state(uuid.UUID(state_id))]
            response = await client.get(
                "/api/escalations/due", params={"limit": 10}, headers=HEADERS
            )

        assert response.status_code == 200
        assert response.json()["count"] == 1
        mock_find.assert_awaited_once_with(10)

    @pytest.mark.asyncio
    async def test_due_limit_validated(self, client):
        response = await client.get(
            "/api/escalations/due", params={"limit": 0}, headers=HEADERS
        )

        assert response.status_code == 422


class TestReminderEscalationEndpoints:
    """Tests for the reminder-level endpoints."""

    @pytest.mark.asyncio
    async def test_history(self, client, session_maker):
        profile = await add_profile(session_maker)
        await start(client, profile.id)

        response = await client.get("/api/reminders/rem-1/escalations", headers=HEADERS)
        other = await client.get(
            "/api/reminders/rem-1/escalations", headers=OTHER_HEADERS
        )

        assert response.json()["count"] == 1
        assert other.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_cancel_for_reminder(self, client, session_maker):
        profile = await add_profile(session_maker)
        await start(client, profile.id)

        response = await client.post(
            "/api/reminders/rem-1/escalation/cancel",
            json={"reason": "deleted"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["cancel_reason"] == "deleted"

    @pytest.mark.asyncio
    async def test_acknowledge_for_reminder(self, client, session_maker):
        profile = await add_profile(session_maker)
        await start(client, profile.id)

        response = await client.post(
            "/api/reminders/rem-1/escalation/acknowledge", headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json()["status"] == "acknowledged"

    @pytest.mark.asyncio
    async def test_no_active_escalation(self, client):
        response = await client.post(
            "/api/reminders/rem-1/escalation/cancel",
            json={"reason": "completed"},
            headers=HEADERS,
        )

        assert response.status_code == 404


class TestProfileEndpoints:
    """Tests for /api/escalation-profiles."""

    TIERS = [
        {"tierNumber": 1, "delayMinutes": 0, "agentIds": ["push"]},
        {"tierNumber": 2, "delayMinutes": 15, "agentIds": ["sms"]},
    ]

    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        created = await client.post(
            "/api/escalation-profiles",
            json={"name": "Bedtime", "tiers": self.TIERS},
            headers=HEADERS,
        )

        assert created.status_code == 201
        profile_id = created.json()["id"]

        response = await client.get(
            f"/api/escalation-profiles/{profile_id}", headers=HEADERS
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Bedtime"
        assert len(response.json()["tiers"]) == 2

    @pytest.mark.asyncio
    async def test_create_with_gap(self, client):
        response = await client.post(
            "/api/escalation-profiles",
            json={
                "name": "Broken",
                "tiers": [
                    {"tierNumber": 1, "delayMinutes": 0, "agentIds": ["push"]},
                    {"tierNumber": 3, "delayMinutes": 5, "agentIds": ["sms"]},
                ],
            },
            headers=HEADERS,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_includes_presets(self, client):
        await client.post(
            "/api/escalation-profiles",
            json={"name": "Bedtime", "tiers": self.TIERS},
            headers=HEADERS,
        )

        response = await client.get("/api/escalation-profiles", headers=HEADERS)

        data = response.json()
        assert data["count"] == 4
        assert data["profiles"][0]["name"] == "Bedtime"

    @pytest.mark.asyncio
    async def test_update(self, client):
        profile_id = (
            await client.post(
                "/api/escalation-profiles",
                json={"name": "Bedtime", "tiers": self.TIERS},
                headers=HEADERS,
            )
        ).json()["id"]

        response = await client.patch(
            f"/api/escalation-profiles/{profile_id}",
            json={"name": "Lights out"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Lights out"

    @pytest.mark.asyncio
    async def test_preset_read_only(self, client):
        response = await client.patch(
            "/api/escalation-profiles/esc_preset_urgent",
            json={"name": "Mine"},
            headers=HEADERS,
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete(self, client):
        profile_id = (
            await client.post(
                "/api/escalation-profiles",
                json={"name": "Bedtime", "tiers": self.TIERS},
                headers=HEADERS,
            )
        ).json()["id"]

        response = await client.delete(
            f"/api/escalation-profiles/{profile_id}", headers=HEADERS
        )
        missing = await client.get(
            f"/api/escalation-profiles/{profile_id}", headers=HEADERS
        )

        assert response.status_code == 204
        assert missing.status_code == 404


class TestAgentSubscriptionEndpoints:
    """Tests for /api/agent-subscriptions."""

    @pytest.mark.asyncio
    async def test_put_and_list(self, client):
        created = await client.put(
            "/api/agent-subscriptions/webhook",
            json={"configuration": {"url": "https://hooks.test"}},
            headers=HEADERS,
        )

        assert created.status_code == 200
        assert created.json()["is_enabled"] is True

        response = await client.get("/api/agent-subscriptions", headers=HEADERS)
        assert response.json()["count"] == 1
        assert response.json()["subscriptions"][0]["configuration"] == {
            "url": "https://hooks.test"
        }

        others = await client.get("/api/agent-subscriptions", headers=OTHER_HEADERS)
        assert others.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_put_replaces(self, client):
        await client.put("/api/agent-subscriptions/push", json={}, headers=HEADERS)

        response = await client.put(
            "/api/agent-subscriptions/push",
            json={"is_enabled": False},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["is_enabled"] is False

    @pytest.mark.asyncio
    async def test_delete(self, client):
        await client.put("/api/agent-subscriptions/push", json={}, headers=HEADERS)

        deleted = await client.delete("/api/agent-subscriptions/push", headers=HEADERS)
        missing = await client.delete("/api/agent-subscriptions/push", headers=HEADERS)

        assert deleted.status_code == 204
        assert missing.status_code == 404


class TestHealthAndMiddleware:
    """Tests for health probes and request correlation."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        with patch(
            "escalating_reminders.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            mock_db.return_value = True

            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        assert response.json()["scheduler"] == "stopped"

    @pytest.mark.asyncio
    async def test_health_degraded(self, client):
        with patch(
            "escalating_reminders.routers.health.check_database_connection",
            new_callable=AsyncMock,
        ) as mock_db:
            mock_db.return_value = False

            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client):
        response = await client.get(
            "/health/live", headers={"X-Correlation-ID": "req-abc123"}
        )

        assert response.headers["X-Correlation-ID"] == "req-abc123"

    @pytest.mark.asyncio
    async def test_correlation_id_generated(self, client):
        response = await client.get("/health/live")

        assert response.headers["X-Correlation-ID"]
