"""
Tests for the HTTP endpoints.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from httpx import AsyncClient

from app.core.security import create_session_token
from app.models.detention_event import DetentionEventStatus
from tests.utils.factories import DetentionEventFactory, InvitationFactory

ARRIVAL = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


async def start_and_end(client: AsyncClient, minutes: int = 150) -> dict:
    response = await client.post("/detention-events", json={
        "facility_id": "fac-1",
        "load_reference": "LOAD-1",
        "arrival_time": ARRIVAL.isoformat()
    })
    assert response.status_code == 201
    event_id = response.json()["id"]

    response = await client.post(f"/detention-events/{event_id}/end", json={
        "departure_time": (ARRIVAL + timedelta(minutes=minutes)).isoformat()
    })
    assert response.status_code == 200
    return response.json()


class TestAuthentication:
    """Tests for caller resolution"""

    @pytest.mark.asyncio
    async def test_anonymous_rejected(self, anonymous_client: AsyncClient):
        response = await anonymous_client.get("/detention-events")

        assert response.status_code == 401
        assert response.json()["error_type"] == "AuthenticationError"

    @pytest.mark.asyncio
    async def test_bearer_token_accepted(self, anonymous_client: AsyncClient):
        token = create_session_token("jwt-user", "jwt@test.com")

        response = await anonymous_client.get(
            "/detention-events/active",
            headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        assert response.json() is None

    @pytest.mark.asyncio
    async def test_invalid_bearer_rejected(self, anonymous_client: AsyncClient):
        response = await anonymous_client.get(
            "/detention-events/active",
            headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401


class TestDetentionEventEndpoints:
    """Tests for /detention-events"""

    @pytest.mark.asyncio
    async def test_start_and_end(self, client: AsyncClient):
        event = await start_and_end(client)

        assert event["status"] == "completed"
        assert event["detention_minutes"] == 30
        assert Decimal(event["total_amount"]) == Decimal("37.50")

    @pytest.mark.asyncio
    async def test_end_twice_conflicts(self, client: AsyncClient):
        event = await start_and_end(client)

        response = await client.post(f"/detention-events/{event['id']}/end")

        assert response.status_code == 409
        data = response.json()
        assert data["error_type"] == "InvalidStateTransitionError"
        assert data["details"]["current_state"] == "completed"

    @pytest.mark.asyncio
    async def test_missing_event(self, client: AsyncClient):
        response = await client.get("/detention-events/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_own_events(self, client: AsyncClient, gateway, authenticated_user):
        await gateway.insert_event(DetentionEventFactory.create(user_id=authenticated_user.user_id))
        await gateway.insert_event(DetentionEventFactory.create(user_id="someone-else"))

        response = await client.get("/detention-events", params={"status": "completed"})

        assert response.status_code == 200
        assert len(response.json()) == 1

    @pytest.mark.asyncio
    async def test_list_by_facility(self, client: AsyncClient, gateway, authenticated_user):
        await gateway.insert_event(DetentionEventFactory.create(user_id=authenticated_user.user_id, facility_id="dock-7"))
        await gateway.insert_event(DetentionEventFactory.create(user_id=authenticated_user.user_id, facility_id="dock-9"))

        response = await client.get("/detention-events", params={"facility_id": "dock-7"})

        assert response.status_code == 200
        assert [e["facility_id"] for e in response.json()] == ["dock-7"]


class TestInvoiceEndpoints:
    """Tests for /invoices"""

    @pytest.mark.asyncio
    async def test_invoice_flow(self, client: AsyncClient, gateway):
        """Create, send and pay an invoice; the events follow."""
        first = await start_and_end(client, minutes=200)
        second = await start_and_end(client, minutes=160)

        response = await client.post("/invoices", json={
            "detention_event_ids": [first["id"], second["id"]],
            "recipient": {"email": "ap@broker.com", "company": "Broker Inc"}
        })
        assert response.status_code == 201
        invoice = response.json()
        assert invoice["status"] == "draft"
        assert Decimal(invoice["total_amount"]) == Decimal("150.00")

        response = await client.post(f"/invoices/{invoice['id']}/send")
        assert response.json()["status"] == "sent"

        response = await client.post(f"/invoices/{invoice['id']}/mark-paid")
        assert response.status_code == 200
        assert response.json()["status"] == "paid"

        response = await client.post(f"/invoices/{invoice['id']}/mark-paid")
        assert response.status_code == 200

        assert (await gateway.get_event(first["id"])).status == DetentionEventStatus.PAID

    @pytest.mark.asyncio
    async def test_delete_draft(self, client: AsyncClient, gateway):
        event = await start_and_end(client)
        invoice = (await client.post("/invoices", json={"detention_event_ids": [event["id"]]})).json()

        response = await client.delete(f"/invoices/{invoice['id']}")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert (await gateway.get_event(event["id"])).status == DetentionEventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_selection(self, client: AsyncClient):
        response = await client.post("/invoices", json={"detention_event_ids": []})

        assert response.status_code == 400
        assert response.json()["error_type"] == "NoEventsSelectedError"

    @pytest.mark.asyncio
    async def test_email_invoice(self, client: AsyncClient, mailer):
        event = await start_and_end(client)
        invoice = (await client.post("/invoices", json={"detention_event_ids": [event["id"]]})).json()

        response = await client.post(f"/invoices/{invoice['id']}/email", json={
            "recipient_email": "ap@broker.com"
        })

        assert response.status_code == 200
        assert response.json()["status"] == "sent"
        assert mailer.was_email_sent_to("ap@broker.com")

        contacts = (await client.get("/contacts")).json()
        assert [c["email"] for c in contacts] == ["ap@broker.com"]

    @pytest.mark.asyncio
    async def test_aging(self, client: AsyncClient):
        response = await client.get("/invoices/aging")

        assert response.status_code == 200
        assert len(response.json()["buckets"]) == 4

    @pytest.mark.asyncio
    async def test_fleet_invoices_require_admin(self, client: AsyncClient, fleet_driver):
        response = await client.get("/fleets/fleet-1/invoices")

        assert response.status_code == 403


class TestInvitationEndpoints:
    """Tests for invitation endpoints"""

    @pytest.mark.asyncio
    async def test_invite_and_accept(self, client: AsyncClient, fleet_admin, act_as, mailer):
        act_as(fleet_admin.user_id, "admin@test.com")
        response = await client.post("/fleets/fleet-1/invitations", json={"email": "new@test.com"})
        assert response.status_code == 201
        code = response.json()["invitation_code"]
        assert mailer.was_email_sent_to("new@test.com")

        act_as("new-user", "new@test.com")
        response = await client.post("/invitations/accept", json={"code": code})
        assert response.status_code == 200
        assert response.json()["role"] == "driver"

        response = await client.post("/invitations/accept", json={"code": code})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_lookup_is_public(self, anonymous_client: AsyncClient, gateway):
        invitation = await gateway.insert_invitation(
            InvitationFactory.create(expires_at=datetime.now(timezone.utc) + timedelta(days=3))
        )

        response = await anonymous_client.get(f"/invitations/code/{invitation.invitation_code}")

        assert response.status_code == 200
        assert response.json()["is_valid"] is True

    @pytest.mark.asyncio
    async def test_driver_cannot_invite(self, client: AsyncClient, fleet_driver):
        response = await client.post("/fleets/fleet-1/invitations", json={"email": "new@test.com"})

        assert response.status_code == 403


class TestFleetMemberEndpoints:
    """Tests for /fleets/{fleet_id}/members"""

    @pytest.mark.asyncio
    async def test_list_members(self, client: AsyncClient, fleet_admin, fleet_driver):
        response = await client.get("/fleets/fleet-1/members")

        assert response.status_code == 200
        assert len(response.json()) == 2

    @pytest.mark.asyncio
    async def test_admin_sets_override(self, client: AsyncClient, fleet_admin, fleet_driver, act_as):
        act_as(fleet_admin.user_id)

        response = await client.patch(
            f"/fleets/fleet-1/members/{fleet_driver.id}",
            json={"hourly_rate_override": "95.00"}
        )

        assert response.status_code == 200
        assert Decimal(response.json()["hourly_rate_override"]) == Decimal("95.00")
