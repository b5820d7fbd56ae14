"""
Global pytest configuration and shared fixtures.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from unittest.mock import MagicMock
import sys
import os

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.main import app
from app.core.dependencies import get_authenticated_user, get_persistence_gateway, get_mailer
from app.models.fleet_member import FleetRole
from app.persistence.memory import InMemoryGateway
from app.services.contacts_service import ContactsService
from app.services.detention_events_service import DetentionEventsService
from app.services.fleet_members_service import FleetMembersService
from app.services.invitations_service import InvitationsService
from app.services.invoice_lifecycle_service import InvoiceLifecycleService
from app.services.invoices_service import InvoicesService
from tests.utils.factories import FleetMemberFactory
from tests.utils.mocks import MockEmailService


# ============================================================================
# Clock
# ============================================================================

@pytest.fixture
def now() -> datetime:
    """Fixed instant used as "now" by service calls."""
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Persistence and external services
# ============================================================================

@pytest.fixture
def gateway() -> InMemoryGateway:
    """Fresh in-memory store per test."""
    return InMemoryGateway()


@pytest.fixture
def mailer() -> MockEmailService:
    """Email service that records instead of sending."""
    return MockEmailService()


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
def members_service(gateway):
    return FleetMembersService(gateway)


@pytest.fixture
def events_service(gateway):
    return DetentionEventsService(
        gateway,
        default_hourly_rate=Decimal("75.00"),
        default_grace_period_minutes=120
    )


@pytest.fixture
def contacts_service(gateway):
    return ContactsService(gateway)


@pytest.fixture
def invoices_service(gateway, events_service, members_service):
    return InvoicesService(gateway, events_service, members_service)


@pytest.fixture
def lifecycle_service(gateway, invoices_service, events_service, contacts_service, mailer):
    return InvoiceLifecycleService(gateway, invoices_service, events_service, contacts_service, mailer)


@pytest.fixture
def invitations_service(gateway, members_service, mailer):
    return InvitationsService(
        gateway,
        members_service,
        mailer=mailer,
        frontend_url="https://app.test"
    )


# ============================================================================
# Test data - users and fleets
# ============================================================================

@pytest.fixture
def test_user_data():
    """Signed-in driver."""
    return {
        "id": "test-user-123",
        "email": "driver@test.com",
        "name": "Test Driver"
    }


@pytest.fixture
async def fleet_admin(gateway):
    """Active admin of fleet-1."""
    return await gateway.insert_member(
        FleetMemberFactory.create(fleet_id="fleet-1", user_id="fleet-admin", role=FleetRole.ADMIN)
    )


@pytest.fixture
async def fleet_driver(gateway, test_user_data):
    """The signed-in user as an active driver of fleet-1."""
    return await gateway.insert_member(
        FleetMemberFactory.create(fleet_id="fleet-1", user_id=test_user_data["id"])
    )


# ============================================================================
# Authentication mock
# ============================================================================

def make_user(user_id: str, email: str, name: str = "Test User"):
    mock_user = MagicMock()
    mock_user.user_id = user_id
    mock_user.email = email
    mock_user.name = name
    return mock_user


@pytest.fixture
def authenticated_user(test_user_data):
    """Mock of the authenticated caller."""
    return make_user(test_user_data["id"], test_user_data["email"], test_user_data["name"])


@pytest.fixture
def act_as():
    """Switch the caller seen by the API for the rest of the test."""
    def _act_as(user_id: str, email: str = "someone@test.com"):
        user = make_user(user_id, email)
        app.dependency_overrides[get_authenticated_user] = lambda: user
        return user

    return _act_as


# ============================================================================
# Async HTTP client
# ============================================================================

@pytest.fixture
async def anonymous_client(gateway, mailer) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with no caller identity."""
    app.dependency_overrides[get_persistence_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def client(anonymous_client, authenticated_user) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client signed in as authenticated_user."""
    app.dependency_overrides[get_authenticated_user] = lambda: authenticated_user
    yield anonymous_client
