from fastapi import Depends, Request
from app.core.middleware import get_session_context
from app.core.exceptions import AuthenticationError
from app.config import settings
from app.persistence import get_gateway
from app.persistence.base import PersistenceGateway
from app.services.email_service import get_email_service
from app.services.fleet_members_service import FleetMembersService
from app.services.detention_events_service import DetentionEventsService
from app.services.contacts_service import ContactsService
from app.services.invoices_service import InvoicesService
from app.services.invoice_lifecycle_service import InvoiceLifecycleService
from app.services.invitations_service import InvitationsService
import logging

logger = logging.getLogger(__name__)


class AuthenticatedUser:
    """
    Dependency class that provides the caller's identity.
    Use this for endpoints that require authentication.
    """
    def __init__(self, request: Request):
        self.session = get_session_context(request)

        if not self.session.is_valid or not self.session.user_id:
            raise AuthenticationError("Authentication required")

    @property
    def user_id(self) -> str:
        return str(self.session.user_id)

    @property
    def email(self) -> str:
        return self.session.email

    @property
    def name(self) -> str:
        return self.session.name


def get_authenticated_user(request: Request) -> AuthenticatedUser:
    """Dependency to get the authenticated caller"""
    return AuthenticatedUser(request)


# Engine wiring. Tests swap get_persistence_gateway and get_mailer
# through app.dependency_overrides.

def get_persistence_gateway() -> PersistenceGateway:
    return get_gateway()


def get_mailer():
    return get_email_service()


def get_members_service(
    gateway: PersistenceGateway = Depends(get_persistence_gateway)
) -> FleetMembersService:
    return FleetMembersService(gateway)


def get_events_service(
    gateway: PersistenceGateway = Depends(get_persistence_gateway)
) -> DetentionEventsService:
    return DetentionEventsService(
        gateway,
        default_hourly_rate=settings.default_hourly_rate,
        default_grace_period_minutes=settings.default_grace_period_minutes
    )


def get_contacts_service(
    gateway: PersistenceGateway = Depends(get_persistence_gateway)
) -> ContactsService:
    return ContactsService(gateway)


def get_invoices_service(
    gateway: PersistenceGateway = Depends(get_persistence_gateway),
    events: DetentionEventsService = Depends(get_events_service),
    members: FleetMembersService = Depends(get_members_service)
) -> InvoicesService:
    return InvoicesService(
        gateway,
        events,
        members,
        number_prefix=settings.invoice_number_prefix,
        max_number_attempts=settings.invoice_number_max_attempts
    )


def get_invoice_lifecycle_service(
    gateway: PersistenceGateway = Depends(get_persistence_gateway),
    invoices: InvoicesService = Depends(get_invoices_service),
    events: DetentionEventsService = Depends(get_events_service),
    contacts: ContactsService = Depends(get_contacts_service),
    mailer=Depends(get_mailer)
) -> InvoiceLifecycleService:
    return InvoiceLifecycleService(gateway, invoices, events, contacts, mailer)


def get_invitations_service(
    gateway: PersistenceGateway = Depends(get_persistence_gateway),
    members: FleetMembersService = Depends(get_members_service),
    mailer=Depends(get_mailer)
) -> InvitationsService:
    return InvitationsService(
        gateway,
        members,
        mailer=mailer,
        expiry_days=settings.invitation_expiry_days,
        code_length=settings.invitation_code_length,
        max_code_attempts=settings.invitation_code_max_attempts,
        frontend_url=settings.frontend_url
    )
