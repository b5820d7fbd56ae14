"""
In-memory persistence gateway.

Used by the test-suite and for local development (PERSISTENCE_BACKEND=memory).
None of the methods awaits between reading and writing a record, so each
conditional write is atomic with respect to other coroutines on the loop.
"""
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.core.exceptions import DuplicateKeyError
from app.models.detention_event import DetentionEvent, DetentionEventStatus
from app.models.invoice import Invoice, InvoiceStatus, InvoiceEmail
from app.models.invitation import FleetInvitation
from app.models.fleet_member import FleetMember
from app.models.email_contact import EmailContact
from app.persistence.base import PersistenceGateway


def _copy(record):
    return record.model_copy(deep=True) if record is not None else None


class InMemoryGateway(PersistenceGateway):

    def __init__(self):
        self.events: Dict[str, DetentionEvent] = {}
        self.invoices: Dict[str, Invoice] = {}
        self.invoice_emails: Dict[str, InvoiceEmail] = {}
        self.invitations: Dict[str, FleetInvitation] = {}
        self.members: Dict[str, FleetMember] = {}
        self.contacts: Dict[str, EmailContact] = {}

    @property
    def name(self) -> str:
        return "memory"

    # Detention events

    async def insert_event(self, event: DetentionEvent) -> DetentionEvent:
        self.events[event.id] = _copy(event)
        return _copy(event)

    async def get_event(self, event_id: str) -> Optional[DetentionEvent]:
        return _copy(self.events.get(event_id))

    async def list_events(
        self,
        user_id: Optional[str] = None,
        fleet_id: Optional[str] = None,
        facility_id: Optional[str] = None,
        status: Optional[DetentionEventStatus] = None,
        limit: Optional[int] = None
    ) -> List[DetentionEvent]:
        events = [
            e for e in self.events.values()
            if (user_id is None or e.user_id == user_id)
            and (fleet_id is None or e.fleet_id == fleet_id)
            and (facility_id is None or e.facility_id == facility_id)
            and (status is None or e.status == status)
        ]
        events.sort(key=lambda e: e.arrival_time, reverse=True)
        if limit:
            events = events[:limit]
        return [_copy(e) for e in events]

    async def update_event(
        self,
        event_id: str,
        expected_status: DetentionEventStatus,
        changes: Dict[str, Any]
    ) -> Optional[DetentionEvent]:
        current = self.events.get(event_id)
        if current is None or current.status != expected_status:
            return None
        updated = current.model_copy(update=changes)
        self.events[event_id] = updated
        return _copy(updated)

    # Invoices

    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        if any(i.invoice_number == invoice.invoice_number for i in self.invoices.values()):
            raise DuplicateKeyError("invoices_invoice_number_key")
        self.invoices[invoice.id] = _copy(invoice)
        return _copy(invoice)

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return _copy(self.invoices.get(invoice_id))

    async def get_invoice_by_number(self, invoice_number: str) -> Optional[Invoice]:
        for invoice in self.invoices.values():
            if invoice.invoice_number == invoice_number:
                return _copy(invoice)
        return None

    async def list_invoices(
        self,
        owner_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: Optional[int] = None
    ) -> List[Invoice]:
        invoices = [
            i for i in self.invoices.values()
            if i.owner_id == owner_id and (status is None or i.status == status)
        ]
        invoices.sort(key=lambda i: i.created_at, reverse=True)
        if limit:
            invoices = invoices[:limit]
        return [_copy(i) for i in invoices]

    async def list_invoices_for_event(self, event_id: str) -> List[Invoice]:
        return [_copy(i) for i in self.invoices.values() if event_id in i.detention_event_ids]

    async def update_invoice(
        self,
        invoice_id: str,
        expected_status: InvoiceStatus,
        changes: Dict[str, Any]
    ) -> Optional[Invoice]:
        current = self.invoices.get(invoice_id)
        if current is None or current.status != expected_status:
            return None
        updated = current.model_copy(update=changes)
        self.invoices[invoice_id] = updated
        return _copy(updated)

    async def delete_invoice(self, invoice_id: str, expected_status: InvoiceStatus) -> bool:
        current = self.invoices.get(invoice_id)
        if current is None or current.status != expected_status:
            return False
        del self.invoices[invoice_id]
        return True

    async def insert_invoice_email(self, email: InvoiceEmail) -> InvoiceEmail:
        self.invoice_emails[email.id] = _copy(email)
        return _copy(email)

    async def list_invoice_emails(self, invoice_id: str) -> List[InvoiceEmail]:
        emails = [e for e in self.invoice_emails.values() if e.invoice_id == invoice_id]
        emails.sort(key=lambda e: e.created_at, reverse=True)
        return [_copy(e) for e in emails]

    # Fleet invitations

    async def insert_invitation(self, invitation: FleetInvitation) -> FleetInvitation:
        if any(i.invitation_code == invitation.invitation_code for i in self.invitations.values()):
            raise DuplicateKeyError("fleet_invitations_invitation_code_key")
        self.invitations[invitation.id] = _copy(invitation)
        return _copy(invitation)

    async def get_invitation(self, invitation_id: str) -> Optional[FleetInvitation]:
        return _copy(self.invitations.get(invitation_id))

    async def get_invitation_by_code(self, code: str) -> Optional[FleetInvitation]:
        for invitation in self.invitations.values():
            if invitation.invitation_code == code:
                return _copy(invitation)
        return None

    async def list_invitations(
        self,
        fleet_id: Optional[str] = None,
        email: Optional[str] = None
    ) -> List[FleetInvitation]:
        invitations = [
            i for i in self.invitations.values()
            if (fleet_id is None or i.fleet_id == fleet_id)
            and (email is None or i.email == email)
        ]
        invitations.sort(key=lambda i: i.created_at, reverse=True)
        return [_copy(i) for i in invitations]

    async def update_open_invitation(
        self,
        invitation_id: str,
        changes: Dict[str, Any]
    ) -> Optional[FleetInvitation]:
        current = self.invitations.get(invitation_id)
        if current is None or current.accepted_at or current.cancelled_at:
            return None
        code = changes.get("invitation_code")
        if code and any(
            i.invitation_code == code and i.id != invitation_id
            for i in self.invitations.values()
        ):
            raise DuplicateKeyError("fleet_invitations_invitation_code_key")
        updated = current.model_copy(update=changes)
        self.invitations[invitation_id] = updated
        return _copy(updated)

    async def mark_invitation_accepted(
        self,
        invitation_id: str,
        accepted_by: str,
        accepted_at: datetime
    ) -> bool:
        current = self.invitations.get(invitation_id)
        if current is None or current.accepted_at or current.cancelled_at:
            return False
        self.invitations[invitation_id] = current.model_copy(
            update={"accepted_at": accepted_at, "accepted_by": accepted_by}
        )
        return True

    async def clear_invitation_acceptance(self, invitation_id: str, accepted_by: str) -> bool:
        current = self.invitations.get(invitation_id)
        if current is None or current.accepted_by != accepted_by:
            return False
        self.invitations[invitation_id] = current.model_copy(
            update={"accepted_at": None, "accepted_by": None}
        )
        return True

    # Fleet members

    async def insert_member(self, member: FleetMember) -> FleetMember:
        if self._find_member(member.fleet_id, member.user_id):
            raise DuplicateKeyError("fleet_members_fleet_id_user_id_key")
        self.members[member.id] = _copy(member)
        return _copy(member)

    async def get_member(self, member_id: str) -> Optional[FleetMember]:
        return _copy(self.members.get(member_id))

    async def get_member_by_user(self, fleet_id: str, user_id: str) -> Optional[FleetMember]:
        return _copy(self._find_member(fleet_id, user_id))

    async def list_members(self, fleet_id: str) -> List[FleetMember]:
        return [_copy(m) for m in self.members.values() if m.fleet_id == fleet_id]

    async def update_member(self, member_id: str, changes: Dict[str, Any]) -> Optional[FleetMember]:
        current = self.members.get(member_id)
        if current is None:
            return None
        updated = current.model_copy(update=changes)
        self.members[member_id] = updated
        return _copy(updated)

    def _find_member(self, fleet_id: str, user_id: str) -> Optional[FleetMember]:
        for member in self.members.values():
            if member.fleet_id == fleet_id and member.user_id == user_id:
                return member
        return None

    # Saved email contacts

    async def list_contacts(self, user_id: str) -> List[EmailContact]:
        return [_copy(c) for c in self.contacts.values() if c.user_id == user_id]

    async def get_contact_by_email(self, user_id: str, email: str) -> Optional[EmailContact]:
        for contact in self.contacts.values():
            if contact.user_id == user_id and contact.email == email:
                return _copy(contact)
        return None

    async def save_contact(self, contact: EmailContact) -> EmailContact:
        for existing in self.contacts.values():
            if (existing.id != contact.id and existing.user_id == contact.user_id
                    and existing.email == contact.email):
                raise DuplicateKeyError("email_contacts_user_id_email_key")
        self.contacts[contact.id] = _copy(contact)
        return _copy(contact)
