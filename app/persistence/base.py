"""
Base Persistence Gateway Interface

The billing engine reads and writes records only through this interface,
so the backing store can be swapped (PostgreSQL in production, memory in
tests and local development).

Conditional writes take the state the caller last observed and only apply
when the stored record still matches it. They return None/False when the
record moved on, which is how concurrent callers detect they lost a race.
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.models.detention_event import DetentionEvent, DetentionEventStatus
from app.models.invoice import Invoice, InvoiceStatus, InvoiceEmail
from app.models.invitation import FleetInvitation
from app.models.fleet_member import FleetMember
from app.models.email_contact import EmailContact


class PersistenceGateway(ABC):
    """
    Abstract storage for detention events, invoices, invitations,
    fleet members and saved contacts.

    Insert methods raise DuplicateKeyError when a uniqueness constraint
    (invoice number, invitation code, contact email per user) is violated.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g., 'postgres', 'memory')"""
        pass

    # ------------------------------------------------------------------
    # Detention events
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_event(self, event: DetentionEvent) -> DetentionEvent:
        pass

    @abstractmethod
    async def get_event(self, event_id: str) -> Optional[DetentionEvent]:
        pass

    @abstractmethod
    async def list_events(
        self,
        user_id: Optional[str] = None,
        fleet_id: Optional[str] = None,
        facility_id: Optional[str] = None,
        status: Optional[DetentionEventStatus] = None,
        limit: Optional[int] = None
    ) -> List[DetentionEvent]:
        """Newest arrival first"""
        pass

    @abstractmethod
    async def update_event(
        self,
        event_id: str,
        expected_status: DetentionEventStatus,
        changes: Dict[str, Any]
    ) -> Optional[DetentionEvent]:
        """Apply changes only if the event is still in expected_status"""
        pass

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        pass

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def get_invoice_by_number(self, invoice_number: str) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def list_invoices(
        self,
        owner_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: Optional[int] = None
    ) -> List[Invoice]:
        """Newest first"""
        pass

    @abstractmethod
    async def list_invoices_for_event(self, event_id: str) -> List[Invoice]:
        pass

    @abstractmethod
    async def update_invoice(
        self,
        invoice_id: str,
        expected_status: InvoiceStatus,
        changes: Dict[str, Any]
    ) -> Optional[Invoice]:
        """Apply changes only if the invoice is still in expected_status"""
        pass

    @abstractmethod
    async def delete_invoice(self, invoice_id: str, expected_status: InvoiceStatus) -> bool:
        """Delete only if the invoice is still in expected_status"""
        pass

    @abstractmethod
    async def insert_invoice_email(self, email: InvoiceEmail) -> InvoiceEmail:
        pass

    @abstractmethod
    async def list_invoice_emails(self, invoice_id: str) -> List[InvoiceEmail]:
        pass

    # ------------------------------------------------------------------
    # Fleet invitations
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_invitation(self, invitation: FleetInvitation) -> FleetInvitation:
        pass

    @abstractmethod
    async def get_invitation(self, invitation_id: str) -> Optional[FleetInvitation]:
        pass

    @abstractmethod
    async def get_invitation_by_code(self, code: str) -> Optional[FleetInvitation]:
        """Codes are stored upper-case; callers normalize before lookup"""
        pass

    @abstractmethod
    async def list_invitations(
        self,
        fleet_id: Optional[str] = None,
        email: Optional[str] = None
    ) -> List[FleetInvitation]:
        pass

    @abstractmethod
    async def update_open_invitation(
        self,
        invitation_id: str,
        changes: Dict[str, Any]
    ) -> Optional[FleetInvitation]:
        """Apply changes only while the invitation is neither accepted nor cancelled"""
        pass

    @abstractmethod
    async def mark_invitation_accepted(
        self,
        invitation_id: str,
        accepted_by: str,
        accepted_at: datetime
    ) -> bool:
        """
        Compare-and-set on accepted_at. Returns True for exactly one caller;
        False if the invitation was already accepted or was cancelled.
        """
        pass

    @abstractmethod
    async def clear_invitation_acceptance(self, invitation_id: str, accepted_by: str) -> bool:
        """Undo an acceptance made by accepted_by (compensation only)"""
        pass

    # ------------------------------------------------------------------
    # Fleet members
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_member(self, member: FleetMember) -> FleetMember:
        pass

    @abstractmethod
    async def get_member(self, member_id: str) -> Optional[FleetMember]:
        pass

    @abstractmethod
    async def get_member_by_user(self, fleet_id: str, user_id: str) -> Optional[FleetMember]:
        pass

    @abstractmethod
    async def list_members(self, fleet_id: str) -> List[FleetMember]:
        pass

    @abstractmethod
    async def update_member(self, member_id: str, changes: Dict[str, Any]) -> Optional[FleetMember]:
        pass

    # ------------------------------------------------------------------
    # Saved email contacts
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_contacts(self, user_id: str) -> List[EmailContact]:
        pass

    @abstractmethod
    async def get_contact_by_email(self, user_id: str, email: str) -> Optional[EmailContact]:
        pass

    @abstractmethod
    async def save_contact(self, contact: EmailContact) -> EmailContact:
        """Insert, or replace the row with the same id"""
        pass
