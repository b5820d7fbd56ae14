"""
Invoice aggregation and invoice queries.

create_invoice writes the invoice first and then flips each event to
invoiced. The store has no multi-record transaction, so a failure while
flipping is undone by compensation: flipped events go back to completed
and the invoice is deleted. If compensation itself fails the records are
left for manual repair and ReconciliationError is raised.
"""
import logging
import secrets
import string
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple

from app.core.exceptions import (
    AuthorizationError,
    DetentionEventNotFoundError,
    DuplicateKeyError,
    IdentifierExhaustedError,
    IneligibleEventError,
    InvoiceNotFoundError,
    NoEventsSelectedError,
    ReconciliationError,
)
from app.models.detention_event import DetentionEvent, DetentionEventStatus
from app.models.invoice import (
    Invoice, InvoiceCreate, InvoiceEmail, InvoiceOwnerType, InvoiceStatus, AgingSummary
)
from app.persistence.base import PersistenceGateway
from app.services.detention_events_service import DetentionEventsService
from app.services.fleet_members_service import FleetMembersService
from app.services.recovery_service import build_aging_summary
from app.services.time_calculator import round_currency

logger = logging.getLogger(__name__)

INVOICE_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_invoice_number(prefix: str, now: datetime) -> str:
    """PREFIX-YYMM-XXXX with a random 4 character suffix"""
    suffix = ''.join(secrets.choice(INVOICE_NUMBER_ALPHABET) for _ in range(4))
    return f"{prefix}-{now.strftime('%y%m')}-{suffix}"


class InvoicesService:
    """Builds invoices from completed events and resolves who may see them"""

    def __init__(
        self,
        gateway: PersistenceGateway,
        events: DetentionEventsService,
        members: FleetMembersService,
        number_prefix: str = "DT",
        max_number_attempts: int = 5
    ):
        self.gateway = gateway
        self.events = events
        self.members = members
        self.number_prefix = number_prefix
        self.max_number_attempts = max_number_attempts

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def resolve_owner(
        self,
        user_id: str,
        fleet_id: Optional[str] = None
    ) -> Tuple[str, InvoiceOwnerType]:
        """The billing party a caller acts as: themselves, or a fleet they administer"""
        if fleet_id:
            await self.members.require_fleet_admin(fleet_id, user_id)
            return fleet_id, InvoiceOwnerType.FLEET
        return user_id, InvoiceOwnerType.USER

    async def get_invoice(self, user_id: str, invoice_id: str) -> Invoice:
        invoice = await self.gateway.get_invoice(invoice_id)
        if not invoice:
            raise InvoiceNotFoundError(invoice_id)
        await self._authorize(invoice, user_id)
        return invoice

    async def get_invoice_by_number(self, user_id: str, invoice_number: str) -> Invoice:
        invoice = await self.gateway.get_invoice_by_number(invoice_number.strip().upper())
        if not invoice:
            raise InvoiceNotFoundError(invoice_number)
        await self._authorize(invoice, user_id)
        return invoice

    async def list_invoices(
        self,
        user_id: str,
        fleet_id: Optional[str] = None,
        status: Optional[InvoiceStatus] = None,
        limit: Optional[int] = None
    ) -> List[Invoice]:
        owner_id, _ = await self.resolve_owner(user_id, fleet_id)
        return await self.gateway.list_invoices(owner_id, status=status, limit=limit)

    async def list_invoice_emails(self, user_id: str, invoice_id: str) -> List[InvoiceEmail]:
        await self.get_invoice(user_id, invoice_id)
        return await self.gateway.list_invoice_emails(invoice_id)

    async def aging_summary(
        self,
        user_id: str,
        fleet_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> AgingSummary:
        owner_id, _ = await self.resolve_owner(user_id, fleet_id)
        invoices = await self.gateway.list_invoices(owner_id)
        return build_aging_summary(invoices, now or datetime.now(timezone.utc))

    async def _authorize(self, invoice: Invoice, user_id: str):
        if invoice.owner_type == InvoiceOwnerType.FLEET:
            await self.members.require_fleet_admin(invoice.owner_id, user_id)
        elif invoice.owner_id != user_id:
            raise AuthorizationError("You don't have access to this invoice")

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def create_invoice(
        self,
        user_id: str,
        data: InvoiceCreate,
        fleet_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Invoice:
        """
        Aggregate completed events into a draft invoice.

        Args:
            user_id: Caller creating the invoice
            data: Event ids (order kept, duplicates dropped) and optional recipient
            fleet_id: Bill as this fleet instead of as the caller
            now: Creation time

        Raises:
            NoEventsSelectedError: Empty selection
            IneligibleEventError: An event has another owner or is not completed
            IdentifierExhaustedError: No free invoice number after bounded retries
            ReconciliationError: A partial write could not be rolled back
        """
        now = now or datetime.now(timezone.utc)
        owner_id, owner_type = await self.resolve_owner(user_id, fleet_id)

        event_ids = list(dict.fromkeys(data.detention_event_ids))
        if not event_ids:
            raise NoEventsSelectedError()

        events = [await self._eligible_event(event_id, owner_id, owner_type) for event_id in event_ids]
        total_amount = round_currency(sum((e.total_amount for e in events), Decimal("0")))

        recipient = data.recipient
        invoice = await self._insert_with_unique_number(Invoice(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            owner_type=owner_type,
            invoice_number="",
            detention_event_ids=event_ids,
            recipient_email=recipient.email if recipient else None,
            recipient_name=recipient.name if recipient else None,
            recipient_company=recipient.company if recipient else None,
            total_amount=total_amount,
            status=InvoiceStatus.DRAFT,
            created_by=user_id,
            created_at=now
        ), now)

        flipped: List[DetentionEvent] = []
        try:
            for event in events:
                flipped.append(await self.events.mark_invoiced(event, now))
        except Exception as e:
            logger.warning(
                f"Invoice {invoice.invoice_number}: marking events invoiced failed ({e}), rolling back"
            )
            await self._roll_back(invoice, flipped, now)
            raise

        logger.info(
            f"Invoice {invoice.invoice_number} created for {owner_type.value} {owner_id}: "
            f"{len(events)} events, ${total_amount}"
        )
        return invoice

    async def _eligible_event(
        self,
        event_id: str,
        owner_id: str,
        owner_type: InvoiceOwnerType
    ) -> DetentionEvent:
        event = await self.gateway.get_event(event_id)
        if not event:
            raise DetentionEventNotFoundError(event_id)

        owner = event.fleet_id if owner_type == InvoiceOwnerType.FLEET else event.user_id
        if owner != owner_id:
            raise IneligibleEventError(event_id, "event belongs to a different owner")

        if event.status != DetentionEventStatus.COMPLETED:
            raise IneligibleEventError(event_id, f"event is {event.status.value}, not completed")

        return event

    async def _insert_with_unique_number(self, invoice: Invoice, now: datetime) -> Invoice:
        for attempt in range(1, self.max_number_attempts + 1):
            candidate = invoice.model_copy(
                update={"invoice_number": generate_invoice_number(self.number_prefix, now)}
            )
            try:
                return await self.gateway.insert_invoice(candidate)
            except DuplicateKeyError:
                logger.warning(
                    f"Invoice number {candidate.invoice_number} already taken "
                    f"(attempt {attempt}/{self.max_number_attempts})"
                )

        raise IdentifierExhaustedError("invoice number", self.max_number_attempts)

    async def _roll_back(self, invoice: Invoice, flipped: List[DetentionEvent], now: datetime):
        failures = []

        for event in flipped:
            try:
                await self.events.revert_to_completed(event, now)
            except Exception as e:
                failures.append({"event_id": event.id, "error": str(e)})

        try:
            if not await self.gateway.delete_invoice(invoice.id, InvoiceStatus.DRAFT):
                failures.append({"invoice_id": invoice.id, "error": "invoice no longer draft"})
        except Exception as e:
            failures.append({"invoice_id": invoice.id, "error": str(e)})

        if failures:
            logger.critical(
                f"Rollback of invoice {invoice.invoice_number} incomplete, manual reconciliation needed: {failures}"
            )
            raise ReconciliationError(
                f"Invoice {invoice.invoice_number} could not be rolled back",
                {"invoice_id": invoice.id, "failures": failures}
            )
