"""
Invoice status machine: draft -> sent -> paid, draft -> paid, draft -> deleted.

Paying an invoice pays every event it references; deleting a draft
returns its events to completed. Paid is terminal. Marking a paid invoice
paid again only finishes events still left invoiced, so duplicate client
retries converge.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from app.core.exceptions import (
    InvalidStateTransitionError,
    InvoiceNotDeletableError,
    InvoiceNotFoundError,
    ReconciliationError,
    TransientError,
    ValidationError,
)
from app.models.detention_event import DetentionEventStatus
from app.models.invoice import (
    Invoice, InvoiceStatus, InvoiceEmail, InvoiceEmailRequest, InvoiceEmailStatus, RecipientInfo
)
from app.persistence.base import PersistenceGateway
from app.services.contacts_service import ContactsService
from app.services.detention_events_service import DetentionEventsService
from app.services.invoices_service import InvoicesService
from app.templates.invoice_email_template import get_invoice_email_body, get_invoice_subject

logger = logging.getLogger(__name__)

INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.PAID},
    InvoiceStatus.SENT: {InvoiceStatus.PAID},
    InvoiceStatus.PAID: set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceLifecycleService:

    def __init__(
        self,
        gateway: PersistenceGateway,
        invoices: InvoicesService,
        events: DetentionEventsService,
        contacts: ContactsService,
        mailer=None
    ):
        self.gateway = gateway
        self.invoices = invoices
        self.events = events
        self.contacts = contacts
        self.mailer = mailer

    async def send(self, user_id: str, invoice_id: str, now: Optional[datetime] = None) -> Invoice:
        """draft -> sent, recording sent_at. Events are not touched."""
        invoice = await self.invoices.get_invoice(user_id, invoice_id)
        return await self._mark_sent(invoice, now or _utcnow())

    async def mark_paid(self, user_id: str, invoice_id: str, now: Optional[datetime] = None) -> Invoice:
        """
        Mark the invoice and all its events paid.

        The invoice is claimed first with a conditional write, so a concurrent
        delete of the draft either wins outright or fails. Events are paid
        after the claim; a retry on an already paid invoice finishes any event
        still left invoiced, so duplicate calls converge.
        """
        now = now or _utcnow()
        invoice = await self.invoices.get_invoice(user_id, invoice_id)

        if invoice.status == InvoiceStatus.PAID:
            logger.info(f"Invoice {invoice.invoice_number} already paid")
        else:
            invoice = await self._claim_paid(invoice, now)

        await self._pay_events(invoice, now)
        return invoice

    async def _claim_paid(self, invoice: Invoice, now: datetime) -> Invoice:
        current = invoice
        # a concurrent send can move draft -> sent between read and write
        for _ in range(len(INVOICE_TRANSITIONS)):
            if current.status == InvoiceStatus.PAID:
                return current
            paid = await self.gateway.update_invoice(current.id, current.status, {
                "status": InvoiceStatus.PAID,
                "paid_at": now,
            })
            if paid:
                logger.info(f"Invoice {paid.invoice_number} paid (${paid.total_amount})")
                return paid
            current = await self._refetch(current)

        raise InvalidStateTransitionError(
            "invoice", invoice.id, current.status, InvoiceStatus.PAID,
            "invoice changed while marking paid"
        )

    async def _pay_events(self, invoice: Invoice, now: datetime) -> None:
        failures = []
        for event_id in invoice.detention_event_ids:
            event = await self.gateway.get_event(event_id)
            if event is None:
                failures.append({"event_id": event_id, "error": "event not found"})
                continue
            if event.status == DetentionEventStatus.PAID:
                continue
            try:
                await self.events.mark_paid(event, now)
            except InvalidStateTransitionError as e:
                if e.current != DetentionEventStatus.PAID.value:
                    failures.append({"event_id": event_id, "error": e.message})

        if failures:
            logger.critical(
                f"Invoice {invoice.invoice_number} paid but events were not: {failures}"
            )
            raise ReconciliationError(
                f"Events of paid invoice {invoice.invoice_number} are not marked paid",
                {"invoice_id": invoice.id, "failures": failures}
            )

    async def delete(self, user_id: str, invoice_id: str, now: Optional[datetime] = None) -> None:
        """Remove a draft invoice and return its events to completed"""
        now = now or _utcnow()
        invoice = await self.invoices.get_invoice(user_id, invoice_id)

        if invoice.status != InvoiceStatus.DRAFT:
            raise InvoiceNotDeletableError(invoice.id, invoice.status)

        if not await self.gateway.delete_invoice(invoice.id, InvoiceStatus.DRAFT):
            current = await self._refetch(invoice)
            raise InvoiceNotDeletableError(invoice.id, current.status)

        failures = []
        for event_id in invoice.detention_event_ids:
            event = await self.gateway.get_event(event_id)
            if event is None or event.status != DetentionEventStatus.INVOICED:
                continue
            try:
                await self.events.revert_to_completed(event, now)
            except Exception as e:
                failures.append({"event_id": event_id, "error": str(e)})

        if failures:
            logger.critical(
                f"Invoice {invoice.invoice_number} deleted but events were not reverted: {failures}"
            )
            raise ReconciliationError(
                f"Events of deleted invoice {invoice.invoice_number} are still marked invoiced",
                {"invoice_id": invoice.id, "failures": failures}
            )

        logger.info(f"Invoice {invoice.invoice_number} deleted, {len(invoice.detention_event_ids)} events reverted")

    async def update_recipient(self, user_id: str, invoice_id: str, recipient: RecipientInfo) -> Invoice:
        invoice = await self.invoices.get_invoice(user_id, invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise InvalidStateTransitionError(
                "invoice", invoice.id, invoice.status, invoice.status,
                "paid invoices cannot be edited"
            )

        changes = {
            f"recipient_{field}": value
            for field, value in recipient.model_dump(exclude_unset=True).items()
        }
        if not changes:
            raise ValidationError("No fields to update")

        return await self._update(invoice, changes, "invoice changed while editing recipient")

    async def set_document_url(self, user_id: str, invoice_id: str, pdf_url: str) -> Invoice:
        """Store the handle returned by the document renderer"""
        invoice = await self.invoices.get_invoice(user_id, invoice_id)
        return await self._update(invoice, {"pdf_url": pdf_url}, "invoice changed while attaching document")

    async def email_invoice(
        self,
        user_id: str,
        invoice_id: str,
        request: InvoiceEmailRequest,
        now: Optional[datetime] = None
    ) -> InvoiceEmail:
        """
        Deliver the invoice by email and log the attempt.

        On a draft a successful delivery also sends the invoice. On a sent
        invoice it is a reminder. Paid invoices are not emailed.
        """
        now = now or _utcnow()
        invoice = await self.invoices.get_invoice(user_id, invoice_id)

        if invoice.status == InvoiceStatus.PAID:
            raise InvalidStateTransitionError(
                "invoice", invoice.id, invoice.status, InvoiceStatus.SENT,
                "paid invoices are not emailed"
            )
        if self.mailer is None:
            raise TransientError("Email delivery is not configured")

        subject = request.subject or get_invoice_subject(invoice)
        body = get_invoice_email_body(invoice, request.recipient_name, request.message)
        result = await self.mailer.send_email(
            to_email=request.recipient_email,
            subject=subject,
            text_body=body
        )

        log = await self.gateway.insert_invoice_email(InvoiceEmail(
            id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            recipient_email=request.recipient_email,
            recipient_name=request.recipient_name,
            subject=subject,
            status=InvoiceEmailStatus.SENT if result.success else InvoiceEmailStatus.FAILED,
            message_id=result.message_id,
            error_message=result.error,
            created_at=now
        ))

        if not result.success:
            logger.warning(f"Invoice {invoice.invoice_number} email to {request.recipient_email} failed: {result.error}")
            return log

        await self.contacts.record_contact_usage(
            user_id, request.recipient_email, name=request.recipient_name, now=now
        )

        if invoice.status == InvoiceStatus.DRAFT:
            recipient = {}
            if not invoice.recipient_email:
                recipient["recipient_email"] = request.recipient_email
                if request.recipient_name:
                    recipient["recipient_name"] = request.recipient_name
            await self._mark_sent(invoice, now, recipient)
        else:
            logger.info(f"Reminder for invoice {invoice.invoice_number} sent to {request.recipient_email}")

        return log

    # ------------------------------------------------------------------

    async def _mark_sent(
        self,
        invoice: Invoice,
        now: datetime,
        extra: Optional[Dict[str, Any]] = None
    ) -> Invoice:
        if InvoiceStatus.SENT not in INVOICE_TRANSITIONS[invoice.status]:
            raise InvalidStateTransitionError(
                "invoice", invoice.id, invoice.status, InvoiceStatus.SENT,
                "only draft invoices can be sent"
            )

        sent = await self.gateway.update_invoice(invoice.id, InvoiceStatus.DRAFT, {
            **(extra or {}),
            "status": InvoiceStatus.SENT,
            "sent_at": now,
        })
        if not sent:
            current = await self._refetch(invoice)
            raise InvalidStateTransitionError(
                "invoice", invoice.id, current.status, InvoiceStatus.SENT,
                "invoice changed while sending"
            )

        logger.info(f"Invoice {invoice.invoice_number} sent")
        return sent

    async def _update(self, invoice: Invoice, changes: Dict[str, Any], guard: str) -> Invoice:
        updated = await self.gateway.update_invoice(invoice.id, invoice.status, changes)
        if not updated:
            current = await self._refetch(invoice)
            raise InvalidStateTransitionError("invoice", invoice.id, current.status, invoice.status, guard)
        return updated

    async def _refetch(self, invoice: Invoice) -> Invoice:
        current = await self.gateway.get_invoice(invoice.id)
        if not current:
            raise InvoiceNotFoundError(invoice.id)
        return current
