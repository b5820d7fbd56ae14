"""
Mocks for external collaborators and failure injection.
"""
import asyncio
from datetime import datetime
from typing import Optional, List, Dict, Any

from app.core.exceptions import DuplicateKeyError
from app.models.detention_event import DetentionEventStatus
from app.persistence.memory import InMemoryGateway
from app.services.email_service import DeliveryResult


class MockEmailService:
    """Records deliveries instead of calling SES."""

    def __init__(self, fail_with: Optional[str] = None):
        self.sent_emails = []
        self.fail_with = fail_with

    async def send_email(self, to_email: str, subject: str, text_body: str, html_body: str = None):
        self.sent_emails.append({
            "to": to_email,
            "subject": subject,
            "text_body": text_body,
            "html_body": html_body,
            "sent_at": datetime.now()
        })
        if self.fail_with:
            return DeliveryResult(success=False, error=self.fail_with)
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent_emails)}")

    def get_sent_emails(self) -> List[dict]:
        return self.sent_emails

    def was_email_sent_to(self, email: str) -> bool:
        return any(e["to"] == email for e in self.sent_emails)


class FlakyGateway(InMemoryGateway):
    """
    In-memory gateway that fails chosen writes.

    fail_event_updates: event id -> status; moving that event to that status
    raises instead of writing.
    """

    def __init__(self):
        super().__init__()
        self.fail_event_updates: Dict[str, DetentionEventStatus] = {}
        self.fail_reverts = False
        self.fail_invoice_delete = False
        self.fail_member_insert = False
        self.duplicate_invoice_numbers = 0

    async def update_event(self, event_id: str, expected_status, changes: Dict[str, Any]):
        target = changes.get("status")
        if event_id in self.fail_event_updates and self.fail_event_updates[event_id] == target:
            raise ConnectionError(f"write to event {event_id} timed out")
        if self.fail_reverts and target == DetentionEventStatus.COMPLETED:
            raise ConnectionError("revert failed")
        return await super().update_event(event_id, expected_status, changes)

    async def insert_invoice(self, invoice):
        if self.duplicate_invoice_numbers > 0:
            self.duplicate_invoice_numbers -= 1
            raise DuplicateKeyError("invoices_invoice_number_key")
        return await super().insert_invoice(invoice)

    async def delete_invoice(self, invoice_id: str, expected_status) -> bool:
        if self.fail_invoice_delete:
            raise ConnectionError("delete failed")
        return await super().delete_invoice(invoice_id, expected_status)

    async def insert_member(self, member):
        if self.fail_member_insert:
            raise ConnectionError("member insert failed")
        return await super().insert_member(member)


class YieldingGateway(InMemoryGateway):
    """In-memory gateway whose reads suspend, so gathered calls interleave."""

    async def get_event(self, event_id: str):
        await asyncio.sleep(0)
        return await super().get_event(event_id)

    async def get_invoice(self, invoice_id: str):
        await asyncio.sleep(0)
        return await super().get_invoice(invoice_id)
