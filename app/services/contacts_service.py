import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List

from app.models.email_contact import EmailContact, EmailContactUpsert
from app.persistence.base import PersistenceGateway

logger = logging.getLogger(__name__)


def _recency(contact: EmailContact) -> float:
    return contact.last_used_at.timestamp() if contact.last_used_at else float('-inf')


def sort_by_usage(contacts: List[EmailContact]) -> List[EmailContact]:
    """Most used first; ties go to the most recently used"""
    return sorted(contacts, key=lambda c: (-c.use_count, -_recency(c)))


def filter_by_query(contacts: List[EmailContact], query: Optional[str]) -> List[EmailContact]:
    """Case-insensitive substring match on email, name and company"""
    needle = (query or "").strip().lower()
    if not needle:
        return list(contacts)
    return [
        c for c in contacts
        if any(needle in (field or "").lower() for field in (c.email, c.name, c.company))
    ]


def most_used(contacts: List[EmailContact], limit: int = 5) -> List[EmailContact]:
    return sort_by_usage(contacts)[:max(0, limit)]


def record_usage(contact: EmailContact, now: datetime) -> EmailContact:
    return contact.model_copy(update={
        "use_count": contact.use_count + 1,
        "last_used_at": now,
    })


class ContactsService:
    """Saved invoice recipients for a user"""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    async def list_contacts(
        self,
        user_id: str,
        query: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[EmailContact]:
        contacts = sort_by_usage(filter_by_query(await self.gateway.list_contacts(user_id), query))
        return contacts[:limit] if limit else contacts

    async def upsert_contact(
        self,
        user_id: str,
        data: EmailContactUpsert,
        now: Optional[datetime] = None
    ) -> EmailContact:
        """
        Save a recipient. Saving an address that already exists counts as a use
        and refreshes any name/company/type supplied.
        """
        return await self.record_contact_usage(
            user_id,
            data.email,
            name=data.name,
            company=data.company,
            contact_type=data.contact_type,
            now=now
        )

    async def record_contact_usage(
        self,
        user_id: str,
        email: str,
        name: Optional[str] = None,
        company: Optional[str] = None,
        contact_type=None,
        now: Optional[datetime] = None
    ) -> EmailContact:
        now = now or datetime.now(timezone.utc)
        email = email.strip().lower()

        contact = await self.gateway.get_contact_by_email(user_id, email)
        if contact is None:
            contact = EmailContact(
                id=str(uuid.uuid4()),
                user_id=user_id,
                email=email,
            )

        details = {
            key: value for key, value in
            (("name", name), ("company", company), ("contact_type", contact_type))
            if value is not None
        }
        contact = record_usage(contact.model_copy(update=details), now)

        saved = await self.gateway.save_contact(contact)
        logger.debug(f"Contact {email} used by {user_id} ({saved.use_count} uses)")
        return saved
