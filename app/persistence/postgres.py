"""
PostgreSQL persistence gateway on top of the asyncpg pool.

Conditional writes are single UPDATE/DELETE statements with the expected
state in the WHERE clause, so PostgreSQL row locking provides the
compare-and-set the engine relies on.
"""
import logging
from enum import Enum
from typing import Optional, List, Dict, Any, Type
from datetime import datetime

import asyncpg
from pydantic import BaseModel

from app.database import get_db_connection
from app.core.exceptions import DuplicateKeyError
from app.models.detention_event import DetentionEvent, DetentionEventStatus
from app.models.invoice import Invoice, InvoiceStatus, InvoiceEmail
from app.models.invitation import FleetInvitation
from app.models.fleet_member import FleetMember
from app.models.email_contact import EmailContact
from app.persistence.base import PersistenceGateway

logger = logging.getLogger(__name__)


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _row(model: Type[BaseModel], row) -> Optional[BaseModel]:
    return model(**dict(row)) if row else None


def _set_clause(model: Type[BaseModel], changes: Dict[str, Any], first_param: int):
    """Build 'col = $n, ...' for whitelisted model columns"""
    assignments = []
    values = []
    for offset, (column, value) in enumerate(changes.items()):
        if column not in model.model_fields:
            raise ValueError(f"Unknown column for {model.__name__}: {column}")
        assignments.append(f"{column} = ${first_param + offset}")
        values.append(_db_value(value))
    return ", ".join(assignments), values


async def _insert(table: str, record: BaseModel):
    data = record.model_dump()
    columns = list(data.keys())
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    try:
        async with get_db_connection() as conn:
            return await conn.fetchrow(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
                *[_db_value(data[c]) for c in columns]
            )
    except asyncpg.exceptions.UniqueViolationError as e:
        logger.warning(f"Unique violation on {table}: {e.constraint_name}")
        raise DuplicateKeyError(e.constraint_name)


class PostgresGateway(PersistenceGateway):

    @property
    def name(self) -> str:
        return "postgres"

    # Detention events

    async def insert_event(self, event: DetentionEvent) -> DetentionEvent:
        return _row(DetentionEvent, await _insert("detention_events", event))

    async def get_event(self, event_id: str) -> Optional[DetentionEvent]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow("SELECT * FROM detention_events WHERE id = $1", event_id)
            return _row(DetentionEvent, row)

    async def list_events(
        self,
        user_id: Optional[str] = None,
        fleet_id: Optional[str] = None,
        facility_id: Optional[str] = None,
        status: Optional[DetentionEventStatus] = None,
        limit: Optional[int] = None
    ) -> List[DetentionEvent]:
        conditions = []
        params = []
        if user_id is not None:
            params.append(user_id)
            conditions.append(f"user_id = ${len(params)}")
        if fleet_id is not None:
            params.append(fleet_id)
            conditions.append(f"fleet_id = ${len(params)}")
        if facility_id is not None:
            params.append(facility_id)
            conditions.append(f"facility_id = ${len(params)}")
        if status is not None:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")

        query = "SELECT * FROM detention_events"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY arrival_time DESC"
        if limit:
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch(query, *params)
            return [_row(DetentionEvent, r) for r in rows]

    async def update_event(
        self,
        event_id: str,
        expected_status: DetentionEventStatus,
        changes: Dict[str, Any]
    ) -> Optional[DetentionEvent]:
        assignments, values = _set_clause(DetentionEvent, changes, 3)
        async with get_db_connection() as conn:
            row = await conn.fetchrow(f"""
                UPDATE detention_events
                SET {assignments}
                WHERE id = $1 AND status = $2
                RETURNING *
            """, event_id, expected_status.value, *values)
            return _row(DetentionEvent, row)

    # Invoices

    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        return _row(Invoice, await _insert("invoices", invoice))

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow("SELECT * FROM invoices WHERE id = $1", invoice_id)
            return _row(Invoice, row)

    async def get_invoice_by_number(self, invoice_number: str) -> Optional[Invoice]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM invoices WHERE invoice_number = $1", invoice_number
            )
            return _row(Invoice, row)

    async def list_invoices(
        self,
        owner_id: str,
        status: Optional[InvoiceStatus] = None,
        limit: Optional[int] = None
    ) -> List[Invoice]:
        params: list = [owner_id]
        query = "SELECT * FROM invoices WHERE owner_id = $1"
        if status is not None:
            params.append(status.value)
            query += f" AND status = ${len(params)}"
        query += " ORDER BY created_at DESC"
        if limit:
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch(query, *params)
            return [_row(Invoice, r) for r in rows]

    async def list_invoices_for_event(self, event_id: str) -> List[Invoice]:
        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch(
                "SELECT * FROM invoices WHERE $1 = ANY(detention_event_ids)", event_id
            )
            return [_row(Invoice, r) for r in rows]

    async def update_invoice(
        self,
        invoice_id: str,
        expected_status: InvoiceStatus,
        changes: Dict[str, Any]
    ) -> Optional[Invoice]:
        assignments, values = _set_clause(Invoice, changes, 3)
        async with get_db_connection() as conn:
            row = await conn.fetchrow(f"""
                UPDATE invoices
                SET {assignments}
                WHERE id = $1 AND status = $2
                RETURNING *
            """, invoice_id, expected_status.value, *values)
            return _row(Invoice, row)

    async def delete_invoice(self, invoice_id: str, expected_status: InvoiceStatus) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute(
                "DELETE FROM invoices WHERE id = $1 AND status = $2",
                invoice_id, expected_status.value
            )
            return result.split()[-1] == '1'

    async def insert_invoice_email(self, email: InvoiceEmail) -> InvoiceEmail:
        return _row(InvoiceEmail, await _insert("invoice_emails", email))

    async def list_invoice_emails(self, invoice_id: str) -> List[InvoiceEmail]:
        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch("""
                SELECT * FROM invoice_emails
                WHERE invoice_id = $1
                ORDER BY created_at DESC
            """, invoice_id)
            return [_row(InvoiceEmail, r) for r in rows]

    # Fleet invitations

    async def insert_invitation(self, invitation: FleetInvitation) -> FleetInvitation:
        return _row(FleetInvitation, await _insert("fleet_invitations", invitation))

    async def get_invitation(self, invitation_id: str) -> Optional[FleetInvitation]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow("SELECT * FROM fleet_invitations WHERE id = $1", invitation_id)
            return _row(FleetInvitation, row)

    async def get_invitation_by_code(self, code: str) -> Optional[FleetInvitation]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM fleet_invitations WHERE invitation_code = $1", code
            )
            return _row(FleetInvitation, row)

    async def list_invitations(
        self,
        fleet_id: Optional[str] = None,
        email: Optional[str] = None
    ) -> List[FleetInvitation]:
        conditions = []
        params = []
        if fleet_id is not None:
            params.append(fleet_id)
            conditions.append(f"fleet_id = ${len(params)}")
        if email is not None:
            params.append(email)
            conditions.append(f"email = ${len(params)}")

        query = "SELECT * FROM fleet_invitations"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC"

        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch(query, *params)
            return [_row(FleetInvitation, r) for r in rows]

    async def update_open_invitation(
        self,
        invitation_id: str,
        changes: Dict[str, Any]
    ) -> Optional[FleetInvitation]:
        assignments, values = _set_clause(FleetInvitation, changes, 2)
        try:
            async with get_db_connection() as conn:
                row = await conn.fetchrow(f"""
                    UPDATE fleet_invitations
                    SET {assignments}
                    WHERE id = $1 AND accepted_at IS NULL AND cancelled_at IS NULL
                    RETURNING *
                """, invitation_id, *values)
                return _row(FleetInvitation, row)
        except asyncpg.exceptions.UniqueViolationError as e:
            raise DuplicateKeyError(e.constraint_name)

    async def mark_invitation_accepted(
        self,
        invitation_id: str,
        accepted_by: str,
        accepted_at: datetime
    ) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute("""
                UPDATE fleet_invitations
                SET accepted_at = $2, accepted_by = $3
                WHERE id = $1 AND accepted_at IS NULL AND cancelled_at IS NULL
            """, invitation_id, accepted_at, accepted_by)
            return result.split()[-1] == '1'

    async def clear_invitation_acceptance(self, invitation_id: str, accepted_by: str) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute("""
                UPDATE fleet_invitations
                SET accepted_at = NULL, accepted_by = NULL
                WHERE id = $1 AND accepted_by = $2
            """, invitation_id, accepted_by)
            return result.split()[-1] == '1'

    # Fleet members

    async def insert_member(self, member: FleetMember) -> FleetMember:
        return _row(FleetMember, await _insert("fleet_members", member))

    async def get_member(self, member_id: str) -> Optional[FleetMember]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow("SELECT * FROM fleet_members WHERE id = $1", member_id)
            return _row(FleetMember, row)

    async def get_member_by_user(self, fleet_id: str, user_id: str) -> Optional[FleetMember]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow("""
                SELECT * FROM fleet_members
                WHERE fleet_id = $1 AND user_id = $2
            """, fleet_id, user_id)
            return _row(FleetMember, row)

    async def list_members(self, fleet_id: str) -> List[FleetMember]:
        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch("""
                SELECT * FROM fleet_members
                WHERE fleet_id = $1
                ORDER BY joined_at NULLS LAST
            """, fleet_id)
            return [_row(FleetMember, r) for r in rows]

    async def update_member(self, member_id: str, changes: Dict[str, Any]) -> Optional[FleetMember]:
        assignments, values = _set_clause(FleetMember, changes, 2)
        async with get_db_connection() as conn:
            row = await conn.fetchrow(f"""
                UPDATE fleet_members
                SET {assignments}
                WHERE id = $1
                RETURNING *
            """, member_id, *values)
            return _row(FleetMember, row)

    # Saved email contacts

    async def list_contacts(self, user_id: str) -> List[EmailContact]:
        async with get_db_connection(use_transaction=False) as conn:
            rows = await conn.fetch("SELECT * FROM email_contacts WHERE user_id = $1", user_id)
            return [_row(EmailContact, r) for r in rows]

    async def get_contact_by_email(self, user_id: str, email: str) -> Optional[EmailContact]:
        async with get_db_connection(use_transaction=False) as conn:
            row = await conn.fetchrow("""
                SELECT * FROM email_contacts
                WHERE user_id = $1 AND email = $2
            """, user_id, email)
            return _row(EmailContact, row)

    async def save_contact(self, contact: EmailContact) -> EmailContact:
        try:
            async with get_db_connection() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO email_contacts (
                        id, user_id, email, name, company, contact_type, use_count, last_used_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    ON CONFLICT (id) DO UPDATE SET
                        name = EXCLUDED.name,
                        company = EXCLUDED.company,
                        contact_type = EXCLUDED.contact_type,
                        use_count = EXCLUDED.use_count,
                        last_used_at = EXCLUDED.last_used_at
                    RETURNING *
                """,
                    contact.id, contact.user_id, contact.email, contact.name, contact.company,
                    _db_value(contact.contact_type), contact.use_count, contact.last_used_at
                )
                return _row(EmailContact, row)
        except asyncpg.exceptions.UniqueViolationError as e:
            raise DuplicateKeyError(e.constraint_name)
