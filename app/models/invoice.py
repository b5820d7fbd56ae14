from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states"""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


class InvoiceOwnerType(str, Enum):
    """Who bills the events: a single driver or a fleet"""
    USER = "user"
    FLEET = "fleet"


class InvoiceEmailStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class RecipientInfo(BaseModel):
    """Bill-to details"""
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, max_length=200)
    company: Optional[str] = Field(None, max_length=200)


class InvoiceCreate(BaseModel):
    """Request to aggregate completed events into an invoice"""
    detention_event_ids: List[str]
    recipient: Optional[RecipientInfo] = None


class InvoiceDocument(BaseModel):
    """Handle returned by the document renderer"""
    pdf_url: str


class InvoiceEmailRequest(BaseModel):
    """Request to deliver an invoice by email"""
    recipient_email: EmailStr
    recipient_name: Optional[str] = None
    subject: Optional[str] = Field(None, max_length=300)
    message: Optional[str] = Field(None, max_length=5000)


class Invoice(BaseModel):
    """Invoice record. Totals are a snapshot taken at aggregation time."""
    id: str
    owner_id: str
    owner_type: InvoiceOwnerType = InvoiceOwnerType.USER
    invoice_number: str
    detention_event_ids: List[str]

    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_company: Optional[str] = None

    total_amount: Decimal
    status: InvoiceStatus = InvoiceStatus.DRAFT
    pdf_url: Optional[str] = None
    created_by: Optional[str] = None

    created_at: datetime
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceEmail(BaseModel):
    """Delivery attempt log"""
    id: str
    invoice_id: str
    recipient_email: str
    recipient_name: Optional[str] = None
    subject: str
    status: InvoiceEmailStatus
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AgingBucket(BaseModel):
    bucket: str
    label: str
    count: int = 0
    amount: Decimal = Decimal("0.00")


class AgingSummary(BaseModel):
    """Outstanding receivables grouped by days since sending"""
    buckets: List[AgingBucket]
    total_unpaid: Decimal
    total_paid: Decimal
    total_invoiced: Decimal
    unpaid_count: int
    paid_count: int
    collection_rate: float
