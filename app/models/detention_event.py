from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class DetentionEventStatus(str, Enum):
    """Lifecycle states of a detention event"""
    ACTIVE = "active"          # Driver is on site, timer running
    COMPLETED = "completed"    # Departure captured, amount computed
    INVOICED = "invoiced"      # Referenced by an invoice
    PAID = "paid"              # Invoice collected
    CANCELLED = "cancelled"    # Discarded before invoicing


class EventType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class DetentionCalculation(BaseModel):
    """Billable time and amount for an arrival/departure pair"""
    total_elapsed_minutes: int
    detention_minutes: int
    total_amount: Decimal
    clock_skew: bool = False


class DetentionEventCreate(BaseModel):
    """Request to start tracking a detention event (arrival capture)"""
    facility_id: Optional[str] = None
    load_reference: Optional[str] = Field(None, max_length=100)
    event_type: EventType = EventType.PICKUP
    arrival_time: Optional[datetime] = Field(None, description="Defaults to now")
    hourly_rate: Optional[Decimal] = Field(None, description="Overrides member/default rate")
    grace_period_minutes: Optional[int] = Field(None, description="Overrides member/default grace")
    fleet_id: Optional[str] = None
    fleet_member_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)


class DetentionEventEnd(BaseModel):
    """Departure capture"""
    departure_time: Optional[datetime] = Field(None, description="Defaults to now")


class DetentionEventUpdate(BaseModel):
    facility_id: Optional[str] = None
    load_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)
    hourly_rate: Optional[Decimal] = None


class DetentionEvent(BaseModel):
    """Detention event record"""
    id: str
    user_id: str
    facility_id: Optional[str] = None
    fleet_id: Optional[str] = None
    fleet_member_id: Optional[str] = None
    load_reference: Optional[str] = None
    event_type: EventType = EventType.PICKUP
    notes: Optional[str] = None

    arrival_time: datetime
    departure_time: Optional[datetime] = None
    grace_period_minutes: int
    grace_period_end: Optional[datetime] = None
    hourly_rate: Decimal

    total_elapsed_minutes: int = 0
    detention_minutes: int = 0
    total_amount: Decimal = Decimal("0.00")

    status: DetentionEventStatus = DetentionEventStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LiveDetention(BaseModel):
    """Running totals for an event, computed against the current time"""
    event_id: str
    status: DetentionEventStatus
    as_of: datetime
    is_in_grace_period: bool
    calculation: DetentionCalculation
