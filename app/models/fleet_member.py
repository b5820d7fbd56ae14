from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class FleetRole(str, Enum):
    ADMIN = "admin"
    DRIVER = "driver"


class MemberStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REMOVED = "removed"


class FleetMember(BaseModel):
    """Membership of one user in one fleet"""
    id: str
    fleet_id: str
    user_id: str
    role: FleetRole
    status: MemberStatus = MemberStatus.PENDING
    hourly_rate_override: Optional[Decimal] = None
    grace_period_override: Optional[int] = None
    invited_by: Optional[str] = None
    invited_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FleetMemberUpdate(BaseModel):
    role: Optional[FleetRole] = None
    status: Optional[MemberStatus] = None
    hourly_rate_override: Optional[Decimal] = Field(None, gt=0)
    grace_period_override: Optional[int] = Field(None, ge=0)
