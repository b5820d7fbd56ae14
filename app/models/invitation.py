"""
Invitation models for fleet member invitations
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime

from app.models.fleet_member import FleetRole


class InvitationCreate(BaseModel):
    """Request to invite someone into a fleet"""
    email: EmailStr
    role: FleetRole = FleetRole.DRIVER
    expires_in_days: Optional[int] = Field(None, ge=1, le=90)


class InvitationResend(BaseModel):
    expires_in_days: Optional[int] = Field(None, ge=1, le=90)
    new_code: bool = False


class InvitationAccept(BaseModel):
    """Accept invitation request"""
    code: str = Field(..., min_length=4, max_length=32)


class FleetInvitation(BaseModel):
    """Invitation record"""
    id: str
    fleet_id: str
    email: str
    role: FleetRole
    invited_by: str
    invitation_code: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class InvitationLookup(BaseModel):
    """Invitation as seen by whoever holds the code"""
    invitation: FleetInvitation
    is_valid: bool
    reason: Optional[str] = None
