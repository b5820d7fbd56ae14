"""
API endpoints for fleet invitations
"""
from fastapi import APIRouter, Depends
from typing import List
from app.core.dependencies import get_authenticated_user, AuthenticatedUser, get_invitations_service
from app.models.fleet_member import FleetMember
from app.models.invitation import (
    FleetInvitation, InvitationCreate, InvitationResend, InvitationAccept, InvitationLookup
)
from app.services.invitations_service import InvitationsService

router = APIRouter()


@router.post("/fleets/{fleet_id}/invitations", response_model=FleetInvitation, status_code=201)
async def create_invitation(
    fleet_id: str,
    data: InvitationCreate,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invitations: InvitationsService = Depends(get_invitations_service)
):
    """
    Invite someone into the fleet

    Requires fleet admin. The code is emailed when delivery is configured;
    a delivery failure does not undo the invitation.
    """
    return await invitations.create(
        fleet_id=fleet_id,
        email=data.email,
        role=data.role,
        invited_by=user.user_id,
        expires_in_days=data.expires_in_days
    )


@router.get("/fleets/{fleet_id}/invitations", response_model=List[FleetInvitation])
async def get_pending_invitations(
    fleet_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invitations: InvitationsService = Depends(get_invitations_service)
):
    """Open, unexpired invitations of the fleet"""
    return await invitations.list_pending(fleet_id, user.user_id)


@router.post("/fleets/{fleet_id}/invitations/{invitation_id}/resend", response_model=FleetInvitation)
async def resend_invitation(
    fleet_id: str,
    invitation_id: str,
    data: InvitationResend = InvitationResend(),
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invitations: InvitationsService = Depends(get_invitations_service)
):
    """Extend the expiry and email the invitation again, optionally with a new code"""
    return await invitations.resend(
        fleet_id,
        invitation_id,
        user.user_id,
        expires_in_days=data.expires_in_days,
        new_code=data.new_code
    )


@router.delete("/fleets/{fleet_id}/invitations/{invitation_id}", response_model=FleetInvitation)
async def cancel_invitation(
    fleet_id: str,
    invitation_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invitations: InvitationsService = Depends(get_invitations_service)
):
    return await invitations.cancel(fleet_id, invitation_id, user.user_id)


@router.get("/invitations/code/{code}", response_model=InvitationLookup)
async def get_invitation_by_code(
    code: str,
    invitations: InvitationsService = Depends(get_invitations_service)
):
    """Look up an invitation by its code (no authentication required)"""
    return await invitations.get_by_code(code)


@router.post("/invitations/accept", response_model=FleetMember)
async def accept_invitation(
    data: InvitationAccept,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invitations: InvitationsService = Depends(get_invitations_service)
):
    """
    Accept a fleet invitation with its code.

    The signed-in email must match the invited email. Each code can be
    accepted once.
    """
    return await invitations.accept(data.code, user.user_id, user.email)
