from fastapi import APIRouter, Depends
from typing import List
from app.core.dependencies import get_authenticated_user, AuthenticatedUser, get_members_service
from app.models.fleet_member import FleetMember, FleetMemberUpdate
from app.services.fleet_members_service import FleetMembersService

router = APIRouter()


@router.get("/{fleet_id}/members", response_model=List[FleetMember])
async def list_members(
    fleet_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    members: FleetMembersService = Depends(get_members_service)
):
    """List the fleet's members. Any active member may look."""
    await members.require_fleet_member(fleet_id, user.user_id)
    return await members.list_members(fleet_id)


@router.get("/{fleet_id}/members/{member_id}", response_model=FleetMember)
async def get_member(
    fleet_id: str,
    member_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    members: FleetMembersService = Depends(get_members_service)
):
    await members.require_fleet_member(fleet_id, user.user_id)
    return await members.get_member(member_id, fleet_id)


@router.patch("/{fleet_id}/members/{member_id}", response_model=FleetMember)
async def update_member(
    fleet_id: str,
    member_id: str,
    data: FleetMemberUpdate,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    members: FleetMembersService = Depends(get_members_service)
):
    """Change role, status or per-driver rate/grace overrides. Fleet admins only."""
    await members.require_fleet_admin(fleet_id, user.user_id)
    return await members.update_member(fleet_id, member_id, data)


@router.delete("/{fleet_id}/members/{member_id}", response_model=FleetMember)
async def remove_member(
    fleet_id: str,
    member_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    members: FleetMembersService = Depends(get_members_service)
):
    await members.require_fleet_admin(fleet_id, user.user_id)
    return await members.remove_member(fleet_id, member_id)
