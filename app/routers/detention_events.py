from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from app.core.dependencies import (
    get_authenticated_user, AuthenticatedUser,
    get_events_service, get_members_service
)
from app.models.detention_event import (
    DetentionEvent, DetentionEventCreate, DetentionEventEnd, DetentionEventUpdate,
    DetentionEventStatus, LiveDetention
)
from app.services.detention_events_service import DetentionEventsService
from app.services.fleet_members_service import FleetMembersService

router = APIRouter()


@router.post("", response_model=DetentionEvent, status_code=201)
async def start_event(
    data: DetentionEventCreate,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    """
    Start tracking detention on arrival at a facility.

    Rate and grace period default to the driver's fleet overrides, then
    to the configured defaults.
    """
    return await events.start_event(user.user_id, data)


@router.get("", response_model=List[DetentionEvent])
async def list_events(
    status: Optional[DetentionEventStatus] = None,
    fleet_id: Optional[str] = None,
    facility_id: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service),
    members: FleetMembersService = Depends(get_members_service)
):
    """List the caller's events, or a fleet's events for its admins"""
    if fleet_id:
        await members.require_fleet_admin(fleet_id, user.user_id)
        return await events.list_events(
            fleet_id=fleet_id, facility_id=facility_id, status=status, limit=limit
        )
    return await events.list_events(
        user_id=user.user_id, facility_id=facility_id, status=status, limit=limit
    )


@router.get("/active", response_model=Optional[DetentionEvent])
async def get_active_event(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    return await events.get_active_event(user.user_id)


@router.get("/{event_id}", response_model=DetentionEvent)
async def get_event(
    event_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    return await events.get_event(user.user_id, event_id)


@router.get("/{event_id}/live", response_model=LiveDetention)
async def get_live_calculation(
    event_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    """Running timer and amount, measured against the server clock"""
    return await events.get_live_calculation(user.user_id, event_id)


@router.post("/{event_id}/end", response_model=DetentionEvent)
async def end_event(
    event_id: str,
    data: Optional[DetentionEventEnd] = None,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    """Capture departure; the billed amount is frozen from here on"""
    departure_time = data.departure_time if data else None
    return await events.end_event(user.user_id, event_id, departure_time=departure_time)


@router.post("/{event_id}/cancel", response_model=DetentionEvent)
async def cancel_event(
    event_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    return await events.cancel_event(user.user_id, event_id)


@router.patch("/{event_id}", response_model=DetentionEvent)
async def update_event(
    event_id: str,
    data: DetentionEventUpdate,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    events: DetentionEventsService = Depends(get_events_service)
):
    return await events.update_event(user.user_id, event_id, data)
