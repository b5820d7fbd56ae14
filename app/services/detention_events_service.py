"""
Detention event lifecycle.

    active ──depart──> completed ──invoice──> invoiced ──pay──> paid
       │                   │   <──delete draft──┘
       └──cancel──> cancelled <──cancel──┘

Every status change is a conditional write on the status the caller
observed. A lost race surfaces as InvalidStateTransitionError carrying the
state that won, and is never retried here.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any

from app.core.exceptions import (
    AuthorizationError,
    DetentionEventNotFoundError,
    InvalidStateTransitionError,
    ValidationError,
)
from app.models.detention_event import (
    DetentionEvent, DetentionEventCreate, DetentionEventUpdate,
    DetentionEventStatus, LiveDetention
)
from app.models.fleet_member import FleetRole, MemberStatus
from app.persistence.base import PersistenceGateway
from app.services.fleet_members_service import effective_hourly_rate, effective_grace_period
from app.services.time_calculator import (
    calculate_detention, grace_period_end, is_in_grace_period
)

logger = logging.getLogger(__name__)

S = DetentionEventStatus

EVENT_TRANSITIONS = {
    S.ACTIVE: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: {S.INVOICED, S.CANCELLED},
    S.INVOICED: {S.PAID, S.COMPLETED},
    S.PAID: set(),
    S.CANCELLED: set(),
}

EDITABLE_STATUSES = {S.ACTIVE, S.COMPLETED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: DetentionEventStatus, target: DetentionEventStatus) -> bool:
    return target in EVENT_TRANSITIONS.get(current, set())


class DetentionEventsService:
    """Arrival/departure capture and the event status machine"""

    def __init__(
        self,
        gateway: PersistenceGateway,
        default_hourly_rate: Decimal,
        default_grace_period_minutes: int
    ):
        self.gateway = gateway
        self.default_hourly_rate = default_hourly_rate
        self.default_grace_period_minutes = default_grace_period_minutes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_event(self, user_id: str, event_id: str) -> DetentionEvent:
        """Fetch an event the caller owns, or one of their fleet's events if they administer it"""
        event = await self.gateway.get_event(event_id)
        if not event:
            raise DetentionEventNotFoundError(event_id)

        if event.user_id == user_id:
            return event

        if event.fleet_id:
            member = await self.gateway.get_member_by_user(event.fleet_id, user_id)
            if member and member.role == FleetRole.ADMIN and member.status == MemberStatus.ACTIVE:
                return event

        raise AuthorizationError("You don't have access to this detention event")

    async def get_active_event(self, user_id: str) -> Optional[DetentionEvent]:
        events = await self.gateway.list_events(user_id=user_id, status=S.ACTIVE, limit=1)
        return events[0] if events else None

    async def list_events(
        self,
        user_id: Optional[str] = None,
        fleet_id: Optional[str] = None,
        facility_id: Optional[str] = None,
        status: Optional[DetentionEventStatus] = None,
        limit: Optional[int] = None
    ) -> List[DetentionEvent]:
        if user_id is None and fleet_id is None:
            raise ValidationError("Either user_id or fleet_id is required")
        return await self.gateway.list_events(
            user_id=user_id, fleet_id=fleet_id, facility_id=facility_id, status=status, limit=limit
        )

    async def get_live_calculation(
        self,
        user_id: str,
        event_id: str,
        now: Optional[datetime] = None
    ) -> LiveDetention:
        """Running totals; active events are measured against now"""
        now = now or _utcnow()
        event = await self.get_event(user_id, event_id)

        as_of = event.departure_time or now
        calculation = calculate_detention(
            event.arrival_time, as_of, event.grace_period_minutes, event.hourly_rate
        )
        if calculation.clock_skew:
            logger.warning(f"Event {event_id}: arrival is after {as_of.isoformat()}, elapsed clamped to 0")

        return LiveDetention(
            event_id=event.id,
            status=event.status,
            as_of=as_of,
            is_in_grace_period=is_in_grace_period(
                event.arrival_time, as_of, event.grace_period_minutes
            ),
            calculation=calculation
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_event(
        self,
        user_id: str,
        data: DetentionEventCreate,
        now: Optional[datetime] = None
    ) -> DetentionEvent:
        """Create an active event on arrival"""
        now = now or _utcnow()

        member = None
        if data.fleet_id:
            member = await self.gateway.get_member_by_user(data.fleet_id, user_id)
            if not member or member.status != MemberStatus.ACTIVE:
                raise AuthorizationError(
                    "You are not an active member of this fleet",
                    {"fleet_id": data.fleet_id}
                )
            if data.fleet_member_id and data.fleet_member_id != member.id:
                raise ValidationError("fleet_member_id does not match your membership")
        elif data.fleet_member_id:
            raise ValidationError("fleet_member_id requires fleet_id")

        hourly_rate = data.hourly_rate
        if hourly_rate is None:
            hourly_rate = effective_hourly_rate(member, self.default_hourly_rate)
        grace = data.grace_period_minutes
        if grace is None:
            grace = effective_grace_period(member, self.default_grace_period_minutes)

        self._validate_rate(hourly_rate)
        if grace < 0:
            raise ValidationError(
                "Grace period cannot be negative",
                {"grace_period_minutes": grace}
            )

        arrival_time = data.arrival_time or now
        event = DetentionEvent(
            id=str(uuid.uuid4()),
            user_id=user_id,
            facility_id=data.facility_id,
            fleet_id=data.fleet_id,
            fleet_member_id=member.id if member else None,
            load_reference=data.load_reference,
            event_type=data.event_type,
            notes=data.notes,
            arrival_time=arrival_time,
            grace_period_minutes=grace,
            grace_period_end=grace_period_end(arrival_time, grace),
            hourly_rate=hourly_rate,
            status=S.ACTIVE,
            created_at=now,
            updated_at=now
        )

        created = await self.gateway.insert_event(event)
        logger.info(f"Detention event {created.id} started by {user_id} (rate {hourly_rate}, grace {grace}m)")
        return created

    async def end_event(
        self,
        user_id: str,
        event_id: str,
        departure_time: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> DetentionEvent:
        """Capture departure and freeze the billed amount"""
        now = now or _utcnow()
        event = await self.get_event(user_id, event_id)
        self._check_transition(event, S.COMPLETED, "only active events can be ended")

        departure = departure_time or now
        calculation = calculate_detention(
            event.arrival_time, departure, event.grace_period_minutes, event.hourly_rate
        )
        if calculation.clock_skew:
            logger.warning(
                f"Event {event_id}: departure {departure.isoformat()} precedes arrival "
                f"{event.arrival_time.isoformat()}, elapsed clamped to 0"
            )

        completed = await self._apply(event, S.COMPLETED, "event is no longer active", {
            "departure_time": departure,
            "total_elapsed_minutes": calculation.total_elapsed_minutes,
            "detention_minutes": calculation.detention_minutes,
            "total_amount": calculation.total_amount,
            "updated_at": now,
        })
        logger.info(
            f"Detention event {event_id} completed: {calculation.detention_minutes} billable minutes, "
            f"${calculation.total_amount}"
        )
        return completed

    async def cancel_event(
        self,
        user_id: str,
        event_id: str,
        now: Optional[datetime] = None
    ) -> DetentionEvent:
        now = now or _utcnow()
        event = await self.get_event(user_id, event_id)
        self._check_transition(event, S.CANCELLED, "only active or completed events can be cancelled")

        if await self.gateway.list_invoices_for_event(event_id):
            raise InvalidStateTransitionError(
                "detention event", event_id, event.status, S.CANCELLED,
                "event is referenced by an invoice"
            )

        changes: Dict[str, Any] = {"updated_at": now}
        if event.departure_time is None:
            calculation = calculate_detention(
                event.arrival_time, now, event.grace_period_minutes, event.hourly_rate
            )
            changes.update({
                "departure_time": now,
                "total_elapsed_minutes": calculation.total_elapsed_minutes,
                "detention_minutes": calculation.detention_minutes,
                "total_amount": calculation.total_amount,
            })

        cancelled = await self._apply(event, S.CANCELLED, "event changed while cancelling", changes)
        logger.info(f"Detention event {event_id} cancelled (was {event.status.value})")
        return cancelled

    async def update_event(
        self,
        user_id: str,
        event_id: str,
        data: DetentionEventUpdate,
        now: Optional[datetime] = None
    ) -> DetentionEvent:
        """Edit descriptive fields; a rate change on a completed event recomputes its amount"""
        now = now or _utcnow()
        event = await self.get_event(user_id, event_id)

        if event.status not in EDITABLE_STATUSES:
            raise InvalidStateTransitionError(
                "detention event", event_id, event.status, event.status,
                "only active or completed events can be edited"
            )

        changes = data.model_dump(exclude_unset=True)
        if changes.get("hourly_rate") is None:
            changes.pop("hourly_rate", None)
        else:
            self._validate_rate(changes["hourly_rate"])

        if not changes:
            raise ValidationError("No fields to update")

        if "hourly_rate" in changes and event.status == S.COMPLETED:
            calculation = calculate_detention(
                event.arrival_time, event.departure_time,
                event.grace_period_minutes, changes["hourly_rate"]
            )
            changes.update({
                "total_elapsed_minutes": calculation.total_elapsed_minutes,
                "detention_minutes": calculation.detention_minutes,
                "total_amount": calculation.total_amount,
            })

        changes["updated_at"] = now
        updated = await self.gateway.update_event(event_id, event.status, changes)
        if not updated:
            await self._raise_lost_race(event, event.status, "event changed while editing")

        logger.info(f"Detention event {event_id} updated")
        return updated

    # ------------------------------------------------------------------
    # Transitions driven by the invoice lifecycle
    # ------------------------------------------------------------------

    async def transition(
        self,
        event: DetentionEvent,
        target: DetentionEventStatus,
        guard: str,
        now: Optional[datetime] = None
    ) -> DetentionEvent:
        """Move an event to target if the table allows it and nobody moved it first"""
        self._check_transition(event, target, guard)
        return await self._apply(event, target, guard, {"updated_at": now or _utcnow()})

    async def mark_invoiced(self, event: DetentionEvent, now: Optional[datetime] = None) -> DetentionEvent:
        return await self.transition(event, S.INVOICED, "only completed events can be invoiced", now)

    async def mark_paid(self, event: DetentionEvent, now: Optional[datetime] = None) -> DetentionEvent:
        return await self.transition(event, S.PAID, "only invoiced events can be paid", now)

    async def revert_to_completed(self, event: DetentionEvent, now: Optional[datetime] = None) -> DetentionEvent:
        return await self.transition(
            event, S.COMPLETED, "only invoiced events return to completed", now
        )

    # ------------------------------------------------------------------

    def _check_transition(self, event: DetentionEvent, target: DetentionEventStatus, guard: str):
        if not can_transition(event.status, target):
            raise InvalidStateTransitionError("detention event", event.id, event.status, target, guard)

    async def _apply(
        self,
        event: DetentionEvent,
        target: DetentionEventStatus,
        guard: str,
        changes: Dict[str, Any]
    ) -> DetentionEvent:
        updated = await self.gateway.update_event(event.id, event.status, {**changes, "status": target})
        if not updated:
            await self._raise_lost_race(event, target, guard)
        logger.debug(f"Event {event.id}: {event.status.value} -> {target.value}")
        return updated

    async def _raise_lost_race(self, event: DetentionEvent, target: DetentionEventStatus, guard: str):
        current = await self.gateway.get_event(event.id)
        if not current:
            raise DetentionEventNotFoundError(event.id)
        raise InvalidStateTransitionError("detention event", event.id, current.status, target, guard)

    @staticmethod
    def _validate_rate(hourly_rate: Decimal):
        if hourly_rate is None or Decimal(str(hourly_rate)) <= 0:
            raise ValidationError(
                "Hourly rate must be greater than zero",
                {"hourly_rate": str(hourly_rate)}
            )
