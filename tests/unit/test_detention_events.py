"""
Tests for the detention event lifecycle.
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from app.core.exceptions import (
    AuthorizationError,
    DetentionEventNotFoundError,
    InvalidStateTransitionError,
    ValidationError,
)
from app.models.detention_event import (
    DetentionEventCreate, DetentionEventStatus, DetentionEventUpdate
)
from app.services.detention_events_service import can_transition
from tests.utils.factories import DetentionEventFactory, InvoiceFactory, FleetMemberFactory

USER = "test-user-123"


class TestStartEvent:
    """Tests for arrival capture"""

    @pytest.mark.asyncio
    async def test_start_with_defaults(self, events_service, now):
        """A solo driver gets the configured rate and grace."""
        event = await events_service.start_event(USER, DetentionEventCreate(facility_id="fac-1"), now=now)

        assert event.status == DetentionEventStatus.ACTIVE
        assert event.arrival_time == now
        assert event.hourly_rate == Decimal("75.00")
        assert event.grace_period_minutes == 120
        assert event.grace_period_end == now + timedelta(minutes=120)
        assert event.total_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_member_overrides_apply(self, gateway, events_service, now):
        """Per-driver overrides beat the defaults."""
        member = await gateway.insert_member(FleetMemberFactory.create(
            fleet_id="fleet-1", user_id=USER,
            hourly_rate_override=Decimal("90.00"), grace_period_override=60
        ))

        event = await events_service.start_event(USER, DetentionEventCreate(fleet_id="fleet-1"), now=now)

        assert event.hourly_rate == Decimal("90.00")
        assert event.grace_period_minutes == 60
        assert event.fleet_member_id == member.id

    @pytest.mark.asyncio
    async def test_explicit_values_beat_overrides(self, gateway, events_service, now):
        await gateway.insert_member(FleetMemberFactory.create(
            fleet_id="fleet-1", user_id=USER, hourly_rate_override=Decimal("90.00")
        ))

        event = await events_service.start_event(
            USER,
            DetentionEventCreate(fleet_id="fleet-1", hourly_rate=Decimal("100"), grace_period_minutes=0),
            now=now
        )

        assert event.hourly_rate == Decimal("100")
        assert event.grace_period_minutes == 0

    @pytest.mark.asyncio
    async def test_non_member_cannot_log_for_fleet(self, events_service, now):
        with pytest.raises(AuthorizationError):
            await events_service.start_event(USER, DetentionEventCreate(fleet_id="fleet-1"), now=now)

    @pytest.mark.asyncio
    async def test_zero_rate_rejected(self, events_service, now):
        with pytest.raises(ValidationError):
            await events_service.start_event(USER, DetentionEventCreate(hourly_rate=Decimal("0")), now=now)

    @pytest.mark.asyncio
    async def test_negative_grace_rejected(self, events_service, now):
        with pytest.raises(ValidationError):
            await events_service.start_event(USER, DetentionEventCreate(grace_period_minutes=-5), now=now)

    @pytest.mark.asyncio
    async def test_member_id_without_fleet_rejected(self, events_service, now):
        with pytest.raises(ValidationError):
            await events_service.start_event(USER, DetentionEventCreate(fleet_member_id="member-x"), now=now)


class TestEndEvent:
    """Tests for departure capture"""

    @pytest.mark.asyncio
    async def test_end_computes_amount(self, events_service, now):
        """150 minutes after arrival bills $37.50 at the default rate and grace."""
        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)

        completed = await events_service.end_event(
            USER, event.id, departure_time=now + timedelta(minutes=150)
        )

        assert completed.status == DetentionEventStatus.COMPLETED
        assert completed.total_elapsed_minutes == 150
        assert completed.detention_minutes == 30
        assert completed.total_amount == Decimal("37.50")

    @pytest.mark.asyncio
    async def test_end_twice_fails(self, events_service, now):
        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)
        await events_service.end_event(USER, event.id, now=now + timedelta(hours=3))

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await events_service.end_event(USER, event.id, now=now + timedelta(hours=4))

        assert exc_info.value.current == "completed"

    @pytest.mark.asyncio
    async def test_departure_before_arrival_clamped(self, events_service, now):
        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)

        completed = await events_service.end_event(
            USER, event.id, departure_time=now - timedelta(minutes=10)
        )

        assert completed.total_elapsed_minutes == 0
        assert completed.total_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_other_user_cannot_end(self, events_service, now):
        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)

        with pytest.raises(AuthorizationError):
            await events_service.end_event("someone-else", event.id, now=now)

    @pytest.mark.asyncio
    async def test_unknown_event(self, events_service, now):
        with pytest.raises(DetentionEventNotFoundError):
            await events_service.end_event(USER, "missing", now=now)


class TestEventAccess:
    """Tests for event reads"""

    @pytest.mark.asyncio
    async def test_fleet_admin_can_read_fleet_event(self, gateway, events_service, fleet_admin):
        event = await gateway.insert_event(DetentionEventFactory.create(fleet_id="fleet-1"))

        found = await events_service.get_event(fleet_admin.user_id, event.id)

        assert found.id == event.id

    @pytest.mark.asyncio
    async def test_fleet_driver_cannot_read_colleague_event(self, gateway, events_service, fleet_driver):
        event = await gateway.insert_event(DetentionEventFactory.create(user_id="colleague", fleet_id="fleet-1"))

        with pytest.raises(AuthorizationError):
            await events_service.get_event(fleet_driver.user_id, event.id)

    @pytest.mark.asyncio
    async def test_active_event(self, events_service, now):
        assert await events_service.get_active_event(USER) is None

        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)

        active = await events_service.get_active_event(USER)
        assert active.id == event.id

    @pytest.mark.asyncio
    async def test_list_requires_scope(self, events_service):
        with pytest.raises(ValidationError):
            await events_service.list_events()

    @pytest.mark.asyncio
    async def test_list_by_facility(self, gateway, events_service):
        await gateway.insert_event(DetentionEventFactory.create(user_id=USER, facility_id="dock-7"))
        await gateway.insert_event(DetentionEventFactory.create(user_id=USER, facility_id="dock-9"))
        await gateway.insert_event(DetentionEventFactory.create(user_id="someone-else", facility_id="dock-7"))

        events = await events_service.list_events(user_id=USER, facility_id="dock-7")

        assert [e.facility_id for e in events] == ["dock-7"]

    @pytest.mark.asyncio
    async def test_live_calculation(self, events_service, now):
        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)

        early = await events_service.get_live_calculation(USER, event.id, now=now + timedelta(minutes=30))
        late = await events_service.get_live_calculation(USER, event.id, now=now + timedelta(minutes=150))

        assert early.is_in_grace_period is True
        assert early.calculation.total_amount == Decimal("0.00")
        assert late.is_in_grace_period is False
        assert late.calculation.total_amount == Decimal("37.50")


class TestCancelEvent:
    """Tests for event cancellation"""

    @pytest.mark.asyncio
    async def test_cancel_active_sets_departure(self, events_service, now):
        event = await events_service.start_event(USER, DetentionEventCreate(), now=now)

        cancelled = await events_service.cancel_event(USER, event.id, now=now + timedelta(minutes=45))

        assert cancelled.status == DetentionEventStatus.CANCELLED
        assert cancelled.departure_time == now + timedelta(minutes=45)

    @pytest.mark.asyncio
    async def test_cancel_completed(self, gateway, events_service, now):
        event = await gateway.insert_event(DetentionEventFactory.create(user_id=USER))

        cancelled = await events_service.cancel_event(USER, event.id, now=now)

        assert cancelled.status == DetentionEventStatus.CANCELLED
        assert cancelled.total_amount == event.total_amount

    @pytest.mark.asyncio
    async def test_cannot_cancel_invoiced(self, gateway, events_service, now):
        event = await gateway.insert_event(
            DetentionEventFactory.create(user_id=USER, status=DetentionEventStatus.INVOICED)
        )

        with pytest.raises(InvalidStateTransitionError):
            await events_service.cancel_event(USER, event.id, now=now)

    @pytest.mark.asyncio
    async def test_cannot_cancel_event_referenced_by_invoice(self, gateway, events_service, now):
        event = await gateway.insert_event(DetentionEventFactory.create(user_id=USER))
        await gateway.insert_invoice(InvoiceFactory.create(owner_id=USER, detention_event_ids=[event.id]))

        with pytest.raises(InvalidStateTransitionError):
            await events_service.cancel_event(USER, event.id, now=now)


class TestUpdateEvent:
    """Tests for event edits"""

    @pytest.mark.asyncio
    async def test_rate_change_recomputes_completed(self, gateway, events_service, now):
        event = await gateway.insert_event(DetentionEventFactory.create(user_id=USER))

        updated = await events_service.update_event(
            USER, event.id, DetentionEventUpdate(hourly_rate=Decimal("120")), now=now
        )

        assert updated.hourly_rate == Decimal("120")
        assert updated.total_amount == Decimal("60.00")

    @pytest.mark.asyncio
    async def test_notes_only(self, gateway, events_service, now):
        event = await gateway.insert_event(DetentionEventFactory.create(user_id=USER))

        updated = await events_service.update_event(
            USER, event.id, DetentionEventUpdate(notes="Dock 4 was blocked"), now=now
        )

        assert updated.notes == "Dock 4 was blocked"
        assert updated.total_amount == event.total_amount

    @pytest.mark.asyncio
    async def test_invoiced_event_not_editable(self, gateway, events_service, now):
        event = await gateway.insert_event(
            DetentionEventFactory.create(user_id=USER, status=DetentionEventStatus.INVOICED)
        )

        with pytest.raises(InvalidStateTransitionError):
            await events_service.update_event(USER, event.id, DetentionEventUpdate(notes="x"), now=now)

    @pytest.mark.asyncio
    async def test_empty_update_rejected(self, gateway, events_service, now):
        event = await gateway.insert_event(DetentionEventFactory.create(user_id=USER))

        with pytest.raises(ValidationError):
            await events_service.update_event(USER, event.id, DetentionEventUpdate(), now=now)


class TestTransitions:
    """Tests for the event status table"""

    def test_table(self):
        S = DetentionEventStatus
        assert can_transition(S.ACTIVE, S.COMPLETED)
        assert can_transition(S.COMPLETED, S.INVOICED)
        assert can_transition(S.INVOICED, S.PAID)
        assert can_transition(S.INVOICED, S.COMPLETED)
        assert not can_transition(S.ACTIVE, S.INVOICED)
        assert not can_transition(S.CANCELLED, S.ACTIVE)

    @pytest.mark.asyncio
    async def test_paid_is_terminal(self, gateway, events_service, now):
        event = await gateway.insert_event(
            DetentionEventFactory.create(user_id=USER, status=DetentionEventStatus.PAID)
        )

        with pytest.raises(InvalidStateTransitionError):
            await events_service.revert_to_completed(event, now)
        with pytest.raises(InvalidStateTransitionError):
            await events_service.mark_paid(event, now)

    @pytest.mark.asyncio
    async def test_lost_race_reports_winning_state(self, gateway, events_service, now):
        """A stale copy loses the conditional write and reports what happened instead."""
        event = await gateway.insert_event(DetentionEventFactory.create(user_id=USER))
        await events_service.cancel_event(USER, event.id, now=now)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await events_service.mark_invoiced(event, now)

        assert exc_info.value.current == "cancelled"
        stored = await gateway.get_event(event.id)
        assert stored.status == DetentionEventStatus.CANCELLED
