import logging
from decimal import Decimal
from typing import Optional, List

from app.core.exceptions import (
    AuthorizationError, FleetMemberNotFoundError, ValidationError
)
from app.models.fleet_member import FleetMember, FleetMemberUpdate, FleetRole, MemberStatus
from app.persistence.base import PersistenceGateway

logger = logging.getLogger(__name__)


def effective_hourly_rate(member: Optional[FleetMember], default: Decimal) -> Decimal:
    """Per-driver override wins over the fleet/default rate"""
    if member is not None and member.hourly_rate_override is not None:
        return member.hourly_rate_override
    return default


def effective_grace_period(member: Optional[FleetMember], default: int) -> int:
    if member is not None and member.grace_period_override is not None:
        return member.grace_period_override
    return default


class FleetMembersService:
    """Fleet membership queries, updates and role checks"""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    async def list_members(self, fleet_id: str) -> List[FleetMember]:
        return await self.gateway.list_members(fleet_id)

    async def get_member(self, member_id: str, fleet_id: Optional[str] = None) -> FleetMember:
        member = await self.gateway.get_member(member_id)
        if not member or (fleet_id is not None and member.fleet_id != fleet_id):
            raise FleetMemberNotFoundError(member_id)
        return member

    async def get_active_membership(self, fleet_id: str, user_id: str) -> Optional[FleetMember]:
        member = await self.gateway.get_member_by_user(fleet_id, user_id)
        if member and member.status == MemberStatus.ACTIVE:
            return member
        return None

    async def require_fleet_member(self, fleet_id: str, user_id: str) -> FleetMember:
        member = await self.get_active_membership(fleet_id, user_id)
        if not member:
            raise AuthorizationError(
                "You are not an active member of this fleet",
                {"fleet_id": fleet_id}
            )
        return member

    async def require_fleet_admin(self, fleet_id: str, user_id: str) -> FleetMember:
        """Raise AuthorizationError unless user_id is an active admin of fleet_id"""
        member = await self.get_active_membership(fleet_id, user_id)
        if not member or member.role != FleetRole.ADMIN:
            raise AuthorizationError(
                "Fleet admin access required",
                {"fleet_id": fleet_id}
            )
        return member

    async def update_member(
        self,
        fleet_id: str,
        member_id: str,
        data: FleetMemberUpdate
    ) -> FleetMember:
        member = await self.get_member(member_id, fleet_id)

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")

        if member.role == FleetRole.ADMIN and member.status == MemberStatus.ACTIVE:
            demoted = changes.get("role", member.role) != FleetRole.ADMIN
            deactivated = changes.get("status", member.status) != MemberStatus.ACTIVE
            if (demoted or deactivated) and await self._is_last_admin(member):
                raise ValidationError("A fleet must keep at least one active admin")

        updated = await self.gateway.update_member(member_id, changes)
        if not updated:
            raise FleetMemberNotFoundError(member_id)

        logger.info(f"Fleet member {member_id} updated: {', '.join(changes)}")
        return updated

    async def remove_member(self, fleet_id: str, member_id: str) -> FleetMember:
        return await self.update_member(
            fleet_id, member_id, FleetMemberUpdate(status=MemberStatus.REMOVED)
        )

    async def _is_last_admin(self, member: FleetMember) -> bool:
        admins = [
            m for m in await self.gateway.list_members(member.fleet_id)
            if m.role == FleetRole.ADMIN and m.status == MemberStatus.ACTIVE
        ]
        return len(admins) == 1 and admins[0].id == member.id
