"""
Service for managing fleet invitations
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

from app.core.exceptions import (
    AlreadyFleetMemberError,
    AuthorizationError,
    DuplicateKeyError,
    IdentifierExhaustedError,
    InvitationAlreadyAcceptedError,
    InvitationAlreadyPendingError,
    InvitationCancelledError,
    InvitationExpiredError,
    InvitationNotFoundError,
)
from app.models.fleet_member import FleetMember, FleetRole, MemberStatus
from app.models.invitation import FleetInvitation, InvitationLookup
from app.persistence.base import PersistenceGateway
from app.services.fleet_members_service import FleetMembersService
from app.templates.invitation_template import get_invitation_email_body, get_invitation_subject

logger = logging.getLogger(__name__)

# No 0/O or 1/I, codes get read aloud and typed on phones
INVITATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_invitation_code(length: int = 8) -> str:
    return ''.join(secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def is_open(invitation: FleetInvitation) -> bool:
    """Neither accepted nor cancelled"""
    return invitation.accepted_at is None and invitation.cancelled_at is None


def is_expired(invitation: FleetInvitation, now: datetime) -> bool:
    return now > invitation.expires_at


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvitationsService:
    """Issue, resend, cancel and single-use accept of fleet invitation codes"""

    def __init__(
        self,
        gateway: PersistenceGateway,
        members: FleetMembersService,
        mailer=None,
        expiry_days: int = 7,
        code_length: int = 8,
        max_code_attempts: int = 10,
        frontend_url: str = ""
    ):
        self.gateway = gateway
        self.members = members
        self.mailer = mailer
        self.expiry_days = expiry_days
        self.code_length = code_length
        self.max_code_attempts = max_code_attempts
        self.frontend_url = frontend_url

    async def create(
        self,
        fleet_id: str,
        email: str,
        role: FleetRole,
        invited_by: str,
        expires_in_days: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> FleetInvitation:
        """
        Invite someone to join a fleet

        Args:
            fleet_id: ID of the fleet
            email: Email of the person to invite
            role: Role to assign (admin, driver)
            invited_by: User ID of the admin sending the invitation
            expires_in_days: Overrides the configured expiry window
            now: Issue time

        Returns:
            The stored invitation

        Raises:
            AuthorizationError: Inviter is not an active fleet admin
            InvitationAlreadyPendingError: An open, unexpired invitation exists for this email
            IdentifierExhaustedError: No free code after bounded retries
        """
        now = now or _utcnow()
        await self.members.require_fleet_admin(fleet_id, invited_by)

        email = email.strip().lower()
        for existing in await self.gateway.list_invitations(fleet_id=fleet_id, email=email):
            if is_open(existing) and not is_expired(existing, now):
                raise InvitationAlreadyPendingError(email)

        days = expires_in_days or self.expiry_days
        invitation = None
        for attempt in range(1, self.max_code_attempts + 1):
            candidate = FleetInvitation(
                id=str(uuid.uuid4()),
                fleet_id=fleet_id,
                email=email,
                role=role,
                invited_by=invited_by,
                invitation_code=generate_invitation_code(self.code_length),
                expires_at=now + timedelta(days=days),
                created_at=now
            )
            try:
                invitation = await self.gateway.insert_invitation(candidate)
                break
            except DuplicateKeyError:
                logger.warning(f"Invitation code collision (attempt {attempt}/{self.max_code_attempts})")

        if invitation is None:
            raise IdentifierExhaustedError("invitation code", self.max_code_attempts)

        logger.info(f"Invitation {invitation.id} created: {email} invited to fleet {fleet_id} as {role.value}")
        await self._deliver(invitation)
        return invitation

    async def resend(
        self,
        fleet_id: str,
        invitation_id: str,
        user_id: str,
        expires_in_days: Optional[int] = None,
        new_code: bool = False,
        now: Optional[datetime] = None
    ) -> FleetInvitation:
        """
        Extend the expiry of an open invitation and email it again.
        The code only changes when new_code is requested.
        """
        now = now or _utcnow()
        await self.members.require_fleet_admin(fleet_id, user_id)
        invitation = await self._get_open(fleet_id, invitation_id)

        changes = {"expires_at": now + timedelta(days=expires_in_days or self.expiry_days)}

        updated = None
        for attempt in range(1, self.max_code_attempts + 1):
            if new_code:
                changes["invitation_code"] = generate_invitation_code(self.code_length)
            try:
                updated = await self.gateway.update_open_invitation(invitation.id, changes)
                break
            except DuplicateKeyError:
                logger.warning(f"Invitation code collision on resend (attempt {attempt}/{self.max_code_attempts})")
        else:
            raise IdentifierExhaustedError("invitation code", self.max_code_attempts)

        if updated is None:
            await self._raise_closed(invitation.id)

        logger.info(f"Invitation {invitation.id} resent to {invitation.email}{' with a new code' if new_code else ''}")
        await self._deliver(updated)
        return updated

    async def cancel(
        self,
        fleet_id: str,
        invitation_id: str,
        user_id: str,
        now: Optional[datetime] = None
    ) -> FleetInvitation:
        now = now or _utcnow()
        await self.members.require_fleet_admin(fleet_id, user_id)
        invitation = await self._get_open(fleet_id, invitation_id)

        cancelled = await self.gateway.update_open_invitation(invitation.id, {"cancelled_at": now})
        if cancelled is None:
            await self._raise_closed(invitation.id)

        logger.info(f"Invitation {invitation.id} for {invitation.email} cancelled by {user_id}")
        return cancelled

    async def accept(
        self,
        code: str,
        user_id: str,
        user_email: str,
        now: Optional[datetime] = None
    ) -> FleetMember:
        """
        Accept a fleet invitation by code.

        Flow:
        1. Find invitation by code (case-insensitive)
        2. Validate it's open, unexpired and addressed to this user
        3. Claim it with a conditional write on accepted_at
        4. Create the membership, or reactivate an old one
        5. If step 4 fails, release the claim

        Exactly one of any number of concurrent accepts passes step 3.

        Raises:
            InvitationNotFoundError, InvitationCancelledError,
            InvitationAlreadyAcceptedError, InvitationExpiredError,
            AuthorizationError (email mismatch), AlreadyFleetMemberError
        """
        now = now or _utcnow()
        code = normalize_code(code)

        invitation = await self.gateway.get_invitation_by_code(code)
        if not invitation:
            raise InvitationNotFoundError(code)
        if invitation.cancelled_at:
            raise InvitationCancelledError(invitation.id)
        if invitation.accepted_at:
            raise InvitationAlreadyAcceptedError(invitation.id)
        if is_expired(invitation, now):
            raise InvitationExpiredError(invitation.id)
        if (user_email or "").strip().lower() != invitation.email:
            raise AuthorizationError(
                "This invitation was sent to a different email address",
                {"invitation_id": invitation.id}
            )

        existing = await self.gateway.get_member_by_user(invitation.fleet_id, user_id)
        if existing and existing.status == MemberStatus.ACTIVE:
            raise AlreadyFleetMemberError(invitation.fleet_id, user_id)

        if not await self.gateway.mark_invitation_accepted(invitation.id, user_id, now):
            await self._raise_closed(invitation.id)

        try:
            member = await self._grant_membership(invitation, existing, user_id, now)
        except Exception as e:
            logger.warning(f"Membership for invitation {invitation.id} failed ({e}), releasing the claim")
            await self.gateway.clear_invitation_acceptance(invitation.id, user_id)
            if isinstance(e, DuplicateKeyError):
                raise AlreadyFleetMemberError(invitation.fleet_id, user_id) from e
            raise

        logger.info(f"Invitation accepted: {invitation.email} joined fleet {invitation.fleet_id} as {invitation.role.value}")
        return member

    async def list_pending(
        self,
        fleet_id: str,
        user_id: str,
        now: Optional[datetime] = None
    ) -> List[FleetInvitation]:
        """Open, unexpired invitations of a fleet"""
        now = now or _utcnow()
        await self.members.require_fleet_admin(fleet_id, user_id)
        return [
            i for i in await self.gateway.list_invitations(fleet_id=fleet_id)
            if is_open(i) and not is_expired(i, now)
        ]

    async def get_by_code(self, code: str, now: Optional[datetime] = None) -> InvitationLookup:
        """Invitation details for whoever holds the code, with its validity"""
        now = now or _utcnow()
        invitation = await self.gateway.get_invitation_by_code(normalize_code(code))
        if not invitation:
            raise InvitationNotFoundError(code)

        reason = None
        if invitation.cancelled_at:
            reason = "cancelled"
        elif invitation.accepted_at:
            reason = "accepted"
        elif is_expired(invitation, now):
            reason = "expired"

        return InvitationLookup(invitation=invitation, is_valid=reason is None, reason=reason)

    # ------------------------------------------------------------------

    async def _get_open(self, fleet_id: str, invitation_id: str) -> FleetInvitation:
        invitation = await self.gateway.get_invitation(invitation_id)
        if not invitation or invitation.fleet_id != fleet_id:
            raise InvitationNotFoundError(invitation_id)
        if invitation.accepted_at:
            raise InvitationAlreadyAcceptedError(invitation.id)
        if invitation.cancelled_at:
            raise InvitationCancelledError(invitation.id)
        return invitation

    async def _raise_closed(self, invitation_id: str):
        """Explain why a conditional write on an open invitation matched nothing"""
        current = await self.gateway.get_invitation(invitation_id)
        if not current:
            raise InvitationNotFoundError(invitation_id)
        if current.cancelled_at:
            raise InvitationCancelledError(invitation_id)
        raise InvitationAlreadyAcceptedError(invitation_id)

    async def _grant_membership(
        self,
        invitation: FleetInvitation,
        existing: Optional[FleetMember],
        user_id: str,
        now: datetime
    ) -> FleetMember:
        if existing:
            member = await self.gateway.update_member(existing.id, {
                "role": invitation.role,
                "status": MemberStatus.ACTIVE,
                "invited_by": invitation.invited_by,
                "invited_at": invitation.created_at,
                "joined_at": now,
            })
            logger.info(f"Fleet member {existing.id} reactivated")
            return member

        return await self.gateway.insert_member(FleetMember(
            id=str(uuid.uuid4()),
            fleet_id=invitation.fleet_id,
            user_id=user_id,
            role=invitation.role,
            status=MemberStatus.ACTIVE,
            invited_by=invitation.invited_by,
            invited_at=invitation.created_at,
            joined_at=now
        ))

    async def _deliver(self, invitation: FleetInvitation):
        """Email the code. Failures are logged; the invitation stays valid and can be resent."""
        if self.mailer is None:
            logger.info(f"Email delivery disabled, invitation {invitation.id} not emailed")
            return

        accept_url = f"{self.frontend_url}/fleet/join?code={invitation.invitation_code}"
        try:
            result = await self.mailer.send_email(
                to_email=invitation.email,
                subject=get_invitation_subject(),
                text_body=get_invitation_email_body(
                    invitee_email=invitation.email,
                    fleet_id=invitation.fleet_id,
                    role=invitation.role.value,
                    invitation_code=invitation.invitation_code,
                    expires_at=invitation.expires_at,
                    accept_url=accept_url
                )
            )
        except Exception as e:
            logger.error(f"Failed to send invitation email to {invitation.email}: {e}")
            return

        if not result.success:
            logger.error(f"Failed to send invitation email to {invitation.email}: {result.error}")
