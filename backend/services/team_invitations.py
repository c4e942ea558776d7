"""
Team invitation service.

Invitations reserve a seat: the member quota counts pending, unexpired
invitations alongside existing members. Accepting is single use. A user who
already belongs to a team is not moved, except that an owned team with no
members, events, invitations or subscription is removed to make way.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entitlement import LimitDimension
from core.domain.team import ResolvedTeam, TeamRole, derive_permissions
from core.errors import (
    InvitationConflict,
    InvitationError,
    InvitationNotFound,
    TeamNotFound,
)
from infrastructure.config.settings import settings
from infrastructure.database.models.base import utcnow
from infrastructure.database.models.event import Event
from infrastructure.database.models.subscription import TeamSubscription
from infrastructure.database.models.team import (
    InvitationStatus,
    Team,
    TeamInvitation,
    TeamMember,
)
from infrastructure.database.models.user import User
from services.entitlements import EntitlementEnforcer
from services.permissions import apply_permissions, ensure_permission
from services.team_resolver import TeamResolver, member_resolution

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedInvitation:
    """Result of invite_member; ``resent`` when an open invitation was re-issued."""

    invitation: TeamInvitation
    resent: bool = False


def invitation_expiry():
    return utcnow() + timedelta(days=settings.invitation_expire_days)


class TeamInvitationService:
    """Creates, accepts, revokes and expires team invitations."""

    def __init__(self, db: AsyncSession, enforcer: Optional[EntitlementEnforcer] = None):
        self.db = db
        self.enforcer = enforcer or EntitlementEnforcer(db)

    async def _find_pending(self, team_id: str, email: str) -> Optional[TeamInvitation]:
        result = await self.db.execute(
            select(TeamInvitation).where(
                TeamInvitation.team_id == team_id,
                TeamInvitation.email == email,
                TeamInvitation.status == InvitationStatus.PENDING.value,
            )
        )
        return result.scalars().first()

    async def _is_in_team(self, team: ResolvedTeam, email: str) -> bool:
        result = await self.db.execute(select(User).where(func.lower(User.email) == email))
        user = result.scalar_one_or_none()
        if user is None:
            return False
        if user.id == team.owner_id:
            return True
        result = await self.db.execute(
            select(TeamMember.id).where(
                TeamMember.team_id == team.team_id,
                TeamMember.user_id == user.id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def _is_unused_team(self, team_id: str) -> bool:
        """True for a team with no members, events, invitations or subscription."""
        for model, column in (
            (TeamMember, TeamMember.team_id),
            (Event, Event.team_id),
            (TeamInvitation, TeamInvitation.team_id),
            (TeamSubscription, TeamSubscription.team_id),
        ):
            result = await self.db.execute(select(func.count(model.id)).where(column == team_id))
            if result.scalar_one():
                return False
        return True

    async def invite_member(
        self,
        actor: ResolvedTeam,
        email: str,
        role: Union[TeamRole, str] = TeamRole.MEMBER,
        permissions: Optional[Mapping[str, Optional[bool]]] = None,
    ) -> IssuedInvitation:
        """
        Invite an email address to the actor's team.

        Args:
            actor: Resolved team of the inviting user
            email: Invitee email (normalized to lower case)
            role: Role granted on acceptance; owner cannot be invited
            permissions: Optional flags overriding the role defaults

        Returns:
            IssuedInvitation

        Raises:
            PermissionDenied: Actor lacks can_invite_members
            InvitationError: Invalid email, role or permissions
            InvitationConflict: Email already belongs to the team
            EntitlementExceeded: Member quota (including pending seats) is full
        """
        ensure_permission(actor, "can_invite_members")

        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise InvitationError("A valid email address is required")
        try:
            role = TeamRole(role)
            granted = derive_permissions(role, permissions)
        except ValueError as e:
            raise InvitationError(str(e)) from e
        if role == TeamRole.OWNER:
            raise InvitationError("Ownership cannot be granted by invitation")

        if await self._is_in_team(actor, email):
            raise InvitationConflict("User is already a member of this team")

        existing = await self._find_pending(actor.team_id, email)
        if existing is not None and not existing.is_expired:
            # Re-issue without taking another seat
            existing.token = secrets.token_urlsafe(32)
            existing.expires_at = invitation_expiry()
            existing.role = role.value
            existing.permissions = granted.to_dict()
            await self.db.commit()
            await self.db.refresh(existing)
            logger.info("Re-issued invitation %s for team %s", existing.id, actor.team_id)
            return IssuedInvitation(existing, resent=True)
        if existing is not None:
            existing.status = InvitationStatus.EXPIRED.value
            await self.db.flush()

        try:
            async with self.db.begin_nested():
                pending = await self.enforcer.count_pending_invitations(actor.team_id)
        except SQLAlchemyError as e:
            logger.warning("Pending invitation count failed for team %s: %s", actor.team_id, e)
            pending = 0
        await self.enforcer.enforce_limit(
            actor.team_id, LimitDimension.TEAM_MEMBERS, reserved=pending
        )

        invitation = TeamInvitation(
            team_id=actor.team_id,
            invited_by=actor.membership.user_id,
            email=email,
            role=role.value,
            permissions=granted.to_dict(),
            status=InvitationStatus.PENDING.value,
            expires_at=invitation_expiry(),
        )
        self.db.add(invitation)
        await self.db.commit()
        await self.db.refresh(invitation)

        logger.info(
            "Invitation %s created for team %s by %s",
            invitation.id, actor.team_id, actor.membership.user_id,
            extra={"team_id": actor.team_id},
        )
        return IssuedInvitation(invitation)

    async def team_name(self, team_id: str) -> str:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise TeamNotFound("Team not found")
        return team.name

    async def get_by_token(self, token: str) -> TeamInvitation:
        result = await self.db.execute(
            select(TeamInvitation).where(TeamInvitation.token == token)
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise InvitationNotFound("Invitation not found")
        return invitation

    async def accept_invitation(self, token: str, user: User) -> ResolvedTeam:
        """
        Accept an invitation and join its team.

        Returns:
            ResolvedTeam for the new membership

        Raises:
            InvitationNotFound: Unknown token
            InvitationError: Expired, used, revoked, or for another email
            InvitationConflict: User belongs to a team or owns one in use
        """
        invitation = await self.get_by_token(token)

        if invitation.status == InvitationStatus.ACCEPTED.value:
            raise InvitationError("Invitation has already been accepted")
        if invitation.status == InvitationStatus.REVOKED.value:
            raise InvitationError("Invitation has been revoked")
        if not invitation.can_accept():
            raise InvitationError("Invitation has expired")
        if user.email.strip().lower() != invitation.email:
            raise InvitationError("This invitation is for a different email address")

        current = await TeamResolver(self.db).try_resolve_team(user.id)
        if current is not None:
            if current.team_id == invitation.team_id:
                raise InvitationConflict("You are already a member of this team")
            if not current.is_owner:
                raise InvitationConflict("You already belong to a team; leave it before accepting")
            if not await self._is_unused_team(current.team_id):
                raise InvitationConflict(
                    "You own a team with members, events, invitations or a subscription; "
                    "only an empty team can be given up to accept an invitation"
                )
            # Auto-provisioned and never used: replace it with the invited team
            await self.db.delete(await self.db.get(Team, current.team_id))
            await self.db.flush()
            logger.info("Removed unused team %s of user %s before accepting", current.team_id, user.id)

        team = await self.db.get(Team, invitation.team_id)
        if team is None:
            raise TeamNotFound("Team not found")

        member = TeamMember(
            team_id=invitation.team_id,
            user_id=user.id,
            role=invitation.role,
            invited_by=invitation.invited_by,
            joined_at=utcnow(),
        )
        apply_permissions(member, derive_permissions(invitation.role, invitation.permissions))
        self.db.add(member)

        invitation.status = InvitationStatus.ACCEPTED.value
        invitation.accepted_at = utcnow()
        invitation.accepted_by_user_id = user.id

        try:
            await self.db.commit()
        except IntegrityError as e:
            # Another request placed this user in a team first
            await self.db.rollback()
            raise InvitationConflict("You already belong to a team") from e

        logger.info("User %s joined team %s via invitation %s", user.id, team.id, invitation.id)
        return member_resolution(team, member)

    async def revoke_invitation(self, actor: ResolvedTeam, invitation_id: str) -> TeamInvitation:
        """Revoke a pending invitation of the actor's team, freeing its seat."""
        ensure_permission(actor, "can_invite_members")
        result = await self.db.execute(
            select(TeamInvitation).where(
                TeamInvitation.id == invitation_id,
                TeamInvitation.team_id == actor.team_id,
            )
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise InvitationNotFound("Invitation not found")
        if not invitation.is_pending:
            raise InvitationError(f"Cannot revoke invitation with status: {invitation.status}")

        invitation.status = InvitationStatus.REVOKED.value
        invitation.revoked_at = utcnow()
        await self.db.commit()
        logger.info("Invitation %s revoked by %s", invitation.id, actor.membership.user_id)
        return invitation

    async def list_pending(self, team_id: str) -> list[TeamInvitation]:
        result = await self.db.execute(
            select(TeamInvitation)
            .where(
                TeamInvitation.team_id == team_id,
                TeamInvitation.status == InvitationStatus.PENDING.value,
                TeamInvitation.expires_at > utcnow(),
            )
            .order_by(TeamInvitation.created_at.desc())
        )
        return list(result.scalars().all())

    async def expire_old_invitations(self) -> int:
        """
        Mark pending invitations past their expiry as expired.

        Intended for a periodic job.

        Returns:
            Number of invitations marked as expired
        """
        result = await self.db.execute(
            select(TeamInvitation).where(
                TeamInvitation.status == InvitationStatus.PENDING.value,
                TeamInvitation.expires_at < utcnow(),
            )
        )
        expired = result.scalars().all()
        for invitation in expired:
            invitation.status = InvitationStatus.EXPIRED.value

        if expired:
            await self.db.commit()
            logger.info("Marked %d team invitations as expired", len(expired))
        return len(expired)
