"""
Team member permission management.

The owner's capabilities are implicit and immutable; every write to a
member row goes through derive_permissions so that stored flags always
satisfy ``can_manage_billing => can_view_billing``.
"""

import logging
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.team import (
    PERMISSION_FLAGS,
    PermissionSet,
    ResolvedTeam,
    TeamRole,
    derive_permissions,
)
from core.errors import (
    ImmutableOwnerPermissions,
    MemberNotFound,
    PermissionDenied,
    TeamNotFound,
)
from infrastructure.database.models.team import Team, TeamMember

logger = logging.getLogger(__name__)


def ensure_permission(resolved: ResolvedTeam, permission: str) -> None:
    """
    Raise unless the resolved membership grants ``permission``.

    Raises:
        PermissionDenied: If the permission is missing
    """
    if resolved.permissions.allows(permission):
        return
    logger.info(
        "Denied %s for user %s in team %s",
        permission,
        resolved.membership.user_id,
        resolved.team_id,
        extra={
            "denial_reason": "forbidden",
            "user_id": resolved.membership.user_id,
            "team_id": resolved.team_id,
        },
    )
    raise PermissionDenied(permission=permission)


def apply_permissions(member: TeamMember, permissions: PermissionSet) -> None:
    """Copy a permission set onto the stored member row."""
    for name in PERMISSION_FLAGS:
        setattr(member, name, getattr(permissions, name))


class PermissionService:
    """Updates roles and permissions of team members."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_members(self, team_id: str) -> list[TeamMember]:
        result = await self.db.execute(
            select(TeamMember)
            .where(TeamMember.team_id == team_id)
            .order_by(TeamMember.joined_at)
        )
        return list(result.scalars().all())

    async def _get_target(self, actor: ResolvedTeam, user_id: str) -> TeamMember:
        if user_id == actor.owner_id:
            raise ImmutableOwnerPermissions()
        result = await self.db.execute(
            select(TeamMember).where(
                TeamMember.team_id == actor.team_id,
                TeamMember.user_id == user_id,
            )
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise MemberNotFound(f"User {user_id} is not a member of this team")
        if member.role == TeamRole.OWNER.value:
            raise ImmutableOwnerPermissions()
        return member

    async def update_member_permissions(
        self,
        actor: ResolvedTeam,
        user_id: str,
        changes: Mapping[str, Optional[bool]],
    ) -> TeamMember:
        """
        Apply a partial permission update to a member.

        Args:
            actor: Resolved team of the acting user
            user_id: Member whose permissions change
            changes: Flags to set; ``None`` leaves a flag unchanged

        Returns:
            Updated member row

        Raises:
            PermissionDenied: Actor lacks can_manage_team
            ImmutableOwnerPermissions: Target is the team owner
            MemberNotFound: Target is not in the actor's team
        """
        ensure_permission(actor, "can_manage_team")
        member = await self._get_target(actor, user_id)

        current = derive_permissions(member.role, member.permission_flags())
        updated = current.merge(changes)
        apply_permissions(member, updated)

        await self.db.commit()
        await self.db.refresh(member)
        logger.info(
            "Permissions updated for member %s in team %s by %s",
            user_id, actor.team_id, actor.membership.user_id,
        )
        return member

    async def update_member_role(
        self,
        actor: ResolvedTeam,
        user_id: str,
        role: TeamRole,
    ) -> TeamMember:
        """Change a member's role and reset permissions to that role's defaults."""
        ensure_permission(actor, "can_manage_team")
        role = TeamRole(role)
        if role == TeamRole.OWNER:
            raise PermissionDenied("Ownership cannot be assigned through a role change")
        member = await self._get_target(actor, user_id)

        member.role = role.value
        apply_permissions(member, derive_permissions(role))

        await self.db.commit()
        await self.db.refresh(member)
        logger.info("Member %s in team %s is now %s", user_id, actor.team_id, role.value)
        return member

    async def remove_member(self, actor: ResolvedTeam, user_id: str) -> None:
        """Remove a member; members may also remove themselves."""
        if user_id != actor.membership.user_id:
            ensure_permission(actor, "can_manage_team")
        if user_id == actor.owner_id:
            raise PermissionDenied("The team owner cannot be removed")
        member = await self._get_target(actor, user_id)

        await self.db.delete(member)
        await self.db.commit()
        logger.info("Member %s removed from team %s", user_id, actor.team_id)

    async def rename_team(self, actor: ResolvedTeam, name: str) -> Team:
        """Rename the actor's team; requires can_manage_settings."""
        ensure_permission(actor, "can_manage_settings")
        team = await self.db.get(Team, actor.team_id)
        if team is None:
            raise TeamNotFound("Team not found")
        team.name = name.strip()
        await self.db.commit()
        logger.info("Team %s renamed by %s", team.id, actor.membership.user_id)
        return team
