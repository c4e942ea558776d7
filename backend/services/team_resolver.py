"""
Team resolution service.

Determines the single team a user belongs to. Ownership (``teams.owner_id``)
is checked before membership rows; when neither exists a default team is
provisioned with the user as owner.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.team import (
    MemberMembership,
    OwnerMembership,
    ResolvedTeam,
    TeamRole,
    derive_permissions,
)
from core.errors import TeamUnavailable
from infrastructure.config.settings import settings
from infrastructure.database.models.team import Team, TeamMember

logger = logging.getLogger(__name__)


def owner_resolution(team: Team, provisioned: bool = False) -> ResolvedTeam:
    return ResolvedTeam(
        team_id=team.id,
        team_name=team.name,
        owner_id=team.owner_id,
        membership=OwnerMembership(team_id=team.id, user_id=team.owner_id),
        provisioned=provisioned,
    )


def member_resolution(team: Team, member: TeamMember) -> ResolvedTeam:
    return ResolvedTeam(
        team_id=team.id,
        team_name=team.name,
        owner_id=team.owner_id,
        membership=MemberMembership(
            team_id=team.id,
            user_id=member.user_id,
            member_id=member.id,
            role=TeamRole(member.role),
            permissions=derive_permissions(member.role, member.permission_flags()),
        ),
    )


class TeamResolver:
    """Resolves, and if necessary provisions, the team of a user."""

    def __init__(self, db: AsyncSession, default_team_name: Optional[str] = None):
        """
        Initialize team resolver.

        Args:
            db: Async database session
            default_team_name: Name for auto-provisioned teams
        """
        self.db = db
        self.default_team_name = default_team_name or settings.default_team_name

    async def get_owned_team(self, user_id: str) -> Optional[Team]:
        result = await self.db.execute(select(Team).where(Team.owner_id == user_id))
        return result.scalar_one_or_none()

    async def get_membership(self, user_id: str) -> Optional[tuple[Team, TeamMember]]:
        result = await self.db.execute(
            select(Team, TeamMember)
            .join(TeamMember, TeamMember.team_id == Team.id)
            .where(TeamMember.user_id == user_id)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def try_resolve_team(self, user_id: str) -> Optional[ResolvedTeam]:
        """
        Resolve the user's team without provisioning one.

        Returns:
            ResolvedTeam, or None when the user has no team
        """
        team = await self.get_owned_team(user_id)
        if team is not None:
            return owner_resolution(team)

        membership = await self.get_membership(user_id)
        if membership is not None:
            return member_resolution(*membership)

        return None

    async def resolve_team(self, user_id: str, team_name: Optional[str] = None) -> ResolvedTeam:
        """
        Resolve the user's team, provisioning a default one if needed.

        Args:
            user_id: User to resolve
            team_name: Name to use if a team has to be created

        Returns:
            ResolvedTeam with the user as owner or member

        Raises:
            TeamUnavailable: If a team could not be provisioned
        """
        resolved = await self.try_resolve_team(user_id)
        if resolved is not None:
            return resolved
        return await self._provision_team(user_id, team_name)

    async def _provision_team(self, user_id: str, team_name: Optional[str]) -> ResolvedTeam:
        name = (team_name or "").strip() or self.default_team_name
        team = Team(name=name, owner_id=user_id)
        self.db.add(team)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request created the team first; use theirs
            await self.db.rollback()
            logger.info("Team provisioning conflict for user %s, re-resolving", user_id)
            resolved = await self.try_resolve_team(user_id)
            if resolved is not None:
                return resolved
            logger.error("Team provisioning failed for user %s and no team exists", user_id)
            raise TeamUnavailable("Could not provision a team for this user")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Team provisioning failed for user %s: %s", user_id, e)
            raise TeamUnavailable("Could not provision a team for this user") from e

        await self.db.refresh(team)
        logger.info("Auto-provisioned team %s for user %s", team.id, user_id)
        return owner_resolution(team, provisioned=True)
