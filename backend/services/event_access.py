"""
Event access guard.

Personal events (no team) are visible only to their creator. Team events
are visible to the team's owner and to its members; ownership is checked
separately because owners have no membership row.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.access import (
    AccessAllowed,
    AccessDenied,
    AccessNotFound,
    AccessResult,
    DenialReason,
)
from core.errors import CrossTenantAccess, EventNotFound, PermissionDenied
from infrastructure.database.models.event import Event
from infrastructure.database.models.team import Team, TeamMember

logger = logging.getLogger(__name__)


class EventAccessGuard:
    """Decides whether a user may read or write an event."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _is_team_owner(self, team_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(Team.id).where(Team.id == team_id, Team.owner_id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def _is_team_member(self, team_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(TeamMember.id).where(
                TeamMember.team_id == team_id,
                TeamMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def check_access(self, event_id: str, user_id: str) -> AccessResult:
        """
        Check whether ``user_id`` may access ``event_id``.

        Storage errors propagate to the caller; they are never reported as
        a denial.

        Returns:
            AccessAllowed, AccessDenied or AccessNotFound
        """
        event = await self.db.get(Event, event_id)
        if event is None:
            return AccessNotFound(event_id=event_id)

        if event.team_id is None:
            if event.created_by == user_id:
                return AccessAllowed(event=event)
            return self._deny(event, user_id, DenialReason.NOT_CREATOR)

        if await self._is_team_owner(event.team_id, user_id):
            return AccessAllowed(event=event)
        if await self._is_team_member(event.team_id, user_id):
            return AccessAllowed(event=event)
        return self._deny(event, user_id, DenialReason.CROSS_TENANT)

    async def require_access(self, event_id: str, user_id: str) -> Event:
        """
        Like check_access, but raise instead of returning a denial.

        Raises:
            EventNotFound: Event does not exist
            CrossTenantAccess: Event belongs to another team
            PermissionDenied: Personal event of another user
        """
        result = await self.check_access(event_id, user_id)
        if isinstance(result, AccessAllowed):
            return result.event
        if isinstance(result, AccessNotFound):
            raise EventNotFound(f"Event {event_id} not found")
        if result.reason == DenialReason.CROSS_TENANT:
            raise CrossTenantAccess("This event belongs to another team")
        raise PermissionDenied("You do not have access to this event")

    def _deny(self, event: Event, user_id: str, reason: DenialReason) -> AccessDenied:
        logger.info(
            "Access to event %s denied for user %s (%s)",
            event.id,
            user_id,
            reason.value,
            extra={"denial_reason": reason.value, "user_id": user_id, "team_id": event.team_id},
        )
        return AccessDenied(event_id=event.id, reason=reason)
