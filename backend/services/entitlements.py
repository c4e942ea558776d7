"""
Entitlement enforcement service.

Checks a proposed action against the team's effective plan before the
write happens. Checks are read-only and fail open: when the plan or usage
cannot be read, the action is allowed and the failure is logged. Reads run in
a savepoint so a failed statement does not poison the caller's transaction.

The check and the subsequent insert are not one transaction, so a burst
of concurrent requests can overshoot a quota slightly (soft limit).
"""

import logging
from typing import Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entitlement import Feature, FeatureCheck, LimitCheck, LimitDimension
from core.domain.subscription import STARTER_PLAN, UNLIMITED, Plan, PlanLimits
from core.errors import EntitlementExceeded
from core.plans import suggest_upgrade
from infrastructure.database.models.base import utcnow
from infrastructure.database.models.crm import CrmDeal
from infrastructure.database.models.event import Event, EventStatus, Task
from infrastructure.database.models.team import InvitationStatus, Team, TeamInvitation, TeamMember
from services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)


_LIMIT_FIELDS = {
    LimitDimension.EVENTS: "events_max_active",
    LimitDimension.TEAM_MEMBERS: "team_max_members",
    LimitDimension.TASKS: "tasks_max_per_event",
    LimitDimension.CRM_DEALS: "crm_max_deals",
}

_FEATURE_FIELDS = {
    Feature.CHAT: "chat_enabled",
    Feature.TASK_ASSIGNMENT: "tasks_assignment",
    Feature.CONTACTS_SHARING: "contacts_team_shared",
    Feature.SUPPLIERS_SHARING: "suppliers_team_shared",
}


def limit_for(limits: PlanLimits, dimension: LimitDimension) -> int:
    return getattr(limits, _LIMIT_FIELDS[dimension])


def feature_enabled(limits: PlanLimits, feature: Feature) -> bool:
    return getattr(limits, _FEATURE_FIELDS[feature])


class EntitlementEnforcer:
    """Quota and feature-gate checks for a team's plan."""

    def __init__(self, db: AsyncSession, catalog: Optional[PlanCatalog] = None):
        """
        Initialize entitlement enforcer.

        Args:
            db: Async database session
            catalog: Plan catalog (defaults to one on the same session)
        """
        self.db = db
        self.catalog = catalog or PlanCatalog(db)

    # ------------------------------------------------------------------
    # Usage counts
    # ------------------------------------------------------------------

    async def count_active_events(self, team_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Event.id)).where(
                Event.team_id == team_id,
                Event.status != EventStatus.ARCHIVED.value,
            )
        )
        return result.scalar_one()

    async def count_team_members(self, team_id: str) -> int:
        """Members including the owner, who has no membership row."""
        result = await self.db.execute(
            select(func.count(TeamMember.id)).where(TeamMember.team_id == team_id)
        )
        return result.scalar_one() + 1

    async def count_pending_invitations(self, team_id: str) -> int:
        result = await self.db.execute(
            select(func.count(TeamInvitation.id)).where(
                TeamInvitation.team_id == team_id,
                TeamInvitation.status == InvitationStatus.PENDING.value,
                TeamInvitation.expires_at > utcnow(),
            )
        )
        return result.scalar_one()

    async def count_event_tasks(self, event_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Task.id)).where(Task.event_id == event_id)
        )
        return result.scalar_one()

    async def count_open_deals(self, team_id: str) -> int:
        """Deals not marked lost, across every user of the team."""
        owner_ids = select(Team.owner_id).where(Team.id == team_id)
        member_ids = select(TeamMember.user_id).where(TeamMember.team_id == team_id)
        result = await self.db.execute(
            select(func.count(CrmDeal.id)).where(
                or_(CrmDeal.owner_id.in_(owner_ids), CrmDeal.owner_id.in_(member_ids)),
                CrmDeal.is_lost.is_(False),
            )
        )
        return result.scalar_one()

    async def _count(self, team_id: str, dimension: LimitDimension, scope_id: Optional[str]) -> int:
        if dimension == LimitDimension.EVENTS:
            return await self.count_active_events(team_id)
        if dimension == LimitDimension.TEAM_MEMBERS:
            return await self.count_team_members(team_id)
        if dimension == LimitDimension.TASKS:
            return await self.count_event_tasks(scope_id)
        return await self.count_open_deals(team_id)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def _effective_plan(self, team_id: str) -> Optional[Plan]:
        try:
            async with self.db.begin_nested():
                return await self.catalog.get_effective_plan(team_id)
        except SQLAlchemyError as e:
            logger.warning("Plan lookup failed for team %s, failing open: %s", team_id, e)
            return None

    async def check_limit(
        self,
        team_id: str,
        dimension: Union[LimitDimension, str],
        scope_id: Optional[str] = None,
        reserved: int = 0,
    ) -> LimitCheck:
        """
        Check whether one more unit of ``dimension`` fits the team's plan.

        Args:
            team_id: Team to check
            dimension: Quota to check
            scope_id: Event id, required for the per-event task quota
            reserved: Extra units already committed but not yet counted
                (pending invitations for the member quota)

        Returns:
            LimitCheck; ``limit`` is None when the plan is unlimited
        """
        dimension = LimitDimension(dimension)
        if dimension == LimitDimension.TASKS and not scope_id:
            raise ValueError("scope_id (event id) is required for the task limit")

        plan = await self._effective_plan(team_id)
        if plan is None:
            return LimitCheck(dimension, True, 0, None, STARTER_PLAN.name)

        limit = limit_for(plan.limits, dimension)
        if limit == UNLIMITED:
            return LimitCheck(dimension, True, 0, None, plan.name)

        try:
            async with self.db.begin_nested():
                current = await self._count(team_id, dimension, scope_id) + reserved
        except SQLAlchemyError as e:
            logger.warning(
                "Usage count for %s failed for team %s, failing open: %s",
                dimension.value, team_id, e,
            )
            return LimitCheck(dimension, True, 0, limit, plan.name)

        if current < limit:
            return LimitCheck(dimension, True, current, limit, plan.name)

        required_plan = suggest_upgrade(plan.name)
        logger.warning(
            "Team %s reached %s limit (%d/%d) on %s plan",
            team_id, dimension.value, current, limit, plan.name,
            extra={"team_id": team_id},
        )
        return LimitCheck(dimension, False, current, limit, plan.name, required_plan)

    async def check_feature(self, team_id: str, feature: Union[Feature, str]) -> FeatureCheck:
        """Check a boolean feature gate of the team's plan."""
        feature = Feature(feature)
        plan = await self._effective_plan(team_id)
        if plan is None:
            return FeatureCheck(feature, True, STARTER_PLAN.name)
        if feature_enabled(plan.limits, feature):
            return FeatureCheck(feature, True, plan.name)
        return FeatureCheck(feature, False, plan.name, suggest_upgrade(plan.name))

    async def enforce_limit(
        self,
        team_id: str,
        dimension: Union[LimitDimension, str],
        scope_id: Optional[str] = None,
        reserved: int = 0,
    ) -> LimitCheck:
        """
        Raise EntitlementExceeded when the quota is exhausted.

        Call before the write it guards.
        """
        check = await self.check_limit(team_id, dimension, scope_id, reserved)
        if not check.allowed:
            raise EntitlementExceeded(check)
        return check

    async def enforce_feature(self, team_id: str, feature: Union[Feature, str]) -> FeatureCheck:
        """Raise EntitlementExceeded when the plan lacks the feature."""
        check = await self.check_feature(team_id, feature)
        if not check.allowed:
            raise EntitlementExceeded(check)
        return check

    async def summary(self, team_id: str) -> dict:
        """Effective plan with team-wide quotas and feature gates."""
        plan = await self._effective_plan(team_id) or STARTER_PLAN
        limits = [
            await self.check_limit(team_id, dimension)
            for dimension in (
                LimitDimension.EVENTS,
                LimitDimension.TEAM_MEMBERS,
                LimitDimension.CRM_DEALS,
            )
        ]
        features = [await self.check_feature(team_id, feature) for feature in Feature]
        return {
            "plan_name": plan.name,
            "display_name": plan.display_name,
            "limits": plan.limits.to_json(),
            "usage": [check.to_dict() for check in limits],
            "features": [check.to_dict() for check in features],
        }
