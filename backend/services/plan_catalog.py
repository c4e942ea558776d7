"""
Plan catalog service.

Read-only lookup of subscription plans, their limits, and the mapping from
billing price ids to plans. Also seeds the plan rows from core/plans.py.
"""

import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import ENTITLED_STATUSES, STARTER_PLAN, Plan, PlanLimits
from core.errors import PlanNotFound
from core.plans import PLANS
from infrastructure.config.settings import settings
from infrastructure.database.models.subscription import SubscriptionPlan, TeamSubscription

logger = logging.getLogger(__name__)


def plan_from_row(row: SubscriptionPlan) -> Plan:
    """Build the domain plan from its database row."""
    return Plan(
        id=row.id,
        name=row.name,
        display_name=row.display_name,
        limits=PlanLimits.from_json(row.limits),
        stripe_price_id_monthly=row.stripe_price_id_monthly,
        stripe_price_id_annual=row.stripe_price_id_annual,
        monthly_price_cents=row.monthly_price_cents,
        annual_price_cents=row.annual_price_cents,
    )


class PlanCatalog:
    """Lookup of plans and of the plan in effect for a team."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plan(self, plan_id: str) -> Plan:
        """
        Get plan by ID.

        Raises:
            PlanNotFound: If no plan has this id
        """
        row = await self.db.get(SubscriptionPlan, plan_id)
        if row is None:
            raise PlanNotFound(f"Plan {plan_id} not found")
        return plan_from_row(row)

    async def get_plan_by_name(self, name: str) -> Optional[Plan]:
        result = await self.db.execute(
            select(SubscriptionPlan).where(SubscriptionPlan.name == name)
        )
        row = result.scalar_one_or_none()
        return plan_from_row(row) if row else None

    async def list_plans(self) -> list[Plan]:
        """Active plans in display order."""
        result = await self.db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.sort_order)
        )
        return [plan_from_row(row) for row in result.scalars().all()]

    async def resolve_plan_from_price_id(self, price_id: Optional[str]) -> Optional[Plan]:
        """
        Match a billing price id against the monthly or annual price of each plan.

        Unknown prices return None rather than raising; the provider may
        introduce prices that are not modelled yet.
        """
        if not price_id:
            return None
        result = await self.db.execute(
            select(SubscriptionPlan).where(
                or_(
                    SubscriptionPlan.stripe_price_id_monthly == price_id,
                    SubscriptionPlan.stripe_price_id_annual == price_id,
                )
            )
        )
        row = result.scalars().first()
        if row is None:
            logger.info("No plan matches price id %s", price_id)
            return None
        return plan_from_row(row)

    async def get_effective_plan(self, team_id: str) -> Plan:
        """
        Plan currently in effect for a team.

        Only an active or trialing subscription with a resolved plan counts;
        anything else yields the hard-coded starter plan.
        """
        result = await self.db.execute(
            select(SubscriptionPlan)
            .join(TeamSubscription, TeamSubscription.plan_id == SubscriptionPlan.id)
            .where(
                TeamSubscription.team_id == team_id,
                TeamSubscription.status.in_(ENTITLED_STATUSES),
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return STARTER_PLAN
        return plan_from_row(row)

    async def seed_plans(self) -> int:
        """
        Insert missing plan rows and refresh limits and prices of existing ones.

        Returns:
            Number of plans created
        """
        price_ids = settings.stripe_price_ids()
        result = await self.db.execute(select(SubscriptionPlan))
        existing = {row.name: row for row in result.scalars().all()}

        created = 0
        for name, config in PLANS.items():
            row = existing.get(name)
            if row is None:
                row = SubscriptionPlan(name=name)
                self.db.add(row)
                created += 1
            row.display_name = config["display_name"]
            row.monthly_price_cents = config["monthly_price_cents"]
            row.annual_price_cents = config["annual_price_cents"]
            row.sort_order = config["sort_order"]
            row.limits = config["limits"]
            row.features = list(config["features"])
            row.is_active = True
            # Keep ids configured directly in the database when settings are empty
            row.stripe_price_id_monthly = price_ids[name]["month"] or row.stripe_price_id_monthly
            row.stripe_price_id_annual = price_ids[name]["year"] or row.stripe_price_id_annual

        await self.db.commit()
        if created:
            logger.info("Seeded %d subscription plans", created)
        return created
