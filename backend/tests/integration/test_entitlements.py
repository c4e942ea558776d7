"""
Integration tests for plan entitlement enforcement.

Tests cover:
- Effective plan selection (entitled statuses only)
- Quota checks per dimension, including unlimited plans
- Feature gates
- Fail-open behavior on storage errors
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entitlement import Feature, LimitDimension
from core.errors import EntitlementExceeded
from infrastructure.database.models import CrmDeal, Event, EventStatus, Task
from services.entitlements import EntitlementEnforcer
from services.plan_catalog import PlanCatalog


async def _add_events(db_session: AsyncSession, team, count: int, status=EventStatus.PLANNING):
    for i in range(count):
        db_session.add(
            Event(
                name=f"Wedding {i}",
                team_id=team.id,
                created_by=team.owner_id,
                status=status.value,
            )
        )
    await db_session.commit()


class TestEffectivePlan:
    """Tests for PlanCatalog.get_effective_plan."""

    @pytest.mark.asyncio
    async def test_no_subscription_is_starter(self, db_session: AsyncSession, team, plans):
        plan = await PlanCatalog(db_session).get_effective_plan(team.id)
        assert plan.name == "starter"
        assert plan.limits.events_max_active == 8

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["active", "trialing"])
    async def test_entitled_status_uses_plan(
        self, db_session: AsyncSession, team, plans, subscribe, status
    ):
        await subscribe(team, plans["professional"], status=status)
        plan = await PlanCatalog(db_session).get_effective_plan(team.id)
        assert plan.name == "professional"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["past_due", "canceled", "incomplete", "expired"])
    async def test_non_entitled_status_falls_back(
        self, db_session: AsyncSession, team, plans, subscribe, status
    ):
        """Only active and trialing subscriptions grant their plan."""
        await subscribe(team, plans["enterprise"], status=status)
        plan = await PlanCatalog(db_session).get_effective_plan(team.id)
        assert plan.name == "starter"

    @pytest.mark.asyncio
    async def test_unresolved_plan_falls_back(self, db_session: AsyncSession, team, plans, subscribe):
        """An active subscription with no plan attached is treated as starter."""
        await subscribe(team, None, status="active")
        plan = await PlanCatalog(db_session).get_effective_plan(team.id)
        assert plan.name == "starter"

    @pytest.mark.asyncio
    async def test_price_id_resolution(self, db_session: AsyncSession, plans):
        catalog = PlanCatalog(db_session)
        assert (await catalog.resolve_plan_from_price_id("price_enterprise_annual")).name == "enterprise"
        assert await catalog.resolve_plan_from_price_id("price_unknown") is None
        assert await catalog.resolve_plan_from_price_id(None) is None

    @pytest.mark.asyncio
    async def test_seed_plans_is_idempotent(self, db_session: AsyncSession, plans):
        """Seeding again creates nothing and keeps configured price ids."""
        assert await PlanCatalog(db_session).seed_plans() == 0
        plan = await PlanCatalog(db_session).get_plan_by_name("professional")
        assert plan.stripe_price_id_monthly == "price_professional_monthly"


class TestEventLimit:
    """Tests for the active-event quota."""

    @pytest.mark.asyncio
    async def test_starter_blocks_ninth_event(self, db_session: AsyncSession, team, plans):
        """At 8 of 8 active events the starter plan denies with an upgrade hint."""
        await _add_events(db_session, team, 8)

        check = await EntitlementEnforcer(db_session).check_limit(team.id, LimitDimension.EVENTS)

        assert check.allowed is False
        assert check.current == 8
        assert check.limit == 8
        assert check.plan_name == "starter"
        assert check.required_plan == "professional"

    @pytest.mark.asyncio
    async def test_archived_events_do_not_count(self, db_session: AsyncSession, team, plans):
        await _add_events(db_session, team, 7)
        await _add_events(db_session, team, 5, status=EventStatus.ARCHIVED)

        check = await EntitlementEnforcer(db_session).check_limit(team.id, "events")

        assert check.allowed is True
        assert check.current == 7

    @pytest.mark.asyncio
    async def test_enforce_raises_payment_required(self, db_session: AsyncSession, team, plans):
        await _add_events(db_session, team, 8)

        with pytest.raises(EntitlementExceeded) as exc_info:
            await EntitlementEnforcer(db_session).enforce_limit(team.id, LimitDimension.EVENTS)

        assert exc_info.value.status_code == 402
        assert exc_info.value.code == "event_limit_reached"

    @pytest.mark.asyncio
    async def test_professional_allows_more(self, db_session: AsyncSession, team, plans, subscribe):
        await subscribe(team, plans["professional"])
        await _add_events(db_session, team, 8)

        check = await EntitlementEnforcer(db_session).check_limit(team.id, LimitDimension.EVENTS)

        assert check.allowed is True
        assert check.limit == 30

    @pytest.mark.asyncio
    async def test_unlimited_skips_counting(self, db_session: AsyncSession, team, plans, subscribe):
        """Unlimited plans allow without querying usage."""
        await subscribe(team, plans["enterprise"])
        enforcer = EntitlementEnforcer(db_session)

        with patch.object(enforcer, "count_active_events", AsyncMock(return_value=10_000)) as counter:
            check = await enforcer.check_limit(team.id, LimitDimension.EVENTS)

        assert check.allowed is True
        assert check.limit is None
        counter.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unlimited_deals_never_blocked(
        self, db_session: AsyncSession, team, plans, subscribe
    ):
        await subscribe(team, plans["enterprise"])
        enforcer = EntitlementEnforcer(db_session)

        with patch.object(enforcer, "count_open_deals", AsyncMock(return_value=10_000)) as counter:
            check = await enforcer.enforce_limit(team.id, LimitDimension.CRM_DEALS)

        assert check.allowed is True
        assert check.limit is None
        counter.assert_not_awaited()


class TestOtherLimits:
    """Tests for member, task and deal quotas."""

    @pytest.mark.asyncio
    async def test_starter_member_limit_counts_owner(self, db_session: AsyncSession, team, plans):
        """The owner occupies the single starter seat."""
        check = await EntitlementEnforcer(db_session).check_limit(team.id, LimitDimension.TEAM_MEMBERS)

        assert check.allowed is False
        assert check.current == 1
        assert check.error_code == "member_limit_reached"

    @pytest.mark.asyncio
    async def test_reserved_seats_count(self, db_session: AsyncSession, team, plans, subscribe):
        """Reserved units (pending invitations) are added to the count."""
        await subscribe(team, plans["professional"])
        enforcer = EntitlementEnforcer(db_session)

        assert (await enforcer.check_limit(team.id, LimitDimension.TEAM_MEMBERS, reserved=6)).allowed
        check = await enforcer.check_limit(team.id, LimitDimension.TEAM_MEMBERS, reserved=7)
        assert check.allowed is False
        assert check.current == 8

    @pytest.mark.asyncio
    async def test_tasks_require_scope(self, db_session: AsyncSession, team, plans):
        """The per-event task quota cannot be checked without an event."""
        with pytest.raises(ValueError, match="scope_id"):
            await EntitlementEnforcer(db_session).check_limit(team.id, LimitDimension.TASKS)

    @pytest.mark.asyncio
    async def test_tasks_counted_per_event(self, db_session: AsyncSession, team, plans):
        await _add_events(db_session, team, 1)
        event = (await db_session.execute(select(Event))).scalars().first()
        for i in range(3):
            db_session.add(Task(event_id=event.id, title=f"Task {i}", created_by=team.owner_id))
        await db_session.commit()

        check = await EntitlementEnforcer(db_session).check_limit(
            team.id, LimitDimension.TASKS, scope_id=event.id
        )

        assert check.allowed is True
        assert check.current == 3
        assert check.limit == 30

    @pytest.mark.asyncio
    async def test_task_limit_reached(self, db_session: AsyncSession, team, plans):
        enforcer = EntitlementEnforcer(db_session)
        with patch.object(enforcer, "count_event_tasks", AsyncMock(return_value=30)):
            check = await enforcer.check_limit(team.id, LimitDimension.TASKS, scope_id="event-1")

        assert check.allowed is False
        assert check.error_code == "task_limit_reached"

    @pytest.mark.asyncio
    async def test_open_deals_counted_team_wide(
        self, db_session: AsyncSession, team, plans, other_user, add_member, make_user
    ):
        """Deals of the owner and members count; lost deals and outsiders do not."""
        await add_member(team, other_user)
        outsider = await make_user()
        db_session.add_all(
            [
                CrmDeal(owner_id=team.owner_id, title="Smith"),
                CrmDeal(owner_id=other_user.id, title="Jones"),
                CrmDeal(owner_id=other_user.id, title="Lost", is_lost=True),
                CrmDeal(owner_id=outsider.id, title="Elsewhere"),
            ]
        )
        await db_session.commit()

        check = await EntitlementEnforcer(db_session).check_limit(team.id, LimitDimension.CRM_DEALS)

        assert check.current == 2
        assert check.limit == 150


class TestFeatureGates:
    """Tests for check_feature."""

    @pytest.mark.asyncio
    async def test_starter_lacks_task_assignment(self, db_session: AsyncSession, team, plans):
        check = await EntitlementEnforcer(db_session).check_feature(team.id, Feature.TASK_ASSIGNMENT)

        assert check.allowed is False
        assert check.required_plan == "professional"

    @pytest.mark.asyncio
    async def test_professional_has_chat(self, db_session: AsyncSession, team, plans, subscribe):
        await subscribe(team, plans["professional"])
        check = await EntitlementEnforcer(db_session).check_feature(team.id, "chat")

        assert check.allowed is True
        assert check.required_plan is None

    @pytest.mark.asyncio
    async def test_enforce_feature_raises(self, db_session: AsyncSession, team, plans):
        with pytest.raises(EntitlementExceeded) as exc_info:
            await EntitlementEnforcer(db_session).enforce_feature(team.id, Feature.CHAT)
        assert exc_info.value.code == "chat_not_available"


class TestFailOpen:
    """Entitlement checks allow the action when storage is unavailable."""

    @pytest.mark.asyncio
    async def test_plan_lookup_failure_allows(self, db_session: AsyncSession, team):
        catalog = AsyncMock()
        catalog.get_effective_plan.side_effect = OperationalError(
            "SELECT", {}, Exception("database is down")
        )
        enforcer = EntitlementEnforcer(db_session, catalog=catalog)

        limit = await enforcer.check_limit(team.id, LimitDimension.EVENTS)
        feature = await enforcer.check_feature(team.id, Feature.CHAT)

        assert limit.allowed is True
        assert feature.allowed is True

    @pytest.mark.asyncio
    async def test_count_failure_allows(self, db_session: AsyncSession, team, plans):
        enforcer = EntitlementEnforcer(db_session)
        failing = AsyncMock(side_effect=SQLAlchemyError("count failed"))

        with patch.object(enforcer, "count_active_events", failing):
            check = await enforcer.check_limit(team.id, LimitDimension.EVENTS)

        assert check.allowed is True
        assert check.limit == 8

    @pytest.mark.asyncio
    async def test_failed_statement_leaves_session_usable(
        self, db_session: AsyncSession, team, plans
    ):
        """After a failed usage query the guarded insert still commits."""
        enforcer = EntitlementEnforcer(db_session)

        async def broken_count(team_id):
            result = await db_session.execute(text("SELECT count(*) FROM missing_events_table"))
            return result.scalar_one()

        with patch.object(enforcer, "count_active_events", broken_count):
            check = await enforcer.check_limit(team.id, LimitDimension.EVENTS)

        assert check.allowed is True
        db_session.add(Event(name="Garden party", team_id=team.id, created_by=team.owner_id))
        await db_session.commit()
        assert await enforcer.count_active_events(team.id) == 1


class TestSummary:
    """Tests for EntitlementEnforcer.summary."""

    @pytest.mark.asyncio
    async def test_summary_lists_limits_and_features(self, db_session: AsyncSession, team, plans):
        await _add_events(db_session, team, 2)

        summary = await EntitlementEnforcer(db_session).summary(team.id)

        assert summary["plan_name"] == "starter"
        usage = {item["dimension"]: item for item in summary["usage"]}
        assert usage["events"]["current"] == 2
        assert "tasks" not in usage
        assert {item["feature"] for item in summary["features"]} == {f.value for f in Feature}
