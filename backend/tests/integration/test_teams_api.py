"""
Integration tests for team, event and entitlement endpoints.

Tests cover:
- Team resolution and auto-provisioning over HTTP
- Member permission and role management
- 402 payment-required responses on guarded writes
- Cross-tenant event access
- Entitlement check endpoints
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import headers_for
from core.domain.team import TeamRole
from infrastructure.database.models import Event, EventStatus


async def _fill_events(db_session: AsyncSession, team, count: int):
    for i in range(count):
        db_session.add(
            Event(
                name=f"Wedding {i}",
                team_id=team.id,
                created_by=team.owner_id,
                status=EventStatus.PLANNING.value,
            )
        )
    await db_session.commit()


class TestCurrentTeam:
    """Tests for GET/PATCH /teams/me."""

    @pytest.mark.asyncio
    async def test_requires_authentication(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/teams/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_invalid_token_rejected(self, async_client: AsyncClient):
        response = await async_client.get(
            "/api/v1/teams/me", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_first_access_provisions_team(self, async_client: AsyncClient, auth_headers: dict, plans):
        """A user without a team becomes owner of a new one."""
        response = await async_client.get("/api/v1/teams/me", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["provisioned"] is True
        assert data["is_owner"] is True
        assert data["role"] == "owner"
        assert data["member_count"] == 1
        assert data["plan"]["name"] == "starter"
        assert all(data["permissions"].values())

        again = await async_client.get("/api/v1/teams/me", headers=auth_headers)
        assert again.json()["id"] == data["id"]
        assert again.json()["provisioned"] is False

    @pytest.mark.asyncio
    async def test_member_sees_team_and_permissions(
        self, async_client: AsyncClient, team, other_user, add_member
    ):
        await add_member(team, other_user, TeamRole.MEMBER)

        response = await async_client.get("/api/v1/teams/me", headers=headers_for(other_user))

        data = response.json()
        assert data["id"] == team.id
        assert data["is_owner"] is False
        assert data["permissions"]["can_manage_billing"] is False
        assert data["member_count"] == 2

    @pytest.mark.asyncio
    async def test_rename_requires_manage_settings(
        self, async_client: AsyncClient, auth_headers: dict, team, other_user, add_member
    ):
        await add_member(team, other_user, TeamRole.ADMIN)

        forbidden = await async_client.patch(
            "/api/v1/teams/me", json={"name": "Renamed"}, headers=headers_for(other_user)
        )
        assert forbidden.status_code == 403

        renamed = await async_client.patch(
            "/api/v1/teams/me", json={"name": "  Renamed  "}, headers=auth_headers
        )
        assert renamed.status_code == 200
        assert renamed.json()["name"] == "Renamed"


class TestMemberPermissions:
    """Tests for member permission and role endpoints."""

    @pytest.mark.asyncio
    async def test_owner_grants_billing(
        self, async_client: AsyncClient, auth_headers: dict, team, other_user, add_member
    ):
        """Granting billing management also grants billing visibility."""
        await add_member(team, other_user)

        response = await async_client.patch(
            f"/api/v1/teams/me/members/{other_user.id}/permissions",
            json={"can_manage_billing": True},
            headers=auth_headers,
        )

        assert response.status_code == 200
        permissions = response.json()["permissions"]
        assert permissions["can_manage_billing"] is True
        assert permissions["can_view_billing"] is True
        assert permissions["can_create_events"] is True

    @pytest.mark.asyncio
    async def test_owner_permissions_immutable(
        self, async_client: AsyncClient, test_user, team, other_user, add_member
    ):
        """Even a team manager cannot edit the owner."""
        await add_member(team, other_user, TeamRole.ADMIN)

        response = await async_client.patch(
            f"/api/v1/teams/me/members/{test_user.id}/permissions",
            json={"can_manage_billing": False},
            headers=headers_for(other_user),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "immutable_owner_permissions"

    @pytest.mark.asyncio
    async def test_member_cannot_manage(
        self, async_client: AsyncClient, team, other_user, add_member, make_user
    ):
        await add_member(team, other_user)
        third = await make_user()
        await add_member(team, third)

        response = await async_client.patch(
            f"/api/v1/teams/me/members/{third.id}/permissions",
            json={"can_delete_events": True},
            headers=headers_for(other_user),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_flag_rejected(
        self, async_client: AsyncClient, auth_headers: dict, team, other_user, add_member
    ):
        await add_member(team, other_user)

        response = await async_client.patch(
            f"/api/v1/teams/me/members/{other_user.id}/permissions",
            json={"is_superuser": True},
            headers=auth_headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_role_change_resets_permissions(
        self, async_client: AsyncClient, auth_headers: dict, team, other_user, add_member
    ):
        await add_member(team, other_user, TeamRole.MEMBER, can_manage_billing=True)

        response = await async_client.patch(
            f"/api/v1/teams/me/members/{other_user.id}/role",
            json={"role": "admin"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "admin"
        assert data["permissions"]["can_manage_team"] is True
        assert data["permissions"]["can_manage_billing"] is False

    @pytest.mark.asyncio
    async def test_member_can_leave(
        self, async_client: AsyncClient, team, other_user, add_member
    ):
        await add_member(team, other_user)

        response = await async_client.delete(
            f"/api/v1/teams/me/members/{other_user.id}", headers=headers_for(other_user)
        )

        assert response.status_code == 204


class TestGuardedWrites:
    """Tests for 402 responses on event, task and deal creation."""

    @pytest.mark.asyncio
    async def test_event_limit_returns_402(
        self, async_client: AsyncClient, db_session: AsyncSession, auth_headers: dict, team, plans
    ):
        """The ninth active event on starter is refused with an upgrade hint."""
        await _fill_events(db_session, team, 8)

        response = await async_client.post(
            "/api/v1/events", json={"name": "One more"}, headers=auth_headers
        )

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "event_limit_reached"
        assert body["current"] == 8
        assert body["limit"] == 8
        assert body["plan_name"] == "starter"
        assert body["required_plan"] == "professional"

    @pytest.mark.asyncio
    async def test_event_created_under_limit(
        self, async_client: AsyncClient, auth_headers: dict, team, plans
    ):
        response = await async_client.post(
            "/api/v1/events",
            json={"name": "Lakeside", "event_date": "2026-06-20"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.json()["team_id"] == team.id

    @pytest.mark.asyncio
    async def test_event_creation_permission(
        self, async_client: AsyncClient, team, plans, other_user, add_member
    ):
        await add_member(team, other_user, TeamRole.MEMBER, can_create_events=False)

        response = await async_client.post(
            "/api/v1/events", json={"name": "Nope"}, headers=headers_for(other_user)
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_task_assignment_gated(
        self, async_client: AsyncClient, auth_headers: dict, test_user, team, plans
    ):
        """Assigning a task needs a plan with task assignment."""
        created = await async_client.post(
            "/api/v1/events", json={"name": "Vineyard"}, headers=auth_headers
        )
        event_id = created.json()["id"]

        plain = await async_client.post(
            f"/api/v1/events/{event_id}/tasks", json={"title": "Book florist"}, headers=auth_headers
        )
        assert plain.status_code == 201

        assigned = await async_client.post(
            f"/api/v1/events/{event_id}/tasks",
            json={"title": "Book band", "assignee_id": test_user.id},
            headers=auth_headers,
        )
        assert assigned.status_code == 402
        assert assigned.json()["error"] == "task_assignment_not_available"

    @pytest.mark.asyncio
    async def test_deal_created(self, async_client: AsyncClient, auth_headers: dict, team, plans):
        response = await async_client.post(
            "/api/v1/crm/deals", json={"title": "Smith wedding", "value_cents": 450000}, headers=auth_headers
        )

        assert response.status_code == 201
        assert response.json()["is_lost"] is False


class TestEventAccessApi:
    """Tests for cross-tenant event access over HTTP."""

    @pytest.mark.asyncio
    async def test_other_team_gets_403(
        self, async_client: AsyncClient, auth_headers: dict, team, other_user, plans
    ):
        """A user of another team is refused with the cross-tenant code."""
        created = await async_client.post(
            "/api/v1/events", json={"name": "Private"}, headers=auth_headers
        )
        event_id = created.json()["id"]

        response = await async_client.get(f"/api/v1/events/{event_id}", headers=headers_for(other_user))

        assert response.status_code == 403
        assert response.json()["error"] == "cross_tenant"

    @pytest.mark.asyncio
    async def test_missing_event_404(self, async_client: AsyncClient, auth_headers: dict, team):
        response = await async_client.get(
            "/api/v1/events/00000000-0000-0000-0000-000000000000", headers=auth_headers
        )
        assert response.status_code == 404


class TestEntitlementEndpoints:
    """Tests for /entitlements read-only checks."""

    @pytest.mark.asyncio
    async def test_limit_check(self, async_client: AsyncClient, auth_headers: dict, team, plans):
        response = await async_client.get("/api/v1/entitlements/limits/events", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["limit"] == 8

    @pytest.mark.asyncio
    async def test_task_limit_needs_scope(self, async_client: AsyncClient, auth_headers: dict, team, plans):
        response = await async_client.get("/api/v1/entitlements/limits/tasks", headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_feature_check(
        self, async_client: AsyncClient, auth_headers: dict, team, plans, subscribe
    ):
        await subscribe(team, plans["professional"])

        response = await async_client.get("/api/v1/entitlements/features/chat", headers=auth_headers)

        assert response.json()["allowed"] is True

    @pytest.mark.asyncio
    async def test_summary(self, async_client: AsyncClient, auth_headers: dict, team, plans):
        response = await async_client.get("/api/v1/entitlements/summary", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["plan_name"] == "starter"
