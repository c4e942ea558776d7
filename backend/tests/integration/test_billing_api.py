"""
Integration tests for the billing API.

Tests cover:
- Webhook verification outcomes (401, 403, 400)
- Webhook application and its response status
- Storage failures answered with 500 for redelivery
- Plans, subscription, checkout, portal and manual sync endpoints
"""

import json
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import VALID_SIGNATURE, event_payload, headers_for, subscription_payload
from core.domain.team import TeamRole
from services.plan_catalog import PlanCatalog

WEBHOOK_URL = "/api/v1/billing/webhook"


async def _post_webhook(client: AsyncClient, payload, signature: str | None = VALID_SIGNATURE):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    body = payload if isinstance(payload, (bytes, str)) else json.dumps(payload)
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


class TestWebhookVerification:
    """Tests for POST /billing/webhook rejections."""

    @pytest.mark.asyncio
    async def test_invalid_signature_returns_401(self, async_client: AsyncClient):
        payload = event_payload("customer.subscription.updated", subscription_payload())

        response = await _post_webhook(async_client, payload, signature="t=1,v1=forged")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_signature_returns_401(self, async_client: AsyncClient):
        payload = event_payload("customer.subscription.updated", subscription_payload())

        response = await _post_webhook(async_client, payload, signature=None)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_returns_403(self, async_client: AsyncClient, billing):
        """Without a signing secret the endpoint refuses rather than trusting the body."""
        billing.webhook_configured = False
        payload = event_payload("customer.subscription.updated", subscription_payload())

        response = await _post_webhook(async_client, payload)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_malformed_payload_returns_400(self, async_client: AsyncClient):
        response = await _post_webhook(async_client, {"id": "evt_1", "type": "invoice.paid"})

        assert response.status_code == 400


class TestWebhookProcessing:
    """Tests for POST /billing/webhook application."""

    @pytest.mark.asyncio
    async def test_subscription_update_applied(
        self, async_client: AsyncClient, db_session: AsyncSession, team, plans
    ):
        """A verified subscription event updates the team's effective plan."""
        payload = event_payload(
            "customer.subscription.updated",
            subscription_payload(metadata={"team_id": team.id}),
        )

        response = await _post_webhook(async_client, payload)

        assert response.status_code == 200
        assert response.json() == {"received": True, "status": "applied"}
        plan = await PlanCatalog(db_session).get_effective_plan(team.id)
        assert plan.name == "professional"

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self, async_client: AsyncClient):
        payload = event_payload("customer.created", {"id": "cus_1", "object": "customer"})

        response = await _post_webhook(async_client, payload)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    @pytest.mark.asyncio
    async def test_unattributable_event_acknowledged(self, async_client: AsyncClient, plans):
        """Events that match no team are acknowledged so they are not retried forever."""
        payload = event_payload("customer.subscription.updated", subscription_payload())

        response = await _post_webhook(async_client, payload)

        assert response.status_code == 200
        assert response.json()["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_storage_failure_returns_500(self, async_client: AsyncClient, team, plans):
        payload = event_payload(
            "customer.subscription.updated",
            subscription_payload(metadata={"team_id": team.id}),
        )

        with patch(
            "services.subscription_sync.upsert",
            side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
        ):
            response = await _post_webhook(async_client, payload)

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_duplicate_event_skipped(self, async_client: AsyncClient, team, plans):
        """Events already recorded as processed are not applied again."""
        payload = event_payload(
            "customer.subscription.updated",
            subscription_payload(metadata={"team_id": team.id}),
        )

        with patch("api.routes.billing._already_processed", return_value=True) as check:
            response = await _post_webhook(async_client, payload)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"
        check.assert_awaited_once_with(payload["id"])


class TestBillingEndpoints:
    """Tests for the authenticated billing endpoints."""

    @pytest.mark.asyncio
    async def test_list_plans_public(self, async_client: AsyncClient, plans):
        response = await async_client.get("/api/v1/billing/plans")

        assert response.status_code == 200
        names = [plan["name"] for plan in response.json()["plans"]]
        assert names == ["starter", "professional", "enterprise"]

    @pytest.mark.asyncio
    async def test_subscription_without_row(self, async_client: AsyncClient, auth_headers: dict, team, plans):
        response = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] is None
        assert data["effective_plan"]["name"] == "starter"
        assert data["can_manage"] is True

    @pytest.mark.asyncio
    async def test_checkout_creates_customer_and_session(
        self, async_client: AsyncClient, auth_headers: dict, team, plans, billing
    ):
        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"plan": "professional", "billing_interval": "year"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["checkout_url"].startswith("https://checkout.stripe.test")
        session = billing.checkout_sessions[0]
        assert session["price_id"] == "price_professional_annual"
        assert session["metadata"] == {"team_id": team.id, "plan_id": plans["professional"].id}

    @pytest.mark.asyncio
    async def test_checkout_requires_manage_billing(
        self, async_client: AsyncClient, team, plans, other_user, add_member
    ):
        """Members without billing rights get 403."""
        await add_member(team, other_user, TeamRole.ADMIN)

        response = await async_client.post(
            "/api/v1/billing/checkout",
            json={"plan": "professional"},
            headers=headers_for(other_user),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_portal_without_customer_404(self, async_client: AsyncClient, auth_headers: dict, team):
        response = await async_client.post("/api/v1/billing/portal", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "subscription_not_found"

    @pytest.mark.asyncio
    async def test_manual_sync(
        self, async_client: AsyncClient, auth_headers: dict, team, plans, billing, subscribe
    ):
        await subscribe(team, None, status="incomplete", customer_id="cus_123", subscription_id=None)
        billing.add_subscription(subscription_payload())

        response = await async_client.post("/api/v1/billing/sync", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["effective_plan"]["name"] == "professional"

    @pytest.mark.asyncio
    async def test_payments_require_view_billing(
        self, async_client: AsyncClient, team, other_user, add_member
    ):
        await add_member(team, other_user, TeamRole.MEMBER)

        response = await async_client.get("/api/v1/billing/payments", headers=headers_for(other_user))

        assert response.status_code == 403
