"""
Billing API routes for team subscriptions.

The webhook is the only writer of subscription state besides the manual
sync; both go through SubscriptionSynchronizer.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import BillingEvent
from api.dependencies import (
    get_billing_provider,
    get_current_user,
    get_resolved_team,
    require_permission,
)
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    CustomerPortalResponse,
    PaymentListResponse,
    PaymentResponse,
    PlanInfo,
    PricingResponse,
    SubscriptionResponse,
    WebhookResponse,
)
from core.domain.subscription import Plan
from core.domain.team import ResolvedTeam
from core.errors import (
    BillingConfigurationError,
    BillingPayloadError,
    BillingSignatureError,
    BillingSyncError,
)
from core.interfaces.services import BillingProvider
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.plan_catalog import PlanCatalog
from services.subscription_sync import SubscriptionSynchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

# Provider retry window is three days; keep processed ids a day longer
_WEBHOOK_DEDUP_TTL = 4 * 24 * 3600


def _plan_info(plan: Plan) -> PlanInfo:
    return PlanInfo(
        id=plan.id,
        name=plan.name,
        display_name=plan.display_name,
        monthly_price_cents=plan.monthly_price_cents,
        annual_price_cents=plan.annual_price_cents,
        limits=plan.limits.to_json(),
    )


@router.get("/plans", response_model=PricingResponse)
async def get_plans(db: AsyncSession = Depends(get_db)):
    """List the active subscription plans. No authentication required."""
    plans = await PlanCatalog(db).list_plans()
    return PricingResponse(plans=[_plan_info(plan) for plan in plans])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Stored subscription of the current team and the plan in effect."""
    catalog = PlanCatalog(db)
    plan = await catalog.get_effective_plan(team.team_id)
    row = await SubscriptionSynchronizer(db, catalog=catalog).get_subscription(team.team_id)

    response = SubscriptionResponse(
        team_id=team.team_id,
        effective_plan=_plan_info(plan),
        can_manage=team.permissions.can_manage_billing,
    )
    if row is not None:
        response.status = row.status
        response.billing_interval = row.billing_interval
        response.current_period_start = row.current_period_start
        response.current_period_end = row.current_period_end
        response.trial_end = row.trial_end
        response.cancel_at_period_end = row.cancel_at_period_end
        response.canceled_at = row.canceled_at
        if team.permissions.can_view_billing:
            response.stripe_customer_id = row.stripe_customer_id
            response.stripe_subscription_id = row.stripe_subscription_id
    return response


@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    team: ResolvedTeam = Depends(require_permission("can_view_billing")),
    db: AsyncSession = Depends(get_db),
):
    """Payment history of the current team."""
    payments = await SubscriptionSynchronizer(db).list_payments(team.team_id)
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(payment) for payment in payments]
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    team: ResolvedTeam = Depends(require_permission("can_manage_billing")),
    billing: BillingProvider = Depends(get_billing_provider),
    db: AsyncSession = Depends(get_db),
):
    """Start a hosted checkout for the chosen plan and interval."""
    default_url = f"{settings.frontend_url}/settings/billing"
    session = await SubscriptionSynchronizer(db, billing).start_checkout(
        team_id=team.team_id,
        plan_name=body.plan.value,
        interval=body.billing_interval,
        email=current_user.email,
        name=team.team_name,
        success_url=body.success_url or f"{default_url}?checkout=success",
        cancel_url=body.cancel_url or default_url,
    )
    if not session.url:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Billing provider returned no checkout URL",
        )
    return CheckoutResponse(checkout_url=session.url, session_id=session.id)


@router.post("/portal", response_model=CustomerPortalResponse)
async def create_portal(
    team: ResolvedTeam = Depends(require_permission("can_manage_billing")),
    billing: BillingProvider = Depends(get_billing_provider),
    db: AsyncSession = Depends(get_db),
):
    """Billing portal session for payment methods, invoices and plan changes."""
    url = await SubscriptionSynchronizer(db, billing).open_portal(
        team.team_id, return_url=f"{settings.frontend_url}/settings/billing"
    )
    return CustomerPortalResponse(portal_url=url)


@router.post("/sync", response_model=SubscriptionResponse)
async def sync_subscription(
    team: ResolvedTeam = Depends(require_permission("can_manage_billing")),
    billing: BillingProvider = Depends(get_billing_provider),
    db: AsyncSession = Depends(get_db),
):
    """Re-read the subscription from the billing provider (missed webhooks)."""
    catalog = PlanCatalog(db)
    row = await SubscriptionSynchronizer(db, billing, catalog).sync_from_provider(team.team_id)
    plan = await catalog.get_effective_plan(team.team_id)
    return SubscriptionResponse(
        team_id=team.team_id,
        effective_plan=_plan_info(plan),
        status=row.status,
        billing_interval=row.billing_interval,
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        trial_end=row.trial_end,
        cancel_at_period_end=row.cancel_at_period_end,
        canceled_at=row.canceled_at,
        can_manage=True,
    )


async def _already_processed(event_id: Optional[str]) -> bool:
    if not event_id or not settings.redis_url:
        return False
    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.redis_url)
        try:
            return bool(await r.exists(f"webhook:processed:{event_id}"))
        finally:
            await r.aclose()
    except Exception as redis_err:
        logger.warning("Webhook idempotency check unavailable (Redis error): %s", redis_err)
        return False


async def _mark_processed(event_id: Optional[str]) -> None:
    if not event_id or not settings.redis_url:
        return
    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.redis_url)
        try:
            await r.setex(f"webhook:processed:{event_id}", _WEBHOOK_DEDUP_TTL, "1")
        finally:
            await r.aclose()
    except Exception as redis_err:
        logger.warning("Could not record processed webhook %s: %s", event_id, redis_err)


@router.post("/webhook", response_model=WebhookResponse)
@limiter.limit(get_rate_limit("webhook"))
async def handle_webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
    billing: BillingProvider = Depends(get_billing_provider),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle billing provider webhook events.

    - checkout.session.completed: Checkout finished, subscription created
    - customer.subscription.created / updated: Plan, status or period changed
    - customer.subscription.deleted: Subscription ended
    - invoice.payment_succeeded / invoice.payment_failed: Payment history

    Storage failures return 500 so the provider redelivers the event.
    """
    body = await request.body()

    try:
        event: BillingEvent = billing.construct_event(body, stripe_signature)
    except BillingSignatureError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    except BillingConfigurationError:
        # 403 rather than 5xx so the provider does not retry aggressively
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Webhook verification not configured",
        )
    except BillingPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    if await _already_processed(event.id):
        logger.info("Duplicate webhook event %s, skipping", event.id)
        return WebhookResponse(status="duplicate")

    try:
        outcome = await SubscriptionSynchronizer(db, billing).apply_billing_event(event)
    except BillingSyncError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    await _mark_processed(event.id)
    return WebhookResponse(status=outcome)
