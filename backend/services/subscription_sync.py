"""
Subscription synchronization service.

Keeps the single ``team_subscriptions`` row per team consistent with the
billing provider. Webhook deliveries are at-least-once and unordered, so
every subscription write is an upsert keyed by team id: re-applying the
same event leaves the row unchanged, and concurrent deliveries serialize
on the unique constraint. The write path fails closed: any storage error
rolls back and raises BillingSyncError so the provider redelivers.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import (
    BillingEvent,
    StripeCheckoutSession,
    StripeInvoice,
    StripeSubscription,
)
from core.domain.subscription import (
    ENTITLED_STATUSES,
    BillingInterval,
    PaymentStatus,
    Plan,
    SubscriptionStatus,
    normalize_status,
)
from core.errors import (
    BillingConfigurationError,
    BillingError,
    BillingSyncError,
    PlanNotFound,
    SubscriptionNotFound,
)
from core.interfaces.services import BillingProvider
from infrastructure.database.models.subscription import SubscriptionPayment, TeamSubscription
from infrastructure.database.models.team import Team
from infrastructure.database.upsert import upsert
from services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

# Outcomes reported back to the webhook endpoint
APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"

_TERMINAL_STATUSES = (SubscriptionStatus.CANCELED.value, SubscriptionStatus.EXPIRED.value)


class SubscriptionSynchronizer:
    """Applies billing provider state to the stored team subscription."""

    def __init__(
        self,
        db: AsyncSession,
        billing: Optional[BillingProvider] = None,
        catalog: Optional[PlanCatalog] = None,
    ):
        """
        Initialize subscription synchronizer.

        Args:
            db: Async database session
            billing: Billing provider client; required for checkout events,
                manual sync and checkout/portal sessions
            catalog: Plan catalog (defaults to one on the same session)
        """
        self.db = db
        self.billing = billing
        self.catalog = catalog or PlanCatalog(db)
        self._handlers: dict[str, Callable[[Mapping[str, Any]], Awaitable[str]]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_payment_succeeded,
            "invoice.payment_failed": self._on_payment_failed,
        }

    def _require_billing(self) -> BillingProvider:
        if self.billing is None:
            raise BillingConfigurationError("Payment system not configured")
        return self.billing

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_subscription(self, team_id: str) -> Optional[TeamSubscription]:
        result = await self.db.execute(
            select(TeamSubscription)
            .where(TeamSubscription.team_id == team_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_by_subscription_id(self, subscription_id: str) -> Optional[TeamSubscription]:
        result = await self.db.execute(
            select(TeamSubscription).where(
                TeamSubscription.stripe_subscription_id == subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def _find_by_customer_id(self, customer_id: str) -> Optional[TeamSubscription]:
        result = await self.db.execute(
            select(TeamSubscription).where(TeamSubscription.stripe_customer_id == customer_id)
        )
        return result.scalars().first()

    async def list_payments(self, team_id: str, limit: int = 50) -> list[SubscriptionPayment]:
        result = await self.db.execute(
            select(SubscriptionPayment)
            .where(SubscriptionPayment.team_id == team_id)
            .order_by(SubscriptionPayment.payment_date.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    async def apply_billing_event(self, event: BillingEvent) -> str:
        """
        Apply one verified billing event.

        Args:
            event: Trusted event from the verification stage

        Returns:
            "applied", "skipped" (nothing to attach it to) or "ignored"
            (event type not handled)

        Raises:
            BillingSyncError: The state change could not be persisted
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Ignoring billing event %s (%s)", event.id, event.type)
            return IGNORED

        try:
            outcome = await handler(event.data)
            await self.db.commit()
        except (SQLAlchemyError, BillingError) as e:
            await self.db.rollback()
            logger.error(
                "Failed to apply billing event %s (%s): %s",
                event.id, event.type, e,
                exc_info=True,
                extra={"event_type": event.type},
            )
            raise BillingSyncError(f"Could not apply {event.type}") from e

        logger.info(
            "Billing event %s (%s) %s", event.id, event.type, outcome,
            extra={"event_type": event.type},
        )
        return outcome

    async def _on_checkout_completed(self, session: Mapping[str, Any]) -> str:
        checkout = StripeCheckoutSession.from_api_response(session)
        if session.get("mode") not in (None, "subscription") or not checkout.subscription_id:
            logger.info("Checkout session %s has no subscription, skipping", checkout.id)
            return SKIPPED

        subscription = await self._require_billing().retrieve_subscription(checkout.subscription_id)
        return await self._apply_subscription(subscription, fallback_metadata=checkout.metadata)

    async def _on_subscription_changed(self, data: Mapping[str, Any]) -> str:
        return await self._apply_subscription(StripeSubscription.from_api_response(data))

    async def _on_subscription_deleted(self, data: Mapping[str, Any]) -> str:
        subscription = StripeSubscription.from_api_response(data)
        row = await self._locate_row(subscription)
        if row is None:
            logger.warning("Deleted subscription %s matches no team, skipping", subscription.id)
            return SKIPPED
        if row.stripe_subscription_id and row.stripe_subscription_id != subscription.id:
            logger.info(
                "Team %s already moved from subscription %s to %s; ignoring deletion",
                row.team_id, subscription.id, row.stripe_subscription_id,
            )
            return SKIPPED

        # The row is kept so payment history and plan reference survive
        row.status = SubscriptionStatus.CANCELED.value
        row.canceled_at = subscription.canceled_at or datetime.now(timezone.utc)
        row.cancel_at_period_end = False
        row.stripe_subscription_id = subscription.id
        return APPLIED

    async def _on_payment_succeeded(self, data: Mapping[str, Any]) -> str:
        return await self._record_payment(StripeInvoice.from_api_response(data), succeeded=True)

    async def _on_payment_failed(self, data: Mapping[str, Any]) -> str:
        return await self._record_payment(StripeInvoice.from_api_response(data), succeeded=False)

    async def _record_payment(self, invoice: StripeInvoice, succeeded: bool) -> str:
        if not invoice.subscription_id:
            logger.info("Invoice %s is not tied to a subscription, skipping", invoice.id)
            return SKIPPED

        row = await self._find_by_subscription_id(invoice.subscription_id)
        if row is None and self.billing is not None:
            # Invoice arrived before the subscription events; pull the subscription first
            subscription = await self.billing.retrieve_subscription(invoice.subscription_id)
            if await self._apply_subscription(subscription) == APPLIED:
                row = await self._find_by_subscription_id(invoice.subscription_id)
        if row is None:
            logger.warning(
                "Invoice %s references unknown subscription %s, skipping",
                invoice.id, invoice.subscription_id,
            )
            return SKIPPED

        self.db.add(
            SubscriptionPayment(
                team_subscription_id=row.id,
                team_id=row.team_id,
                stripe_invoice_id=invoice.id,
                stripe_payment_intent_id=invoice.payment_intent_id,
                amount_cents=invoice.amount_paid if succeeded else invoice.amount_due,
                currency=invoice.currency,
                status=(PaymentStatus.SUCCEEDED if succeeded else PaymentStatus.FAILED).value,
                invoice_url=invoice.hosted_invoice_url,
                invoice_pdf=invoice.invoice_pdf,
                failure_code=None if succeeded else invoice.failure_code,
                failure_message=None if succeeded else invoice.failure_message,
                payment_date=invoice.created or datetime.now(timezone.utc),
            )
        )

        if row.status in _TERMINAL_STATUSES:
            logger.info(
                "Subscription %s is %s, recording invoice %s without a status change",
                row.stripe_subscription_id, row.status, invoice.id,
            )
        elif not succeeded:
            row.status = SubscriptionStatus.PAST_DUE.value
        elif row.status == SubscriptionStatus.PAST_DUE.value:
            row.status = SubscriptionStatus.ACTIVE.value
        return APPLIED

    # ------------------------------------------------------------------
    # Subscription upsert
    # ------------------------------------------------------------------

    async def _locate_row(
        self,
        subscription: StripeSubscription,
        team_id: Optional[str] = None,
    ) -> Optional[TeamSubscription]:
        if team_id:
            return await self.get_subscription(team_id)
        row = None
        if subscription.id:
            row = await self._find_by_subscription_id(subscription.id)
        if row is None and subscription.customer_id:
            row = await self._find_by_customer_id(subscription.customer_id)
        return row

    async def _resolve_plan(
        self,
        subscription: StripeSubscription,
        metadata_plan_id: Optional[str],
    ) -> Optional[Plan]:
        # The price wins: portal plan changes update the price, not the metadata
        for price_id in subscription.price_ids:
            plan = await self.catalog.resolve_plan_from_price_id(price_id)
            if plan is not None:
                return plan

        if metadata_plan_id:
            try:
                return await self.catalog.get_plan(metadata_plan_id)
            except PlanNotFound:
                plan = await self.catalog.get_plan_by_name(metadata_plan_id)
                if plan is not None:
                    return plan

        logger.warning(
            "Could not resolve a plan for subscription %s (prices=%s, metadata plan=%s)",
            subscription.id, subscription.price_ids, metadata_plan_id,
        )
        return None

    async def _apply_subscription(
        self,
        subscription: StripeSubscription,
        fallback_metadata: Optional[Mapping[str, str]] = None,
        team_id: Optional[str] = None,
    ) -> str:
        fallback_metadata = fallback_metadata or {}
        team_id = team_id or subscription.metadata.get("team_id") or fallback_metadata.get("team_id")
        existing = await self._locate_row(subscription, team_id)
        if team_id is None and existing is not None:
            team_id = existing.team_id
        if team_id is None:
            logger.warning("Subscription %s carries no team id and matches no team", subscription.id)
            return SKIPPED
        if await self.db.get(Team, team_id) is None:
            logger.warning("Subscription %s references unknown team %s", subscription.id, team_id)
            return SKIPPED

        status = normalize_status(subscription.status)
        if (
            existing is not None
            and existing.stripe_subscription_id
            and existing.stripe_subscription_id != subscription.id
            and existing.status in ENTITLED_STATUSES
            and status not in ENTITLED_STATUSES
        ):
            # Late event for a replaced subscription must not revoke the current one
            logger.info(
                "Ignoring %s for replaced subscription %s of team %s",
                status, subscription.id, team_id,
            )
            return SKIPPED

        plan = await self._resolve_plan(
            subscription,
            subscription.metadata.get("plan_id") or fallback_metadata.get("plan_id"),
        )
        interval = (
            BillingInterval.YEAR if subscription.interval == BillingInterval.YEAR.value
            else BillingInterval.MONTH
        )
        values = {
            "team_id": team_id,
            "plan_id": plan.id if plan else None,
            "stripe_customer_id": subscription.customer_id,
            "stripe_subscription_id": subscription.id,
            "status": status,
            "billing_interval": interval.value,
            "current_period_start": subscription.current_period_start,
            "current_period_end": subscription.current_period_end,
            "trial_start": subscription.trial_start,
            "trial_end": subscription.trial_end,
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "canceled_at": subscription.canceled_at,
        }
        await upsert(self.db, TeamSubscription, values, conflict_columns=["team_id"])
        # Refresh any instance of this row already held by the session
        await self.get_subscription(team_id)
        logger.info(
            "Team %s subscription %s is %s on plan %s",
            team_id, subscription.id, status, plan.name if plan else None,
            extra={"team_id": team_id},
        )
        return APPLIED

    # ------------------------------------------------------------------
    # Manual reconciliation and provider sessions
    # ------------------------------------------------------------------

    async def sync_from_provider(self, team_id: str) -> TeamSubscription:
        """
        Re-read the team's subscription from the provider and apply it.

        Recovers from missed webhooks. The entitled subscription of the stored
        customer is preferred, then the most recent one.

        Raises:
            SubscriptionNotFound: The team has no billing customer yet
            BillingSyncError: The state could not be persisted
        """
        row = await self.get_subscription(team_id)
        if row is None or not row.stripe_customer_id:
            raise SubscriptionNotFound("No billing customer on record for this team")

        subscriptions = await self._require_billing().list_subscriptions(row.stripe_customer_id)
        if not subscriptions:
            logger.info("Customer %s has no subscriptions to sync", row.stripe_customer_id)
            return row

        chosen = next(
            (s for s in subscriptions if normalize_status(s.status) in ENTITLED_STATUSES),
            subscriptions[0],
        )
        try:
            await self._apply_subscription(chosen, team_id=team_id)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Manual sync failed for team %s: %s", team_id, e, exc_info=True)
            raise BillingSyncError("Could not persist subscription state") from e

        logger.info("Manually synced team %s from subscription %s", team_id, chosen.id)
        return await self.get_subscription(team_id)

    async def ensure_customer(self, team_id: str, email: str, name: Optional[str] = None) -> str:
        """Return the team's billing customer id, creating the customer on first use."""
        row = await self.get_subscription(team_id)
        if row is not None and row.stripe_customer_id:
            return row.stripe_customer_id

        customer_id = await self._require_billing().create_customer(email, name, team_id)
        try:
            if row is None:
                self.db.add(TeamSubscription(team_id=team_id, stripe_customer_id=customer_id))
            else:
                row.stripe_customer_id = customer_id
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Could not store customer %s for team %s: %s", customer_id, team_id, e)
            raise BillingSyncError("Could not store billing customer") from e
        return customer_id

    async def start_checkout(
        self,
        team_id: str,
        plan_name: str,
        interval: BillingInterval,
        email: str,
        name: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> StripeCheckoutSession:
        """Create a checkout session for ``plan_name`` billed per ``interval``."""
        plan = await self.catalog.get_plan_by_name(plan_name)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_name} not found")
        price_id = (
            plan.stripe_price_id_annual if BillingInterval(interval) == BillingInterval.YEAR
            else plan.stripe_price_id_monthly
        )
        if not price_id:
            raise BillingConfigurationError(f"No price configured for {plan_name} ({interval})")

        customer_id = await self.ensure_customer(team_id, email, name)
        return await self._require_billing().create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            team_id=team_id,
            plan_id=plan.id,
            success_url=success_url,
            cancel_url=cancel_url,
        )

    async def open_portal(self, team_id: str, return_url: str) -> str:
        """Billing portal URL for the team's customer."""
        row = await self.get_subscription(team_id)
        if row is None or not row.stripe_customer_id:
            raise SubscriptionNotFound("No billing customer on record for this team")
        return await self._require_billing().create_portal_session(row.stripe_customer_id, return_url)
