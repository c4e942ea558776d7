"""
Stripe billing adapter for subscription management.

Wraps the synchronous Stripe SDK for customer creation, hosted checkout,
the billing portal, subscription retrieval, and webhook verification.
Every call passes the API key explicitly instead of mutating the
module-level ``stripe.api_key``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import stripe

from core.errors import (
    BillingConfigurationError,
    BillingError,
    BillingPayloadError,
    BillingSignatureError,
)
from core.interfaces.services import BillingProvider
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


def epoch_to_datetime(value: Any) -> Optional[datetime]:
    """Convert a Stripe epoch-seconds timestamp; zero, missing or garbage map to None."""
    if value is None or value == "":
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _expandable_id(value: Any) -> Optional[str]:
    """Return the id of an expandable field that may be a string or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


# Dataclasses
@dataclass
class StripeSubscription:
    """Stripe subscription state relevant to the stored team subscription."""

    id: str
    customer_id: Optional[str]
    status: str
    price_ids: list[str] = field(default_factory=list)
    interval: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    created: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def price_id(self) -> Optional[str]:
        return self.price_ids[0] if self.price_ids else None

    @classmethod
    def from_api_response(cls, data: Mapping[str, Any]) -> "StripeSubscription":
        """Create subscription from an API object or webhook ``data.object``."""
        items = (data.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}

        price_ids = []
        interval = None
        for item in items:
            price = item.get("price") or item.get("plan") or {}
            price_id = _expandable_id(price)
            if price_id:
                price_ids.append(price_id)
            if interval is None and not isinstance(price, str):
                interval = (price.get("recurring") or {}).get("interval") or price.get("interval")

        # Newer API versions report the billing period per item
        period_start = data.get("current_period_start") or first_item.get("current_period_start")
        period_end = data.get("current_period_end") or first_item.get("current_period_end")

        return cls(
            id=data.get("id", ""),
            customer_id=_expandable_id(data.get("customer")),
            status=data.get("status") or "",
            price_ids=price_ids,
            interval=interval,
            current_period_start=epoch_to_datetime(period_start),
            current_period_end=epoch_to_datetime(period_end),
            trial_start=epoch_to_datetime(data.get("trial_start")),
            trial_end=epoch_to_datetime(data.get("trial_end")),
            cancel_at_period_end=bool(data.get("cancel_at_period_end")),
            canceled_at=epoch_to_datetime(data.get("canceled_at")),
            created=epoch_to_datetime(data.get("created")),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert subscription to dictionary format."""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status,
            "price_ids": list(self.price_ids),
            "interval": self.interval,
            "current_period_start": self.current_period_start.isoformat() if self.current_period_start else None,
            "current_period_end": self.current_period_end.isoformat() if self.current_period_end else None,
            "trial_start": self.trial_start.isoformat() if self.trial_start else None,
            "trial_end": self.trial_end.isoformat() if self.trial_end else None,
            "cancel_at_period_end": self.cancel_at_period_end,
            "canceled_at": self.canceled_at.isoformat() if self.canceled_at else None,
            "metadata": dict(self.metadata),
        }


@dataclass
class StripeInvoice:
    """Invoice fields recorded in payment history."""

    id: str
    customer_id: Optional[str]
    subscription_id: Optional[str]
    payment_intent_id: Optional[str]
    amount_paid: int
    amount_due: int
    currency: str
    hosted_invoice_url: Optional[str] = None
    invoice_pdf: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    created: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: Mapping[str, Any]) -> "StripeInvoice":
        subscription_id = _expandable_id(data.get("subscription"))
        if subscription_id is None:
            # Newer API versions nest the subscription under ``parent``
            details = (data.get("parent") or {}).get("subscription_details") or {}
            subscription_id = _expandable_id(details.get("subscription"))

        error = data.get("last_finalization_error") or {}
        return cls(
            id=data.get("id", ""),
            customer_id=_expandable_id(data.get("customer")),
            subscription_id=subscription_id,
            payment_intent_id=_expandable_id(data.get("payment_intent")),
            amount_paid=int(data.get("amount_paid") or 0),
            amount_due=int(data.get("amount_due") or 0),
            currency=(data.get("currency") or "eur").lower(),
            hosted_invoice_url=data.get("hosted_invoice_url"),
            invoice_pdf=data.get("invoice_pdf"),
            failure_code=error.get("code"),
            failure_message=error.get("message"),
            created=epoch_to_datetime(data.get("created")),
        )


@dataclass
class StripeCheckoutSession:
    """Hosted checkout session."""

    id: str
    url: Optional[str]
    customer_id: Optional[str]
    subscription_id: Optional[str]
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: Mapping[str, Any]) -> "StripeCheckoutSession":
        return cls(
            id=data.get("id", ""),
            url=data.get("url"),
            customer_id=_expandable_id(data.get("customer")),
            subscription_id=_expandable_id(data.get("subscription")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class BillingEvent:
    """A webhook event whose authenticity has been established."""

    id: Optional[str]
    type: str
    data: dict[str, Any]
    created: Optional[datetime] = None
    livemode: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BillingEvent":
        """Create event from a decoded webhook body."""
        event_type = payload.get("type")
        data = (payload.get("data") or {}).get("object")
        if not isinstance(event_type, str) or not isinstance(data, Mapping):
            raise BillingPayloadError("Webhook payload is missing type or data.object")
        return cls(
            id=payload.get("id"),
            type=event_type,
            data=dict(data),
            created=epoch_to_datetime(payload.get("created")),
            livemode=bool(payload.get("livemode")),
        )


class StripeAdapter(BillingProvider):
    """
    Stripe API adapter for subscription billing.

    The SDK is synchronous, so each request runs in a worker thread to keep
    the event loop responsive.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        allow_unverified_webhooks: bool = False,
    ):
        """
        Initialize Stripe adapter.

        Args:
            api_key: Stripe secret key
            webhook_secret: Webhook endpoint signing secret
            allow_unverified_webhooks: Development-only escape hatch that
                accepts webhook payloads when no signing secret is configured
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.allow_unverified_webhooks = allow_unverified_webhooks

        if not self.api_key:
            logger.warning("Stripe API key not configured. Set STRIPE_SECRET_KEY in settings.")

    async def _request(self, operation, **params) -> Any:
        """Run a Stripe SDK call off the event loop and normalize its errors."""
        if not self.api_key:
            raise BillingConfigurationError("Payment system not configured")
        try:
            return await asyncio.to_thread(operation, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error("Stripe API error: %s", e.user_message or str(e))
            raise BillingError(f"Stripe request failed: {e.user_message or e}") from e

    async def create_customer(self, email: str, name: Optional[str], team_id: str) -> str:
        """Create a Stripe customer tagged with the team id."""
        customer = await self._request(
            stripe.Customer.create,
            email=email,
            name=name or None,
            metadata={"team_id": team_id},
        )
        logger.info("Created Stripe customer %s for team %s", customer["id"], team_id)
        return customer["id"]

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        team_id: str,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> StripeCheckoutSession:
        """
        Create a subscription checkout session.

        The team and plan ids are attached both to the session and to the
        subscription it creates, so later subscription events carry them.
        """
        metadata = {"team_id": team_id, "plan_id": plan_id}
        session = await self._request(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
        )
        logger.info("Created checkout session %s for team %s", session["id"], team_id)
        return StripeCheckoutSession.from_api_response(session)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        session = await self._request(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session["url"]

    async def retrieve_subscription(self, subscription_id: str) -> StripeSubscription:
        """Fetch a subscription with its prices expanded."""
        subscription = await self._request(
            stripe.Subscription.retrieve,
            id=subscription_id,
            expand=["items.data.price"],
        )
        return StripeSubscription.from_api_response(subscription)

    async def list_subscriptions(self, customer_id: str) -> list[StripeSubscription]:
        """List all subscriptions of a customer, including canceled ones, newest first."""
        result = await self._request(
            stripe.Subscription.list,
            customer=customer_id,
            status="all",
            limit=20,
        )
        subscriptions = [
            StripeSubscription.from_api_response(item) for item in result.get("data", [])
        ]
        subscriptions.sort(
            key=lambda s: s.created or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        return subscriptions

    def construct_event(self, payload: bytes, signature: Optional[str]) -> BillingEvent:
        """
        Verify a webhook delivery and decode it.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the ``Stripe-Signature`` header

        Returns:
            BillingEvent built from the verified payload

        Raises:
            BillingSignatureError: Signature missing or invalid
            BillingConfigurationError: No signing secret and no development bypass
            BillingPayloadError: Body is not a valid event
        """
        if self.webhook_secret:
            if not signature:
                logger.warning("Webhook received without signature")
                raise BillingSignatureError("Missing webhook signature")
            try:
                stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            except stripe.SignatureVerificationError as e:
                logger.error("Webhook signature verification failed: %s", e)
                raise BillingSignatureError("Invalid webhook signature") from e
            except ValueError as e:
                logger.error("Invalid JSON in webhook payload: %s", e)
                raise BillingPayloadError("Invalid webhook payload") from e
        elif self.allow_unverified_webhooks:
            logger.warning(
                "STRIPE_WEBHOOK_SECRET not set - accepting webhook without signature verification"
            )
        else:
            logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET not configured")
            raise BillingConfigurationError("Webhook verification not configured")

        try:
            body = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Invalid JSON in webhook payload: %s", e)
            raise BillingPayloadError("Invalid webhook payload") from e
        if not isinstance(body, dict):
            raise BillingPayloadError("Invalid webhook payload")
        return BillingEvent.from_payload(body)


# Factory function for easy instantiation
def create_stripe_adapter(
    api_key: Optional[str] = None,
    webhook_secret: Optional[str] = None,
    allow_unverified_webhooks: Optional[bool] = None,
) -> StripeAdapter:
    """
    Create a Stripe adapter instance.

    Args:
        api_key: Stripe secret key (defaults to settings)
        webhook_secret: Webhook signing secret (defaults to settings)
        allow_unverified_webhooks: Development bypass (defaults to settings,
            and is never honored in production)

    Returns:
        StripeAdapter instance
    """
    if allow_unverified_webhooks is None:
        allow_unverified_webhooks = settings.stripe_allow_unverified_webhooks
    return StripeAdapter(
        api_key=api_key or settings.stripe_secret_key,
        webhook_secret=webhook_secret or settings.stripe_webhook_secret,
        allow_unverified_webhooks=allow_unverified_webhooks and not settings.is_production,
    )
