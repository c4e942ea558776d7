"""Payment adapters for billing and subscription management."""

from .stripe_adapter import (
    BillingEvent,
    StripeAdapter,
    StripeCheckoutSession,
    StripeInvoice,
    StripeSubscription,
    create_stripe_adapter,
    epoch_to_datetime,
)

__all__ = [
    "StripeAdapter",
    "StripeSubscription",
    "StripeInvoice",
    "StripeCheckoutSession",
    "BillingEvent",
    "create_stripe_adapter",
    "epoch_to_datetime",
]
