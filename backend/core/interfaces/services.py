"""Service interfaces for external integrations."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from adapters.payments.stripe_adapter import (
        BillingEvent,
        StripeCheckoutSession,
        StripeSubscription,
    )


class BillingProvider(ABC):
    """Abstract billing provider consulted by the subscription synchronizer."""

    @abstractmethod
    async def create_customer(self, email: str, name: str | None, team_id: str) -> str:
        """Create a customer and return its provider id."""
        ...

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        team_id: str,
        plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> "StripeCheckoutSession":
        """Create a hosted checkout session for a subscription."""
        ...

    @abstractmethod
    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a self-service billing portal session and return its URL."""
        ...

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> "StripeSubscription":
        """Fetch the current state of one subscription."""
        ...

    @abstractmethod
    async def list_subscriptions(self, customer_id: str) -> list["StripeSubscription"]:
        """List every subscription of a customer, newest first."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str | None) -> "BillingEvent":
        """Verify a webhook delivery and return the trusted event."""
        ...
