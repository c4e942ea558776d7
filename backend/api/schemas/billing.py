"""
Billing and subscription request/response schemas.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from core.domain.subscription import BillingInterval, PlanName


class PlanInfo(BaseModel):
    """Information about a subscription plan."""

    id: str | None = Field(None, description="Plan row id")
    name: str = Field(..., description="Plan name (starter, professional, enterprise)")
    display_name: str = Field(..., description="Display name of the plan")
    monthly_price_cents: int = Field(..., description="Monthly price in cents (EUR)")
    annual_price_cents: int = Field(..., description="Annual price in cents (EUR)")
    limits: dict = Field(..., description="Nested quota and feature object (-1 for unlimited)")


class PricingResponse(BaseModel):
    """Response containing all available pricing plans."""

    plans: list[PlanInfo] = Field(..., description="List of all available plans")


class SubscriptionResponse(BaseModel):
    """Stored team subscription together with the plan in effect."""

    team_id: str
    effective_plan: PlanInfo
    status: str | None = Field(None, description="Subscription status, None when never subscribed")
    billing_interval: str | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    can_manage: bool = Field(..., description="Whether the user may manage billing")


class PaymentResponse(BaseModel):
    """Recorded invoice payment."""

    id: str
    stripe_invoice_id: str | None = None
    amount_cents: int
    currency: str
    status: str
    invoice_url: str | None = None
    invoice_pdf: str | None = None
    failure_message: str | None = None
    payment_date: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(BaseModel):
    payments: list[PaymentResponse]


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    plan: PlanName = Field(..., description="Plan to subscribe to")
    billing_interval: BillingInterval = Field(BillingInterval.MONTH, description="month or year")
    success_url: str | None = Field(None, description="Defaults to the frontend billing page")
    cancel_url: str | None = Field(None, description="Defaults to the frontend billing page")

    model_config = {
        "json_schema_extra": {"example": {"plan": "professional", "billing_interval": "month"}}
    }


class CheckoutResponse(BaseModel):
    """Response containing checkout URL."""

    checkout_url: str = Field(..., description="URL to redirect user to for checkout")
    session_id: str


class CustomerPortalResponse(BaseModel):
    """Response containing customer portal URL."""

    portal_url: str = Field(..., description="URL to the billing portal")


class WebhookResponse(BaseModel):
    received: bool = True
    status: str = Field(..., description="applied, skipped, ignored or duplicate")
