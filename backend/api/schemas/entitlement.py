"""
Entitlement check schemas.
"""

from typing import Optional

from pydantic import BaseModel, Field


class LimitCheckResponse(BaseModel):
    """Result of a quota check."""

    dimension: str
    allowed: bool
    current: int
    limit: Optional[int] = Field(None, description="None when the plan is unlimited")
    plan_name: str
    required_plan: Optional[str] = None


class FeatureCheckResponse(BaseModel):
    """Result of a feature gate."""

    feature: str
    allowed: bool
    plan_name: str
    required_plan: Optional[str] = None


class EntitlementSummaryResponse(BaseModel):
    """Effective plan with every team-wide quota and feature."""

    plan_name: str
    display_name: str
    limits: dict
    usage: list[LimitCheckResponse]
    features: list[FeatureCheckResponse]


class PaymentRequiredResponse(BaseModel):
    """Body of a 402 response."""

    error: str = Field(..., description="Machine-readable code, e.g. event_limit_reached")
    message: str
    plan_name: str
    required_plan: Optional[str] = None
    current: Optional[int] = None
    limit: Optional[int] = None
    feature: Optional[str] = None
