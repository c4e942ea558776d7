# Domain Entities
# Pure business objects with no external dependencies
from .access import AccessAllowed, AccessDenied, AccessNotFound, AccessResult, DenialReason
from .entitlement import Feature, FeatureCheck, LimitCheck, LimitDimension
from .subscription import (
    STARTER_PLAN,
    UNLIMITED,
    BillingInterval,
    PaymentStatus,
    Plan,
    PlanLimits,
    PlanName,
    SubscriptionStatus,
)
from .team import (
    MemberMembership,
    Membership,
    OwnerMembership,
    PermissionSet,
    ResolvedTeam,
    TeamRole,
    derive_permissions,
)

__all__ = [
    "AccessAllowed",
    "AccessDenied",
    "AccessNotFound",
    "AccessResult",
    "DenialReason",
    "Feature",
    "FeatureCheck",
    "LimitCheck",
    "LimitDimension",
    "STARTER_PLAN",
    "UNLIMITED",
    "BillingInterval",
    "PaymentStatus",
    "Plan",
    "PlanLimits",
    "PlanName",
    "SubscriptionStatus",
    "MemberMembership",
    "Membership",
    "OwnerMembership",
    "PermissionSet",
    "ResolvedTeam",
    "TeamRole",
    "derive_permissions",
]
