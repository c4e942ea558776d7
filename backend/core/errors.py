"""
Engine exception hierarchy.

Services raise these; the API layer maps each one to an HTTP response in
main.py.
"""

from typing import Optional, Union

from core.domain.entitlement import FeatureCheck, LimitCheck


class EngineError(Exception):
    """Base exception for team, entitlement and billing errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


# ============================================================================
# Not found
# ============================================================================


class NotFoundError(EngineError):
    """Requested resource does not exist."""

    status_code = 404
    code = "not_found"


class TeamNotFound(NotFoundError):
    """Team not found."""

    code = "team_not_found"


class EventNotFound(NotFoundError):
    """Event not found."""

    code = "event_not_found"


class MemberNotFound(NotFoundError):
    """Team member not found."""

    code = "member_not_found"


class InvitationNotFound(NotFoundError):
    """Invitation not found."""

    code = "invitation_not_found"


class PlanNotFound(NotFoundError):
    """Subscription plan not found."""

    code = "plan_not_found"


class SubscriptionNotFound(NotFoundError):
    """No subscription on record for this team."""

    code = "subscription_not_found"


# ============================================================================
# Authentication and authorization
# ============================================================================


class Unauthenticated(EngineError):
    """Not authenticated."""

    status_code = 401
    code = "unauthenticated"


class PermissionDenied(EngineError):
    """Identity present but lacks the required permission."""

    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "", permission: Optional[str] = None):
        self.permission = permission
        super().__init__(message or "You do not have permission to perform this action")


class CrossTenantAccess(PermissionDenied):
    """Resource belongs to a different team."""

    code = "cross_tenant"


class ImmutableOwnerPermissions(PermissionDenied):
    """The team owner's permissions cannot be changed."""

    code = "immutable_owner_permissions"


# ============================================================================
# Team provisioning and invitations
# ============================================================================


class TeamUnavailable(EngineError):
    """The user's team could not be resolved or provisioned."""

    status_code = 503
    code = "team_unavailable"


class InvitationError(EngineError):
    """Invitation cannot be used."""

    status_code = 400
    code = "invalid_invitation"


class InvitationConflict(InvitationError):
    """Invitation conflicts with an existing membership."""

    status_code = 409
    code = "invitation_conflict"


# ============================================================================
# Entitlements
# ============================================================================


class EntitlementExceeded(EngineError):
    """Plan limit reached; carries the check so clients can offer an upgrade."""

    status_code = 402
    code = "payment_required"

    def __init__(self, check: Union[LimitCheck, FeatureCheck], message: str = ""):
        self.check = check
        self.code = check.error_code
        if not message:
            if isinstance(check, LimitCheck):
                message = (
                    f"The {check.plan_name} plan allows {check.limit} "
                    f"{check.dimension.value.replace('_', ' ')}; upgrade to {check.required_plan} for more"
                )
            else:
                message = (
                    f"{check.feature.value.replace('_', ' ').capitalize()} is not included in the "
                    f"{check.plan_name} plan; upgrade to {check.required_plan}"
                )
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {
            "error": self.code,
            "message": self.message,
            "plan_name": self.check.plan_name,
            "required_plan": self.check.required_plan,
        }
        if isinstance(self.check, LimitCheck):
            body["current"] = self.check.current
            body["limit"] = self.check.limit
        else:
            body["feature"] = self.check.feature.value
        return body


# ============================================================================
# Billing
# ============================================================================


class BillingError(EngineError):
    """Billing provider error."""

    status_code = 502
    code = "billing_error"


class BillingConfigurationError(BillingError):
    """Billing is not configured."""

    status_code = 503
    code = "billing_not_configured"


class BillingSignatureError(BillingError):
    """Webhook signature could not be verified."""

    status_code = 401
    code = "invalid_signature"


class BillingPayloadError(BillingError):
    """Webhook payload is malformed."""

    status_code = 400
    code = "invalid_payload"


class BillingSyncError(BillingError):
    """Subscription state could not be persisted."""

    status_code = 500
    code = "billing_sync_failed"
