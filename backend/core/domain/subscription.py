"""Subscription and plan domain entities."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

UNLIMITED = -1


class PlanName(str, Enum):
    """Named subscription plans."""
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Stored subscription status, mirroring the billing provider vocabulary."""
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"
    PAUSED = "paused"


# Statuses that entitle a team to its paid plan
ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)

# Provider statuses folded into the stored vocabulary
_STATUS_ALIASES = {
    "incomplete_expired": SubscriptionStatus.EXPIRED.value,
    "unpaid": SubscriptionStatus.EXPIRED.value,
}


def normalize_status(raw: Optional[str]) -> str:
    """Map a provider status onto the stored vocabulary."""
    if not raw:
        return SubscriptionStatus.INCOMPLETE.value
    if raw in _STATUS_ALIASES:
        return _STATUS_ALIASES[raw]
    try:
        return SubscriptionStatus(raw).value
    except ValueError:
        logger.warning("Unknown subscription status from billing provider: %s", raw)
        return raw


class BillingInterval(str, Enum):
    """Billing interval options."""
    MONTH = "month"
    YEAR = "year"


class PaymentStatus(str, Enum):
    """Status of a recorded invoice payment."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class PlanLimits:
    """Quotas and feature flags of a plan. ``-1`` on a quota means unlimited."""

    events_max_active: int = 8
    team_max_members: int = 1
    team_can_invite: bool = True
    tasks_max_per_event: int = 30
    tasks_assignment: bool = False
    crm_max_deals: int = 150
    contacts_team_shared: bool = False
    suppliers_team_shared: bool = False
    chat_enabled: bool = False

    # (attribute, section, key) for the nested JSON stored per plan
    _LAYOUT = (
        ("events_max_active", "events", "maxActive"),
        ("team_max_members", "team", "maxMembers"),
        ("team_can_invite", "team", "canInvite"),
        ("tasks_max_per_event", "tasks", "maxPerEvent"),
        ("tasks_assignment", "tasks", "assignment"),
        ("crm_max_deals", "crm", "maxDeals"),
        ("contacts_team_shared", "contacts", "teamShared"),
        ("suppliers_team_shared", "suppliers", "teamShared"),
        ("chat_enabled", "chat", "enabled"),
    )

    @classmethod
    def from_json(cls, data: Optional[Mapping[str, Any]]) -> "PlanLimits":
        """Parse the nested limits object; missing keys keep the starter default."""
        defaults = cls()
        values = {}
        for attr, section, key in cls._LAYOUT:
            default = getattr(defaults, attr)
            block = (data or {}).get(section)
            raw = block.get(key) if isinstance(block, Mapping) else None
            if raw is None:
                values[attr] = default
            elif isinstance(default, bool):
                values[attr] = bool(raw)
            else:
                try:
                    values[attr] = int(raw)
                except (TypeError, ValueError):
                    logger.warning("Ignoring malformed plan limit %s.%s=%r", section, key, raw)
                    values[attr] = default
        return cls(**values)

    def to_json(self) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for attr, section, key in self._LAYOUT:
            result.setdefault(section, {})[key] = getattr(self, attr)
        return result


@dataclass(frozen=True)
class Plan:
    """A subscription plan as seen by the entitlement engine."""

    id: Optional[str]
    name: str
    display_name: str
    limits: PlanLimits = field(default_factory=PlanLimits)
    stripe_price_id_monthly: Optional[str] = None
    stripe_price_id_annual: Optional[str] = None
    monthly_price_cents: int = 0
    annual_price_cents: int = 0


STARTER_PLAN = Plan(
    id=None,
    name=PlanName.STARTER.value,
    display_name="Starter",
    limits=PlanLimits(),
)
