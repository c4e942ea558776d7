"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits and features.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies. Plan rows in the database are
seeded from here; a team with no entitled subscription falls back to
the starter limits.
"""

from typing import Optional

from core.domain.subscription import UNLIMITED, PlanName

# Plan configuration with features and limits (nested limits JSON as stored)
PLANS = {
    PlanName.STARTER.value: {
        "display_name": "Starter",
        "monthly_price_cents": 2900,
        "annual_price_cents": 29000,  # ~17% discount
        "sort_order": 1,
        "features": [
            "Up to 8 active events",
            "30 tasks per event",
            "150 CRM deals",
            "Guest list and layout maker",
        ],
        "limits": {
            "events": {"maxActive": 8},
            "team": {"maxMembers": 1, "canInvite": True},
            "contacts": {"teamShared": False},
            "suppliers": {"teamShared": False},
            "tasks": {"maxPerEvent": 30, "assignment": False},
            "chat": {"enabled": False},
            "crm": {"maxDeals": 150},
        },
    },
    PlanName.PROFESSIONAL.value: {
        "display_name": "Professional",
        "monthly_price_cents": 6900,
        "annual_price_cents": 69000,
        "sort_order": 2,
        "features": [
            "Up to 30 active events",
            "8 team members",
            "Shared contacts and suppliers",
            "Task assignment and team chat",
            "1000 CRM deals",
        ],
        "limits": {
            "events": {"maxActive": 30},
            "team": {"maxMembers": 8, "canInvite": True},
            "contacts": {"teamShared": True},
            "suppliers": {"teamShared": True},
            "tasks": {"maxPerEvent": 150, "assignment": True},
            "chat": {"enabled": True},
            "crm": {"maxDeals": 1000},
        },
    },
    PlanName.ENTERPRISE.value: {
        "display_name": "Enterprise",
        "monthly_price_cents": 14900,
        "annual_price_cents": 149000,
        "sort_order": 3,
        "features": [
            "Unlimited active events",
            "25 team members",
            "Unlimited tasks and CRM deals",
            "Everything in Professional",
        ],
        "limits": {
            "events": {"maxActive": UNLIMITED},
            "team": {"maxMembers": 25, "canInvite": True},
            "contacts": {"teamShared": True},
            "suppliers": {"teamShared": True},
            "tasks": {"maxPerEvent": UNLIMITED, "assignment": True},
            "chat": {"enabled": True},
            "crm": {"maxDeals": UNLIMITED},
        },
    },
}

# One-step upgrade ladder used in payment-required responses
UPGRADE_PATH = {
    PlanName.STARTER.value: PlanName.PROFESSIONAL.value,
}


def suggest_upgrade(plan_name: Optional[str]) -> str:
    """Plan to suggest when a limit or feature gate blocks an action."""
    return UPGRADE_PATH.get(plan_name or PlanName.STARTER.value, PlanName.ENTERPRISE.value)
