"""Entitlement check results."""
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional


class LimitDimension(str, Enum):
    """Counted quotas enforced before a resource is created."""
    EVENTS = "events"
    TEAM_MEMBERS = "team_members"
    TASKS = "tasks"
    CRM_DEALS = "crm_deals"


class Feature(str, Enum):
    """Boolean feature gates."""
    CHAT = "chat"
    TASK_ASSIGNMENT = "task_assignment"
    CONTACTS_SHARING = "contacts_sharing"
    SUPPLIERS_SHARING = "suppliers_sharing"


# Error codes surfaced to clients when a check fails
LIMIT_ERROR_CODES = {
    LimitDimension.EVENTS: "event_limit_reached",
    LimitDimension.TEAM_MEMBERS: "member_limit_reached",
    LimitDimension.TASKS: "task_limit_reached",
    LimitDimension.CRM_DEALS: "deal_limit_reached",
}

FEATURE_ERROR_CODES = {
    Feature.CHAT: "chat_not_available",
    Feature.TASK_ASSIGNMENT: "task_assignment_not_available",
    Feature.CONTACTS_SHARING: "contacts_sharing_not_available",
    Feature.SUPPLIERS_SHARING: "suppliers_sharing_not_available",
}


@dataclass(frozen=True)
class LimitCheck:
    """Result of a quota check. ``limit`` is None when the plan is unlimited."""

    dimension: LimitDimension
    allowed: bool
    current: int
    limit: Optional[int]
    plan_name: str
    required_plan: Optional[str] = None

    @property
    def error_code(self) -> str:
        return LIMIT_ERROR_CODES[self.dimension]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["dimension"] = self.dimension.value
        return data


@dataclass(frozen=True)
class FeatureCheck:
    """Result of a boolean feature gate."""

    feature: Feature
    allowed: bool
    plan_name: str
    required_plan: Optional[str] = None

    @property
    def error_code(self) -> str:
        return FEATURE_ERROR_CODES[self.feature]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["feature"] = self.feature.value
        return data
