"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .crm import CrmDeal
from .event import Event, EventStatus, Task
from .subscription import SubscriptionPayment, SubscriptionPlan, TeamSubscription
from .team import InvitationStatus, Team, TeamInvitation, TeamMember
from .user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "Team",
    "TeamMember",
    "TeamInvitation",
    "InvitationStatus",
    "Event",
    "EventStatus",
    "Task",
    "CrmDeal",
    "SubscriptionPlan",
    "TeamSubscription",
    "SubscriptionPayment",
]
