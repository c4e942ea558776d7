"""Tagged results of event access checks."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class DenialReason(str, Enum):
    """Why an identified user was refused; kept distinct for audit logs."""
    NOT_CREATOR = "not_creator"
    CROSS_TENANT = "cross_tenant"


@dataclass(frozen=True)
class AccessAllowed:
    event: Any

    allowed = True


@dataclass(frozen=True)
class AccessDenied:
    event_id: str
    reason: DenialReason

    allowed = False


@dataclass(frozen=True)
class AccessNotFound:
    event_id: str

    allowed = False


AccessResult = Union[AccessAllowed, AccessDenied, AccessNotFound]
