"""Team membership and permission domain model."""
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Mapping, Optional, Union


class TeamRole(str, Enum):
    """Role of a user within their team."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


PERMISSION_FLAGS = (
    "can_manage_team",
    "can_manage_billing",
    "can_view_billing",
    "can_manage_settings",
    "can_create_events",
    "can_view_all_events",
    "can_delete_events",
    "can_invite_members",
)


@dataclass(frozen=True)
class PermissionSet:
    """Concrete capabilities of a user within a team."""

    can_manage_team: bool = False
    can_manage_billing: bool = False
    can_view_billing: bool = False
    can_manage_settings: bool = False
    can_create_events: bool = False
    can_view_all_events: bool = False
    can_delete_events: bool = False
    can_invite_members: bool = False

    def __post_init__(self):
        # Managing billing always includes seeing it
        if self.can_manage_billing and not self.can_view_billing:
            object.__setattr__(self, "can_view_billing", True)

    @classmethod
    def full(cls) -> "PermissionSet":
        return cls(**{name: True for name in PERMISSION_FLAGS})

    def allows(self, permission: str) -> bool:
        if permission not in PERMISSION_FLAGS:
            raise ValueError(f"Unknown permission: {permission}")
        return getattr(self, permission)

    def merge(self, changes: Mapping[str, Optional[bool]]) -> "PermissionSet":
        """Apply a partial update; ``None`` values leave the flag unchanged."""
        unknown = set(changes) - set(PERMISSION_FLAGS)
        if unknown:
            raise ValueError(f"Unknown permissions: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# Role defaults applied when a stored flag is absent
ROLE_DEFAULTS: dict[TeamRole, dict[str, bool]] = {
    TeamRole.ADMIN: {
        "can_manage_team": True,
        "can_view_billing": True,
        "can_invite_members": True,
        "can_create_events": True,
        "can_view_all_events": True,
    },
    TeamRole.MEMBER: {
        "can_create_events": True,
        "can_view_all_events": True,
    },
}


def derive_permissions(
    role: Union[TeamRole, str],
    stored_flags: Optional[Mapping[str, Optional[bool]]] = None,
) -> PermissionSet:
    """
    Derive the capability set for a role.

    Owners receive every permission regardless of ``stored_flags``. Admins
    and members start from their role defaults, and any stored flag that is
    not ``None`` overrides the default.

    Args:
        role: Team role
        stored_flags: Persisted permission columns, possibly partial

    Returns:
        PermissionSet honoring ``can_manage_billing => can_view_billing``
    """
    role = TeamRole(role)
    if role == TeamRole.OWNER:
        return PermissionSet.full()

    values = {name: False for name in PERMISSION_FLAGS}
    values.update(ROLE_DEFAULTS[role])
    for name, value in (stored_flags or {}).items():
        if name in values and value is not None:
            values[name] = bool(value)
    return PermissionSet(**values)


@dataclass(frozen=True)
class OwnerMembership:
    """Implicit membership of a team's owner; no row backs it."""

    team_id: str
    user_id: str

    role = TeamRole.OWNER

    @property
    def member_id(self) -> None:
        return None

    @property
    def permissions(self) -> PermissionSet:
        return PermissionSet.full()

    def can(self, permission: str) -> bool:
        return self.permissions.allows(permission)


@dataclass(frozen=True)
class MemberMembership:
    """Membership backed by a ``team_members`` row."""

    team_id: str
    user_id: str
    member_id: str
    role: TeamRole
    permissions: PermissionSet

    def can(self, permission: str) -> bool:
        return self.permissions.allows(permission)


Membership = Union[OwnerMembership, MemberMembership]


@dataclass(frozen=True)
class ResolvedTeam:
    """Outcome of resolving the team a user belongs to."""

    team_id: str
    team_name: str
    owner_id: str
    membership: Membership
    provisioned: bool = False

    @property
    def role(self) -> TeamRole:
        return self.membership.role

    @property
    def permissions(self) -> PermissionSet:
        return self.membership.permissions

    @property
    def is_owner(self) -> bool:
        return isinstance(self.membership, OwnerMembership)
