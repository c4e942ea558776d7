"""
Unit tests for role-based permission derivation.

Covers:
- Owner receives every permission regardless of stored flags
- Admin and member role defaults
- Stored flags overriding defaults
- The billing implication (manage => view)
- Partial updates through PermissionSet.merge
- ensure_permission on resolved memberships
"""

import pytest

from core.domain.team import (
    PERMISSION_FLAGS,
    MemberMembership,
    OwnerMembership,
    PermissionSet,
    ResolvedTeam,
    TeamRole,
    derive_permissions,
)
from core.errors import PermissionDenied
from services.permissions import ensure_permission


def _resolved(membership) -> ResolvedTeam:
    return ResolvedTeam(
        team_id="team-1",
        team_name="Bloom Weddings",
        owner_id="owner-1",
        membership=membership,
    )


class TestDerivePermissions:
    """Tests for derive_permissions."""

    def test_owner_has_every_permission(self):
        """Owner should receive the full permission set."""
        permissions = derive_permissions(TeamRole.OWNER)
        assert all(getattr(permissions, name) for name in PERMISSION_FLAGS)

    def test_owner_ignores_stored_flags(self):
        """Stored flags cannot take a permission away from the owner."""
        permissions = derive_permissions("owner", {"can_manage_billing": False})
        assert permissions.can_manage_billing is True
        assert permissions == PermissionSet.full()

    def test_member_defaults(self):
        """Members can create and view events and nothing else."""
        permissions = derive_permissions(TeamRole.MEMBER)
        assert permissions.can_create_events is True
        assert permissions.can_view_all_events is True
        assert permissions.can_manage_team is False
        assert permissions.can_manage_billing is False
        assert permissions.can_view_billing is False
        assert permissions.can_invite_members is False

    def test_admin_defaults(self):
        """Admins manage the team and invite, but do not manage billing."""
        permissions = derive_permissions(TeamRole.ADMIN)
        assert permissions.can_manage_team is True
        assert permissions.can_invite_members is True
        assert permissions.can_view_billing is True
        assert permissions.can_manage_billing is False
        assert permissions.can_delete_events is False

    def test_stored_flags_override_defaults(self):
        """A stored False beats a role default of True, and vice versa."""
        permissions = derive_permissions(
            TeamRole.MEMBER,
            {"can_create_events": False, "can_delete_events": True},
        )
        assert permissions.can_create_events is False
        assert permissions.can_delete_events is True

    def test_none_flags_keep_default(self):
        """None in stored flags leaves the role default in place."""
        permissions = derive_permissions(TeamRole.ADMIN, {"can_manage_team": None})
        assert permissions.can_manage_team is True

    def test_unknown_stored_flags_are_ignored(self):
        """Columns that are not permissions do not leak into the set."""
        permissions = derive_permissions(TeamRole.MEMBER, {"is_superuser": True})
        assert "is_superuser" not in permissions.to_dict()

    def test_manage_billing_implies_view_billing(self):
        """Granting billing management always grants billing visibility."""
        permissions = derive_permissions(
            TeamRole.MEMBER,
            {"can_manage_billing": True, "can_view_billing": False},
        )
        assert permissions.can_manage_billing is True
        assert permissions.can_view_billing is True

    def test_unknown_role_raises(self):
        """Unknown roles are rejected."""
        with pytest.raises(ValueError):
            derive_permissions("viewer")


class TestPermissionSet:
    """Tests for PermissionSet helpers."""

    def test_merge_applies_partial_update(self):
        """Only flags present in the update change."""
        base = derive_permissions(TeamRole.MEMBER)
        updated = base.merge({"can_invite_members": True, "can_create_events": None})
        assert updated.can_invite_members is True
        assert updated.can_create_events is True
        assert updated.can_manage_team is False

    def test_merge_keeps_billing_implication(self):
        """Merging in billing management also turns on billing visibility."""
        updated = PermissionSet().merge({"can_manage_billing": True})
        assert updated.can_view_billing is True

    def test_merge_rejects_unknown_flags(self):
        """Unknown flag names raise ValueError."""
        with pytest.raises(ValueError, match="can_fly"):
            PermissionSet().merge({"can_fly": True})

    def test_allows_unknown_permission_raises(self):
        """Checking a permission that does not exist is a programming error."""
        with pytest.raises(ValueError):
            PermissionSet().allows("can_do_anything")

    def test_to_dict_lists_every_flag(self):
        """to_dict returns every permission column."""
        assert set(PermissionSet().to_dict()) == set(PERMISSION_FLAGS)


class TestEnsurePermission:
    """Tests for ensure_permission on resolved teams."""

    def test_owner_membership_passes(self):
        """Owners pass every permission check."""
        resolved = _resolved(OwnerMembership(team_id="team-1", user_id="owner-1"))
        for name in PERMISSION_FLAGS:
            ensure_permission(resolved, name)
        assert resolved.is_owner
        assert resolved.role == TeamRole.OWNER

    def test_member_without_permission_denied(self):
        """A member lacking the flag gets PermissionDenied naming it."""
        resolved = _resolved(
            MemberMembership(
                team_id="team-1",
                user_id="user-2",
                member_id="member-2",
                role=TeamRole.MEMBER,
                permissions=derive_permissions(TeamRole.MEMBER),
            )
        )
        with pytest.raises(PermissionDenied) as exc_info:
            ensure_permission(resolved, "can_manage_billing")
        assert exc_info.value.permission == "can_manage_billing"
        assert exc_info.value.status_code == 403
        assert resolved.is_owner is False

    def test_member_with_granted_permission_passes(self):
        """A stored grant is honored."""
        resolved = _resolved(
            MemberMembership(
                team_id="team-1",
                user_id="user-2",
                member_id="member-2",
                role=TeamRole.MEMBER,
                permissions=derive_permissions(TeamRole.MEMBER, {"can_invite_members": True}),
            )
        )
        ensure_permission(resolved, "can_invite_members")
