"""
Team and multi-tenancy database models.

A team has exactly one owner, referenced by ``teams.owner_id``; owners have
no ``team_members`` row. A user belongs to at most one team, which the
unique constraints on ``teams.owner_id`` and ``team_members.user_id``
enforce at the storage layer.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from uuid import uuid4
import secrets

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.team import PERMISSION_FLAGS, TeamRole

from .base import Base, TimestampMixin, as_utc, utcnow


class InvitationStatus(str, Enum):
    """Team invitation status enumeration."""

    PENDING = "pending"  # Waiting for user to accept
    ACCEPTED = "accepted"  # User accepted and joined team
    REVOKED = "revoked"  # Invitation was cancelled
    EXPIRED = "expired"  # Invitation expired (marked by maintenance sweep)


class Team(Base, TimestampMixin):
    """Team (tenant) model."""

    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Owner relationship is by this column, never by a membership row
    owner_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name}, owner_id={self.owner_id})>"


class TeamMember(Base, TimestampMixin):
    """Team member model (non-owner users of a team)."""

    __tablename__ = "team_members"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    team_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(50), default=TeamRole.MEMBER.value, nullable=False
    )

    # Granular permissions
    can_manage_team: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage_billing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_view_billing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_manage_settings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_create_events: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    can_view_all_events: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    can_delete_events: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_invite_members: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    invited_by: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<TeamMember(id={self.id}, team_id={self.team_id}, user_id={self.user_id}, role={self.role})>"

    def permission_flags(self) -> dict[str, bool]:
        """Stored permission columns keyed by flag name."""
        return {name: getattr(self, name) for name in PERMISSION_FLAGS}


class TeamInvitation(Base, TimestampMixin):
    """Team invitation model for inviting users to teams."""

    __tablename__ = "team_invitations"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    team_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invited_by: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Invitee info (stored lower-cased)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(50), default=TeamRole.MEMBER.value, nullable=False
    )
    # Optional permission bundle applied on acceptance
    permissions: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    token: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        default=lambda: secrets.token_urlsafe(32),
    )

    status: Mapped[str] = mapped_column(
        String(50), default=InvitationStatus.PENDING.value, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: utcnow() + timedelta(days=7),
        nullable=False,
    )

    accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    accepted_by_user_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_team_invitations_status", "status"),
        Index("ix_team_invitations_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<TeamInvitation(id={self.id}, email={self.email}, team_id={self.team_id}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        """Check if invitation is pending."""
        return self.status == InvitationStatus.PENDING.value

    @property
    def is_expired(self) -> bool:
        """Check if invitation has expired."""
        if self.status == InvitationStatus.EXPIRED.value:
            return True
        return utcnow() > as_utc(self.expires_at)

    def can_accept(self) -> bool:
        """Check if invitation can be accepted."""
        return self.is_pending and not self.is_expired
