"""
Team and multi-tenancy API schemas.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from core.domain.team import TeamRole


# =============================================================================
# Permission Schemas
# =============================================================================


class PermissionFlags(BaseModel):
    """Full permission set of a team member."""

    can_manage_team: bool = False
    can_manage_billing: bool = False
    can_view_billing: bool = False
    can_manage_settings: bool = False
    can_create_events: bool = False
    can_view_all_events: bool = False
    can_delete_events: bool = False
    can_invite_members: bool = False


class PermissionUpdate(BaseModel):
    """Partial permission update; omitted flags stay unchanged."""

    can_manage_team: Optional[bool] = None
    can_manage_billing: Optional[bool] = None
    can_view_billing: Optional[bool] = None
    can_manage_settings: Optional[bool] = None
    can_create_events: Optional[bool] = None
    can_view_all_events: Optional[bool] = None
    can_delete_events: Optional[bool] = None
    can_invite_members: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# Team Schemas
# =============================================================================


class TeamUpdate(BaseModel):
    """Schema for renaming the team."""

    name: str = Field(..., min_length=1, max_length=255, description="Team name")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Team name cannot be blank")
        return v


class TeamMemberResponse(BaseModel):
    """Schema for team member response."""

    id: str
    user_id: str
    role: TeamRole
    permissions: PermissionFlags
    invited_by: Optional[str] = None
    joined_at: Optional[datetime] = None


class TeamPlanSummary(BaseModel):
    """Plan currently in effect for the team."""

    name: str
    display_name: str
    limits: dict


class CurrentTeamResponse(BaseModel):
    """The current user's team, role and permissions."""

    id: str
    name: str
    owner_id: str
    role: TeamRole
    is_owner: bool
    provisioned: bool = Field(False, description="Team was created by this request")
    permissions: PermissionFlags
    members: List[TeamMemberResponse] = Field(default_factory=list)
    member_count: int = Field(..., description="Members including the owner")
    plan: TeamPlanSummary


class UpdateMemberRoleRequest(BaseModel):
    """Request to change a member's role."""

    role: TeamRole

    @field_validator("role")
    @classmethod
    def not_owner(cls, v: TeamRole) -> TeamRole:
        if v == TeamRole.OWNER:
            raise ValueError("Ownership cannot be assigned through a role change")
        return v


# =============================================================================
# Invitation Schemas
# =============================================================================


class TeamInvitationCreate(BaseModel):
    """Schema for inviting a user to the team."""

    email: EmailStr = Field(..., description="Email address to invite")
    role: TeamRole = Field(TeamRole.MEMBER, description="Role granted on acceptance")
    permissions: Optional[PermissionUpdate] = Field(
        None, description="Flags overriding the role defaults"
    )


class TeamInvitationResponse(BaseModel):
    """Schema for team invitation response."""

    id: str
    team_id: str
    email: str
    role: str
    status: str
    token: str
    invited_by: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime
    resent: bool = False
    invitation_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TeamInvitationListResponse(BaseModel):
    """List of pending invitations."""

    invitations: List[TeamInvitationResponse]
    total: int


class TeamInvitationPublicResponse(BaseModel):
    """Public invitation details shown before accepting."""

    team_name: str
    email: str
    role: str
    expires_at: datetime
    is_expired: bool
    status: str


class TeamInvitationAcceptResponse(BaseModel):
    """Result of accepting an invitation."""

    success: bool
    team_id: str
    team_name: str
    role: TeamRole
