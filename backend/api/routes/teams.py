"""
Team API routes.

Every user has exactly one team; routes address it as ``/teams/me`` and
the team is provisioned on first access.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_resolved_team
from api.schemas.team import (
    CurrentTeamResponse,
    PermissionFlags,
    PermissionUpdate,
    TeamMemberResponse,
    TeamPlanSummary,
    TeamUpdate,
    UpdateMemberRoleRequest,
)
from core.domain.team import ResolvedTeam, derive_permissions
from infrastructure.database.connection import get_db
from infrastructure.database.models.team import TeamMember
from services.permissions import PermissionService
from services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teams", tags=["Teams"])


def _member_response(member: TeamMember) -> TeamMemberResponse:
    permissions = derive_permissions(member.role, member.permission_flags())
    return TeamMemberResponse(
        id=member.id,
        user_id=member.user_id,
        role=member.role,
        permissions=PermissionFlags(**permissions.to_dict()),
        invited_by=member.invited_by,
        joined_at=member.joined_at,
    )


@router.get("/me", response_model=CurrentTeamResponse)
async def get_current_team(
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the current user's team.

    - Creates a default team when the user has none
    - Includes role, permissions, members and the plan in effect
    """
    members = await PermissionService(db).list_members(team.team_id)
    plan = await PlanCatalog(db).get_effective_plan(team.team_id)
    return CurrentTeamResponse(
        id=team.team_id,
        name=team.team_name,
        owner_id=team.owner_id,
        role=team.role,
        is_owner=team.is_owner,
        provisioned=team.provisioned,
        permissions=PermissionFlags(**team.permissions.to_dict()),
        members=[_member_response(member) for member in members],
        member_count=len(members) + 1,
        plan=TeamPlanSummary(
            name=plan.name,
            display_name=plan.display_name,
            limits=plan.limits.to_json(),
        ),
    )


@router.patch("/me", response_model=CurrentTeamResponse)
async def update_current_team(
    body: TeamUpdate,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Rename the team. Requires can_manage_settings."""
    await PermissionService(db).rename_team(team, body.name)
    renamed = ResolvedTeam(
        team_id=team.team_id,
        team_name=body.name,
        owner_id=team.owner_id,
        membership=team.membership,
    )
    return await get_current_team(renamed, db)


@router.get("/me/members", response_model=list[TeamMemberResponse])
async def list_members(
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """List members of the team (the owner is not a member row)."""
    members = await PermissionService(db).list_members(team.team_id)
    return [_member_response(member) for member in members]


@router.patch("/me/members/{user_id}/permissions", response_model=TeamMemberResponse)
async def update_member_permissions(
    user_id: str,
    body: PermissionUpdate,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a member's permission flags.

    - Requires can_manage_team
    - Omitted flags are unchanged
    - The owner's permissions cannot be edited
    """
    member = await PermissionService(db).update_member_permissions(
        team, user_id, body.model_dump(exclude_none=True)
    )
    return _member_response(member)


@router.patch("/me/members/{user_id}/role", response_model=TeamMemberResponse)
async def update_member_role(
    user_id: str,
    body: UpdateMemberRoleRequest,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Change a member's role; permissions reset to the role defaults."""
    member = await PermissionService(db).update_member_role(team, user_id, body.role)
    return _member_response(member)


@router.delete("/me/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: str,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Remove a member, or leave the team when ``user_id`` is yourself."""
    await PermissionService(db).remove_member(team, user_id)
    return None
