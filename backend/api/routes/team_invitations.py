"""
Team invitation API routes.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user, get_resolved_team
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.team import (
    TeamInvitationAcceptResponse,
    TeamInvitationCreate,
    TeamInvitationListResponse,
    TeamInvitationPublicResponse,
    TeamInvitationResponse,
)
from core.domain.team import ResolvedTeam
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import TeamInvitation, User
from services.team_invitations import TeamInvitationService

router = APIRouter(prefix="/teams", tags=["Team Invitations"])


def _invitation_response(invitation: TeamInvitation, resent: bool = False) -> TeamInvitationResponse:
    response = TeamInvitationResponse.model_validate(invitation)
    response.resent = resent
    response.invitation_url = f"{settings.frontend_url}/invitations/{invitation.token}"
    return response


# =============================================================================
# Team Endpoints (require can_invite_members)
# =============================================================================


@router.get("/me/invitations", response_model=TeamInvitationListResponse)
async def list_team_invitations(
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """List pending, unexpired invitations of the team."""
    invitations = await TeamInvitationService(db).list_pending(team.team_id)
    return TeamInvitationListResponse(
        invitations=[_invitation_response(inv) for inv in invitations],
        total=len(invitations),
    )


@router.post(
    "/me/invitations",
    response_model=TeamInvitationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_team_invitation(
    body: TeamInvitationCreate,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """
    Invite a user to the team.

    - Requires can_invite_members
    - Pending invitations count against the member limit (402 when full)
    - Inviting an address with an open invitation re-issues it
    """
    issued = await TeamInvitationService(db).invite_member(
        team,
        email=body.email,
        role=body.role,
        permissions=body.permissions.model_dump(exclude_none=True) if body.permissions else None,
    )
    return _invitation_response(issued.invitation, resent=issued.resent)


@router.delete("/me/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_team_invitation(
    invitation_id: str,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Revoke a pending invitation."""
    await TeamInvitationService(db).revoke_invitation(team, invitation_id)
    return None


# =============================================================================
# Invitee Endpoints
# =============================================================================


@router.get("/invitations/{token}", response_model=TeamInvitationPublicResponse)
async def get_invitation_details(token: str, db: AsyncSession = Depends(get_db)):
    """Invitation details by token. No authentication required."""
    service = TeamInvitationService(db)
    invitation = await service.get_by_token(token)
    team_name = await service.team_name(invitation.team_id)
    return TeamInvitationPublicResponse(
        team_name=team_name,
        email=invitation.email,
        role=invitation.role,
        expires_at=invitation.expires_at,
        is_expired=invitation.is_expired,
        status=invitation.status,
    )


@router.post("/invitations/{token}/accept", response_model=TeamInvitationAcceptResponse)
@limiter.limit(get_rate_limit("invitation_accept"))
async def accept_invitation(
    request: Request,
    token: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Accept a team invitation.

    - The signed-in user's email must match the invitation
    - Users who belong to a team, or own one that is in use, get 409
    """
    resolved = await TeamInvitationService(db).accept_invitation(token, current_user)
    return TeamInvitationAcceptResponse(
        success=True,
        team_id=resolved.team_id,
        team_name=resolved.team_name,
        role=resolved.role,
    )
