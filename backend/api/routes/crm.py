"""CRM deal routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_resolved_team
from api.schemas.event import DealCreate, DealResponse
from core.domain.entitlement import LimitDimension
from core.domain.team import ResolvedTeam
from infrastructure.database.connection import get_db
from infrastructure.database.models import CrmDeal
from services.entitlements import EntitlementEnforcer

router = APIRouter(prefix="/crm", tags=["CRM"])


@router.post("/deals", response_model=DealResponse, status_code=status.HTTP_201_CREATED)
async def create_deal(
    body: DealCreate,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Create a deal owned by the current user; open deals count team-wide."""
    await EntitlementEnforcer(db).enforce_limit(team.team_id, LimitDimension.CRM_DEALS)

    deal = CrmDeal(
        owner_id=team.membership.user_id,
        title=body.title,
        value_cents=body.value_cents,
    )
    db.add(deal)
    await db.commit()
    await db.refresh(deal)
    return deal
