"""
Entitlement check routes.

Read-only; lets clients grey out actions before attempting them.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_resolved_team
from api.schemas.entitlement import (
    EntitlementSummaryResponse,
    FeatureCheckResponse,
    LimitCheckResponse,
)
from core.domain.entitlement import Feature, LimitDimension
from core.domain.team import ResolvedTeam
from infrastructure.database.connection import get_db
from services.entitlements import EntitlementEnforcer
from services.event_access import EventAccessGuard

router = APIRouter(prefix="/entitlements", tags=["Entitlements"])


@router.get("/limits/{dimension}", response_model=LimitCheckResponse)
async def check_limit(
    dimension: LimitDimension,
    scope_id: Optional[str] = None,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """
    Check whether one more item fits the plan.

    The task limit is per event and needs ``scope_id`` (the event id).
    """
    if dimension == LimitDimension.TASKS:
        if not scope_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="scope_id (event id) is required for the task limit",
            )
        await EventAccessGuard(db).require_access(scope_id, team.membership.user_id)

    check = await EntitlementEnforcer(db).check_limit(team.team_id, dimension, scope_id=scope_id)
    return LimitCheckResponse(**check.to_dict())


@router.get("/features/{feature}", response_model=FeatureCheckResponse)
async def check_feature(
    feature: Feature,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Check a feature gate of the team's plan."""
    check = await EntitlementEnforcer(db).check_feature(team.team_id, feature)
    return FeatureCheckResponse(**check.to_dict())


@router.get("/summary", response_model=EntitlementSummaryResponse)
async def get_summary(
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """Plan in effect with every team-wide limit and feature."""
    return await EntitlementEnforcer(db).summary(team.team_id)
