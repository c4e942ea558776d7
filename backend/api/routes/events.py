"""
Event and task routes.

These are the write paths guarded by the entitlement engine: resolve the
team, check access, check the quota, then insert.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user, get_resolved_team
from api.schemas.event import EventCreate, EventResponse, TaskCreate, TaskResponse
from core.domain.entitlement import Feature, LimitDimension
from core.domain.team import ResolvedTeam
from infrastructure.database.connection import get_db
from infrastructure.database.models import Event, EventStatus, Task, User
from services.entitlements import EntitlementEnforcer
from services.event_access import EventAccessGuard
from services.permissions import ensure_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    body: EventCreate,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """
    Create an event in the current team.

    - Requires can_create_events
    - Returns 402 when the plan's active-event limit is reached
    """
    ensure_permission(team, "can_create_events")
    await EntitlementEnforcer(db).enforce_limit(team.team_id, LimitDimension.EVENTS)

    event = Event(
        name=body.name,
        event_date=body.event_date,
        team_id=team.team_id,
        created_by=team.membership.user_id,
        status=EventStatus.PLANNING.value,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)
    logger.info("Event %s created in team %s", event.id, team.team_id)
    return event


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get an event of the user's team, or a personal event they created."""
    return await EventAccessGuard(db).require_access(event_id, current_user.id)


@router.post(
    "/{event_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_task(
    event_id: str,
    body: TaskCreate,
    team: ResolvedTeam = Depends(get_resolved_team),
    db: AsyncSession = Depends(get_db),
):
    """
    Add a task to an event.

    - Returns 402 when the per-event task limit is reached
    - Assigning the task requires the task assignment feature
    """
    event = await EventAccessGuard(db).require_access(event_id, team.membership.user_id)
    quota_team_id = event.team_id or team.team_id

    enforcer = EntitlementEnforcer(db)
    await enforcer.enforce_limit(quota_team_id, LimitDimension.TASKS, scope_id=event.id)
    if body.assignee_id:
        await enforcer.enforce_feature(quota_team_id, Feature.TASK_ASSIGNMENT)

    task = Task(
        event_id=event.id,
        title=body.title,
        created_by=team.membership.user_id,
        assignee_id=body.assignee_id,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task
