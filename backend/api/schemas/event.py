"""
Event, task and CRM deal schemas.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    event_date: Optional[date] = None


class EventResponse(BaseModel):
    id: str
    name: str
    event_date: Optional[date] = None
    team_id: Optional[str] = None
    created_by: str
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    assignee_id: Optional[str] = Field(None, description="Requires the task assignment feature")


class TaskResponse(BaseModel):
    id: str
    event_id: str
    title: str
    assignee_id: Optional[str] = None
    completed: bool

    model_config = ConfigDict(from_attributes=True)


class DealCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    value_cents: int = Field(0, ge=0)


class DealResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    value_cents: int
    is_won: bool
    is_lost: bool

    model_config = ConfigDict(from_attributes=True)
