"""
Meeting API routes.

Endpoints:
- GET /portal/meetings - List meetings and the plan's meeting features
- POST /portal/meetings - Schedule a meeting (type gated by plan)
"""

import logging
from datetime import datetime, timezone
from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.models import User
from portal.dependencies.auth import get_current_user
from portal.services.meeting_service import MeetingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portal/meetings", tags=["Meetings"])


class MeetingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[str] = None
    scheduled_at: datetime
    duration: Optional[int] = Field(None, ge=15, le=240)


class MeetingResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    type: str
    scheduled_at: str
    duration: int
    host_id: Optional[UUID] = None


class MeetingFeatures(BaseModel):
    has_ux_review: bool
    has_strategy_calls: bool


class MeetingListResponse(BaseModel):
    meetings: List[MeetingResponse]
    features: MeetingFeatures


def _meeting_response(m) -> MeetingResponse:
    return MeetingResponse(
        id=m.id,
        title=m.title,
        description=m.description,
        type=m.type,
        scheduled_at=m.scheduled_at.isoformat(),
        duration=m.duration,
        host_id=m.host_id,
    )


@router.get(
    "",
    response_model=MeetingListResponse,
    status_code=status.HTTP_200_OK,
    summary="List meetings"
)
async def list_meetings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    meetings, features = MeetingService(db).list_meetings(current_user)
    return MeetingListResponse(
        meetings=[_meeting_response(m) for m in meetings],
        features=MeetingFeatures(**features),
    )


@router.post(
    "",
    response_model=MeetingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule meeting"
)
async def schedule_meeting(
    meeting_data: MeetingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Schedule a meeting.

    **Meeting types:**
    - CHECK_IN: any active plan
    - UX_REVIEW: Signature Blend or Taro Cloud
    - STRATEGY_CALL: Taro Cloud
    """
    scheduled_at = meeting_data.scheduled_at
    if scheduled_at.tzinfo is not None:
        scheduled_at = scheduled_at.astimezone(timezone.utc).replace(tzinfo=None)

    meeting = MeetingService(db).schedule_meeting(
        current_user,
        title=meeting_data.title,
        scheduled_at=scheduled_at,
        meeting_type=meeting_data.type,
        description=meeting_data.description,
        duration=meeting_data.duration,
    )
    return _meeting_response(meeting)
