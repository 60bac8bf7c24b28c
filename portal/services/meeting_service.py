"""
Meeting Service

Scheduling calls with the agency. UX reviews and strategy calls are plan
features; check-ins are available on every active plan.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from portal.config import Settings, get_settings
from portal.error_handlers import ValidationError
from portal.models import User, Meeting, MeetingType
from portal.services.entitlements import EntitlementService
from portal.services.team_service import ensure_organization

logger = logging.getLogger(__name__)

VALID_MEETING_TYPES = {t.value for t in MeetingType}


class MeetingService:
    """Service for client meetings"""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.entitlements = EntitlementService(db, self.settings)

    def list_meetings(self, user: User) -> Tuple[List[Meeting], dict]:
        """Meetings of the user's organization with the plan's meeting features"""
        entitlements = self.entitlements.entitlements_for(user)
        features = {
            "has_ux_review": entitlements.has_ux_review,
            "has_strategy_calls": entitlements.has_strategy_calls,
        }

        if user.organization_id is None:
            return [], features

        meetings = self.db.query(Meeting).filter(
            Meeting.organization_id == user.organization_id
        ).order_by(Meeting.scheduled_at.asc()).all()
        return meetings, features

    def schedule_meeting(
        self,
        user: User,
        title: str,
        scheduled_at: datetime,
        meeting_type: Optional[str] = None,
        description: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> Meeting:
        meeting_type = meeting_type or MeetingType.CHECK_IN.value
        if meeting_type not in VALID_MEETING_TYPES:
            raise ValidationError(f"Invalid meeting type: {meeting_type}")

        self.entitlements.check_can_schedule_meeting(user, meeting_type)
        organization = ensure_organization(self.db, user)

        meeting = Meeting(
            organization_id=organization.id,
            host_id=user.id,
            title=title,
            description=description,
            type=meeting_type,
            scheduled_at=scheduled_at,
            duration=duration or 30,
        )
        self.db.add(meeting)
        self.db.commit()
        self.db.refresh(meeting)

        logger.info(f"{meeting_type} meeting scheduled for organization {organization.id}")
        return meeting
