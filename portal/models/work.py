"""
Client work items: design requests and meetings.
"""

from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from portal.database import Base


class RequestStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Statuses that count against a plan's active request quota
ACTIVE_REQUEST_STATUSES = (
    RequestStatus.SUBMITTED.value,
    RequestStatus.IN_PROGRESS.value,
    RequestStatus.IN_REVIEW.value,
)


class RequestPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class MeetingType(str, enum.Enum):
    CHECK_IN = "CHECK_IN"
    UX_REVIEW = "UX_REVIEW"
    STRATEGY_CALL = "STRATEGY_CALL"


class ClientRequest(Base):
    """A unit of design work submitted by a client organization"""
    __tablename__ = "requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=RequestStatus.SUBMITTED.value, index=True)
    priority = Column(String(10), nullable=False, default=RequestPriority.MEDIUM.value)

    # SLA captured at submission time so plan changes don't move due dates
    sla_hours = Column(Integer, nullable=False)
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    due_date = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization")

    def __repr__(self):
        return f"<ClientRequest(id={self.id}, status={self.status})>"


class Meeting(Base):
    """Scheduled call between the agency and a client organization"""
    __tablename__ = "meetings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    host_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False, default=MeetingType.CHECK_IN.value)
    scheduled_at = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)  # minutes

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Meeting(id={self.id}, type={self.type}, scheduled_at={self.scheduled_at})>"
