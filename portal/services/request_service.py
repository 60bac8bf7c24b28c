"""
Request Service

Design requests submitted by client organizations. Submission is gated by
the plan's active request quota and the request's due date follows the
plan's SLA.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from portal.config import Settings, get_settings
from portal.error_handlers import AuthorizationError, NotFoundError, ValidationError
from portal.models import (
    User, UserRole, ClientRequest, RequestStatus, RequestPriority, ACTIVE_REQUEST_STATUSES
)
from portal.services.entitlements import EntitlementService
from portal.services.team_service import ensure_organization

logger = logging.getLogger(__name__)

VALID_STATUSES = {s.value for s in RequestStatus}
VALID_PRIORITIES = {p.value for p in RequestPriority}


class RequestService:
    """Service for client design requests"""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.entitlements = EntitlementService(db, self.settings)

    def list_requests(self, user: User) -> Tuple[List[ClientRequest], dict]:
        """
        Requests of the user's organization, newest first, plus quota usage.

        Returns:
            (requests, limits) where limits has max_active, current_active and sla_hours
        """
        entitlements = self.entitlements.entitlements_for(user)

        requests = []
        if user.organization_id is not None:
            requests = self.db.query(ClientRequest).filter(
                ClientRequest.organization_id == user.organization_id
            ).order_by(ClientRequest.created_at.desc()).all()

        limits = {
            "max_active": entitlements.max_active_requests,
            "current_active": sum(1 for r in requests if r.status in ACTIVE_REQUEST_STATUSES),
            "sla_hours": entitlements.sla_hours,
        }
        return requests, limits

    def submit_request(
        self,
        user: User,
        title: str,
        description: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> ClientRequest:
        """Submit a new request; raises EntitlementError when over quota"""
        priority = priority or RequestPriority.MEDIUM.value
        if priority not in VALID_PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}")

        entitlements = self.entitlements.check_can_submit_request(user)
        organization = ensure_organization(self.db, user)

        submitted_at = datetime.utcnow()
        request = ClientRequest(
            organization_id=organization.id,
            title=title,
            description=description,
            status=RequestStatus.SUBMITTED.value,
            priority=priority,
            sla_hours=entitlements.sla_hours,
            submitted_at=submitted_at,
            due_date=submitted_at + timedelta(hours=entitlements.sla_hours),
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)

        logger.info(
            f"Request submitted by organization {organization.id} "
            f"(tier {entitlements.tier.value}, due {request.due_date.isoformat()})"
        )
        return request

    def get_request(self, request_id: UUID) -> Optional[ClientRequest]:
        return self.db.query(ClientRequest).filter(ClientRequest.id == request_id).first()

    def _can_access(self, user: User, request: ClientRequest) -> bool:
        return user.role == UserRole.ADMIN.value or (
            user.organization_id is not None and user.organization_id == request.organization_id
        )

    def update_request(self, user: User, request_id: UUID, **updates) -> ClientRequest:
        """
        Update a request's status, priority, title or description.

        Moving a request into IN_PROGRESS or COMPLETED stamps started_at or
        completed_at the first time. Re-opening a finished request counts
        against the quota like a new submission.
        """
        request = self.get_request(request_id)
        if not request:
            raise NotFoundError("Request not found", resource_type="request")
        if not self._can_access(user, request):
            raise AuthorizationError("Not a member of this request's organization")

        new_status = updates.get("status")
        if new_status is not None:
            if new_status not in VALID_STATUSES:
                raise ValidationError(f"Invalid status: {new_status}")
            reopening = (
                request.status not in ACTIVE_REQUEST_STATUSES
                and new_status in ACTIVE_REQUEST_STATUSES
            )
            if reopening and user.role != UserRole.ADMIN.value:
                self.entitlements.check_can_submit_request(user)

            request.status = new_status
            now = datetime.utcnow()
            if new_status == RequestStatus.IN_PROGRESS.value and not request.started_at:
                request.started_at = now
            if new_status == RequestStatus.COMPLETED.value and not request.completed_at:
                request.completed_at = now

        priority = updates.get("priority")
        if priority is not None:
            if priority not in VALID_PRIORITIES:
                raise ValidationError(f"Invalid priority: {priority}")
            request.priority = priority

        for field in ("title", "description"):
            if updates.get(field):
                setattr(request, field, updates[field])

        self.db.commit()
        self.db.refresh(request)
        return request

    def delete_request(self, user: User, request_id: UUID) -> bool:
        """Only the organization owner may delete a request"""
        request = self.get_request(request_id)
        if not request:
            return False
        if request.organization is None or request.organization.owner_id != user.id:
            raise AuthorizationError("Only organization owner can delete requests")

        self.db.delete(request)
        self.db.commit()
        return True
