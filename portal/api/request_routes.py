"""
Client request API routes.

Endpoints:
- GET /portal/requests - List requests with plan quota usage
- POST /portal/requests - Submit a request (quota enforced)
- PATCH /portal/requests/{id} - Update a request
- DELETE /portal/requests/{id} - Delete a request (organization owner only)
"""

import logging
from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.models import User
from portal.dependencies.auth import get_current_user
from portal.services.request_service import RequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portal/requests", tags=["Requests"])


# ==================== Schemas ====================

class RequestCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[str] = None


class RequestUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None


class RequestResponse(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    sla_hours: int
    submitted_at: str
    due_date: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class RequestLimits(BaseModel):
    max_active: int
    current_active: int
    sla_hours: int


class RequestListResponse(BaseModel):
    requests: List[RequestResponse]
    limits: RequestLimits


def _request_response(r) -> RequestResponse:
    return RequestResponse(
        id=r.id,
        title=r.title,
        description=r.description,
        status=r.status,
        priority=r.priority,
        sla_hours=r.sla_hours,
        submitted_at=r.submitted_at.isoformat(),
        due_date=r.due_date.isoformat(),
        started_at=r.started_at.isoformat() if r.started_at else None,
        completed_at=r.completed_at.isoformat() if r.completed_at else None,
    )


# ==================== Routes ====================

@router.get(
    "",
    response_model=RequestListResponse,
    status_code=status.HTTP_200_OK,
    summary="List requests"
)
async def list_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List the organization's requests and how much of the plan quota is in use."""
    requests, limits = RequestService(db).list_requests(current_user)

    return RequestListResponse(
        requests=[_request_response(r) for r in requests],
        limits=RequestLimits(**limits),
    )


@router.post(
    "",
    response_model=RequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit request"
)
async def submit_request(
    request_data: RequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Submit a design request.

    Rejected with 403 when the organization already has as many active
    requests as its plan allows. The due date is set from the plan's SLA.
    """
    request = RequestService(db).submit_request(
        current_user,
        title=request_data.title,
        description=request_data.description,
        priority=request_data.priority,
    )
    return _request_response(request)


@router.patch(
    "/{request_id}",
    response_model=RequestResponse,
    status_code=status.HTTP_200_OK,
    summary="Update request"
)
async def update_request(
    request_id: UUID,
    request_data: RequestUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updates = request_data.model_dump(exclude_unset=True)
    request = RequestService(db).update_request(current_user, request_id, **updates)
    return _request_response(request)


@router.delete(
    "/{request_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete request"
)
async def delete_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not RequestService(db).delete_request(current_user, request_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Request not found"
        )
