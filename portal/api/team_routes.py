"""
Team API routes.

Endpoints:
- POST /portal/team/invite - Invite a team member (seat limited)
- GET /portal/team/invites - List pending invitations
- POST /portal/team/accept - Accept an invitation
- GET /portal/team/members - List members and seat usage
"""

import logging
from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.models import User
from portal.dependencies.auth import get_current_user
from portal.services.team_service import TeamService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portal/team", tags=["Team"])


class InviteCreate(BaseModel):
    email: EmailStr
    role: Optional[str] = None


class InviteResponse(BaseModel):
    id: UUID
    email: str
    role: str
    expires_at: str
    created_at: str


class AcceptInvite(BaseModel):
    token: str = Field(..., min_length=1, max_length=64)


class AcceptResponse(BaseModel):
    message: str
    organization_id: UUID
    organization_name: str


class MemberResponse(BaseModel):
    id: UUID
    name: Optional[str] = None
    email: str
    role: str
    is_owner: bool
    created_at: Optional[str] = None


class MemberListResponse(BaseModel):
    members: List[MemberResponse]
    max_seats: int
    current_seats: int


def _invite_response(invite) -> InviteResponse:
    return InviteResponse(
        id=invite.id,
        email=invite.email,
        role=invite.role,
        expires_at=invite.expires_at.isoformat(),
        created_at=invite.created_at.isoformat(),
    )


@router.post(
    "/invite",
    response_model=InviteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite team member"
)
async def invite_member(
    invite_data: InviteCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Invite someone to the caller's organization. Rejected with 403 when all seats are taken."""
    invite = TeamService(db).invite(current_user, invite_data.email, invite_data.role)
    return _invite_response(invite)


@router.get(
    "/invites",
    response_model=List[InviteResponse],
    status_code=status.HTTP_200_OK,
    summary="List pending invitations"
)
async def list_invites(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return [_invite_response(i) for i in TeamService(db).list_pending_invites(current_user)]


@router.post(
    "/accept",
    response_model=AcceptResponse,
    status_code=status.HTTP_200_OK,
    summary="Accept invitation"
)
async def accept_invite(
    accept_data: AcceptInvite,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    organization = TeamService(db).accept(current_user, accept_data.token)
    return AcceptResponse(
        message="Successfully joined team",
        organization_id=organization.id,
        organization_name=organization.name,
    )


@router.get(
    "/members",
    response_model=MemberListResponse,
    status_code=status.HTTP_200_OK,
    summary="List team members"
)
async def list_members(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return MemberListResponse(**TeamService(db).list_members(current_user))
