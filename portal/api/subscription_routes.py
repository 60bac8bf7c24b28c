"""
Subscription API routes.

Endpoints:
- GET /portal/subscription - Current plan, status and resolved entitlements
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.models import User
from portal.dependencies.auth import get_current_user
from portal.services.entitlements import EntitlementService

router = APIRouter(prefix="/portal/subscription", tags=["Subscription"])


class EntitlementsResponse(BaseModel):
    tier: str
    tier_name: str
    max_active_requests: int
    sla_hours: int
    has_ux_review: bool
    has_strategy_calls: bool
    max_seats: int


class SubscriptionResponse(BaseModel):
    plan_id: Optional[str] = None
    status: Optional[str] = None
    is_active: bool
    current_period_end: Optional[str] = None
    entitlements: EntitlementsResponse


@router.get(
    "",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get subscription"
)
async def get_subscription(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    The subscription governing the caller (their organization owner's for
    team members) and what it entitles them to.
    """
    service = EntitlementService(db)
    subscription = service.governing_subscription(current_user)
    entitlements = service.entitlements_for(current_user)

    return SubscriptionResponse(
        plan_id=subscription.plan_id if subscription else None,
        status=subscription.status if subscription else None,
        is_active=bool(subscription and subscription.is_active),
        current_period_end=(
            subscription.current_period_end.isoformat()
            if subscription and subscription.current_period_end else None
        ),
        entitlements=EntitlementsResponse(**entitlements.to_dict()),
    )
