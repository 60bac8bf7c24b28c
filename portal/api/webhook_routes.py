"""
Webhook subscription API routes.

Each tenant manages their own subscriptions; another tenant's subscription
is reported as not found.

Endpoints:
- GET /webhooks - List subscriptions
- POST /webhooks - Create subscription (returns the signing secret once)
- GET /webhooks/events - List subscribable events
- GET /webhooks/{id} - Get subscription details
- PATCH /webhooks/{id} - Update subscription
- DELETE /webhooks/{id} - Delete subscription
- GET /webhooks/{id}/deliveries - Get delivery history
"""

import logging
from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.models import User
from portal.dependencies.auth import get_current_user
from portal.services.webhook_service import WebhookService, WebhookEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ==================== Schemas ====================

class WebhookSubscriptionCreate(BaseModel):
    url: str = Field(..., max_length=500)
    events: List[str] = Field(default_factory=list)
    description: Optional[str] = Field(None, max_length=255)


class WebhookSubscriptionUpdate(BaseModel):
    url: Optional[str] = Field(None, min_length=1, max_length=500)
    events: Optional[List[str]] = None
    description: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None


class WebhookSubscriptionResponse(BaseModel):
    id: UUID
    url: str
    events: List[str]
    description: Optional[str] = None
    is_active: bool
    consecutive_exhausted: int
    delivery_count: int = 0
    created_at: str
    updated_at: str


class WebhookSecretResponse(WebhookSubscriptionResponse):
    secret: str


class WebhookDeliveryResponse(BaseModel):
    id: UUID
    event: str
    state: str
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int
    next_retry_at: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: str
    last_attempt_at: Optional[str] = None


def _subscription_response(subscription, delivery_count: int = 0) -> dict:
    return dict(
        id=subscription.id,
        url=subscription.url,
        events=subscription.events or [],
        description=subscription.description,
        is_active=subscription.is_active,
        consecutive_exhausted=subscription.consecutive_exhausted or 0,
        delivery_count=delivery_count,
        created_at=subscription.created_at.isoformat(),
        updated_at=subscription.updated_at.isoformat(),
    )


# ==================== Routes ====================

@router.get(
    "",
    response_model=List[WebhookSubscriptionResponse],
    status_code=status.HTTP_200_OK,
    summary="List webhook subscriptions"
)
async def list_subscriptions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List the caller's webhook subscriptions."""
    service = WebhookService(db)
    counts = service.get_delivery_counts(current_user.id)

    return [
        WebhookSubscriptionResponse(**_subscription_response(s, counts.get(s.id, 0)))
        for s in service.list_subscriptions(current_user.id)
    ]


@router.post(
    "",
    response_model=WebhookSecretResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create webhook subscription"
)
async def create_subscription(
    subscription_data: WebhookSubscriptionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Create a webhook subscription.

    The signing secret is only returned here. Receivers verify the
    `X-Webhook-Signature` header as the hex HMAC-SHA256 of the raw request
    body keyed with this secret.
    """
    if not subscription_data.url or not subscription_data.events:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL and at least one event required"
        )

    service = WebhookService(db)
    subscription = service.create_subscription(
        owner_id=current_user.id,
        url=subscription_data.url,
        events=subscription_data.events,
        description=subscription_data.description,
    )

    return WebhookSecretResponse(
        **_subscription_response(subscription),
        secret=subscription.secret,
    )


@router.get(
    "/events",
    response_model=List[str],
    status_code=status.HTTP_200_OK,
    summary="List available events"
)
async def list_events(
    current_user: User = Depends(get_current_user),
):
    """List all subscribable webhook event types."""
    return [e.value for e in WebhookEvent]


@router.get(
    "/{subscription_id}",
    response_model=WebhookSubscriptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get subscription details"
)
async def get_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    service = WebhookService(db)
    subscription = service.get_subscription(subscription_id, current_user.id)

    if not subscription:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )

    counts = service.get_delivery_counts(current_user.id)
    return WebhookSubscriptionResponse(**_subscription_response(subscription, counts.get(subscription.id, 0)))


@router.patch(
    "/{subscription_id}",
    response_model=WebhookSubscriptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Update subscription"
)
async def update_subscription(
    subscription_id: UUID,
    subscription_data: WebhookSubscriptionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Update URL, events, description or the active flag."""
    service = WebhookService(db)

    updates = subscription_data.model_dump(exclude_unset=True)
    subscription = service.update_subscription(subscription_id, current_user.id, **updates)

    if not subscription:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )

    return WebhookSubscriptionResponse(**_subscription_response(subscription))


@router.delete(
    "/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete subscription"
)
async def delete_subscription(
    subscription_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delete a subscription and its delivery history."""
    service = WebhookService(db)

    if not service.delete_subscription(subscription_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )


@router.get(
    "/{subscription_id}/deliveries",
    response_model=List[WebhookDeliveryResponse],
    status_code=status.HTTP_200_OK,
    summary="Get delivery history"
)
async def get_deliveries(
    subscription_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Get webhook delivery history, newest first."""
    service = WebhookService(db)
    if not service.get_subscription(subscription_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found"
        )

    deliveries = service.get_deliveries(subscription_id, limit=limit)

    return [
        WebhookDeliveryResponse(
            id=d.id,
            event=d.event,
            state=d.state,
            success=d.success,
            status_code=d.status_code,
            response_body=d.response_body,
            error_message=d.error_message,
            attempts=d.attempts,
            next_retry_at=d.next_retry_at.isoformat() if d.next_retry_at else None,
            duration_ms=d.duration_ms,
            created_at=d.created_at.isoformat(),
            last_attempt_at=d.last_attempt_at.isoformat() if d.last_attempt_at else None,
        )
        for d in deliveries
    ]
