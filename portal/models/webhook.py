"""
Outbound webhook subscriptions and their delivery log.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, ForeignKey, JSON, Uuid, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from portal.database import Base


class WebhookEvent(str, enum.Enum):
    """Domain events a tenant can subscribe to"""
    # Project events
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    PROJECT_STATUS_CHANGED = "project.status_changed"

    # Task events
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_COMPLETED = "task.completed"
    TASK_DELETED = "task.deleted"

    # Invoice events
    INVOICE_CREATED = "invoice.created"
    INVOICE_SENT = "invoice.sent"
    INVOICE_PAID = "invoice.paid"

    # Contract events
    CONTRACT_SENT = "contract.sent"
    CONTRACT_SIGNED = "contract.signed"

    # File events
    FILE_UPLOADED = "file.uploaded"

    # Message events
    MESSAGE_SENT = "message.sent"


class DeliveryState(str, enum.Enum):
    """Lifecycle of a delivery record"""
    PENDING = "PENDING"        # First attempt failed, first retry scheduled
    RETRYING = "RETRYING"      # A retry failed, another one is scheduled
    SUCCEEDED = "SUCCEEDED"
    ABANDONED = "ABANDONED"    # Attempts exhausted, no further automatic action


class WebhookSubscription(Base):
    """Tenant-configured webhook endpoint"""
    __tablename__ = "webhook_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    url = Column(String(500), nullable=False)
    secret = Column(String(64), nullable=False)  # HMAC signing key
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # JSON array of subscribed event names
    events = Column(JSON, nullable=False, default=list)

    # Deliveries in a row that ended ABANDONED; reset by any success
    consecutive_exhausted = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    deliveries = relationship(
        "WebhookDelivery",
        back_populates="subscription",
        cascade="all, delete-orphan",
    )

    def subscribes_to(self, event: str) -> bool:
        return event in (self.events or [])

    def __repr__(self):
        return f"<WebhookSubscription(id={self.id}, url={self.url}, active={self.is_active})>"


class WebhookDelivery(Base):
    """One event delivered to one subscription, updated in place on retry"""
    __tablename__ = "webhook_deliveries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        Uuid,
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    event = Column(String(50), nullable=False, index=True)

    # Exact serialized body that was signed; retries resend these bytes
    payload = Column(Text, nullable=False)

    # Outcome of the latest attempt
    success = Column(Boolean, nullable=False, default=False)
    status_code = Column(Integer, nullable=True)  # NULL: no HTTP response received
    response_body = Column(Text, nullable=True)
    error_message = Column(String(500), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # Retry tracking
    state = Column(String(20), nullable=False, default=DeliveryState.PENDING.value, index=True)
    attempts = Column(Integer, default=1, nullable=False)
    next_retry_at = Column(DateTime, nullable=True)
    claimed_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)

    subscription = relationship("WebhookSubscription", back_populates="deliveries")

    __table_args__ = (
        Index("ix_webhook_deliveries_retry", "success", "next_retry_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in (DeliveryState.SUCCEEDED.value, DeliveryState.ABANDONED.value)

    def __repr__(self):
        return f"<WebhookDelivery(event={self.event}, state={self.state}, attempts={self.attempts})>"
