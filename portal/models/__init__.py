"""
SQLAlchemy models for the Agency Portal.

All models are exported from this module for easy importing.
"""

# Tenancy models
from portal.models.user import (
    User, UserRole, Subscription, SubscriptionStatus, Organization, TeamInvite
)

# Work item models
from portal.models.work import (
    ClientRequest, RequestStatus, RequestPriority, ACTIVE_REQUEST_STATUSES,
    Meeting, MeetingType
)

# Billing models
from portal.models.invoice import Invoice, InvoiceStatus

# Webhook models
from portal.models.webhook import (
    WebhookSubscription, WebhookDelivery, WebhookEvent, DeliveryState
)

__all__ = [
    # Tenancy models
    "User",
    "UserRole",
    "Subscription",
    "SubscriptionStatus",
    "Organization",
    "TeamInvite",
    # Work item models
    "ClientRequest",
    "RequestStatus",
    "RequestPriority",
    "ACTIVE_REQUEST_STATUSES",
    "Meeting",
    "MeetingType",
    # Billing models
    "Invoice",
    "InvoiceStatus",
    # Webhook models
    "WebhookSubscription",
    "WebhookDelivery",
    "WebhookEvent",
    "DeliveryState",
]
