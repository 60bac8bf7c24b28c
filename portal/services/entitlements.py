"""
Plan entitlements.

Every plan-gated action resolves the caller's plan through a single table of
capabilities keyed by the payment provider's price identifier. The table is
rebuilt from settings on each lookup, so changing a price id in configuration
takes effect without a restart.

Resolution fails closed: an unknown, empty or missing plan id gets the most
restrictive tier, and a price id setting left empty never matches anything.
"""

import logging
import enum
from dataclasses import dataclass, replace
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from portal.config import Settings, get_settings
from portal.error_handlers import EntitlementError
from portal.metrics import record_entitlement_rejection
from portal.models import (
    User, Subscription, Organization, ClientRequest, MeetingType, ACTIVE_REQUEST_STATUSES
)

logger = logging.getLogger(__name__)


class PlanTier(str, enum.Enum):
    LITE_BREW = "lite_brew"
    SIGNATURE_BLEND = "signature_blend"
    TARO_CLOUD = "taro_cloud"


@dataclass(frozen=True)
class Entitlements:
    """Capabilities granted by a plan tier"""
    tier: PlanTier
    tier_name: str
    max_active_requests: int
    sla_hours: int
    has_ux_review: bool
    has_strategy_calls: bool
    max_seats: int
    recognized: bool = True  # False when the plan id fell back to the default tier

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "tier_name": self.tier_name,
            "max_active_requests": self.max_active_requests,
            "sla_hours": self.sla_hours,
            "has_ux_review": self.has_ux_review,
            "has_strategy_calls": self.has_strategy_calls,
            "max_seats": self.max_seats,
        }


TIER_ENTITLEMENTS: Dict[PlanTier, Entitlements] = {
    PlanTier.LITE_BREW: Entitlements(
        tier=PlanTier.LITE_BREW,
        tier_name="Lite Brew",
        max_active_requests=1,
        sla_hours=84,
        has_ux_review=False,
        has_strategy_calls=False,
        max_seats=1,
    ),
    PlanTier.SIGNATURE_BLEND: Entitlements(
        tier=PlanTier.SIGNATURE_BLEND,
        tier_name="Signature Blend",
        max_active_requests=2,
        sla_hours=48,
        has_ux_review=True,
        has_strategy_calls=False,
        max_seats=3,
    ),
    PlanTier.TARO_CLOUD: Entitlements(
        tier=PlanTier.TARO_CLOUD,
        tier_name="Taro Cloud",
        max_active_requests=3,
        sla_hours=24,
        has_ux_review=True,
        has_strategy_calls=True,
        max_seats=5,
    ),
}

DEFAULT_TIER = PlanTier.LITE_BREW


def plan_table(settings: Optional[Settings] = None) -> Dict[str, PlanTier]:
    """Configured price id -> tier; unconfigured tiers are left out"""
    settings = settings or get_settings()
    configured = {
        settings.stripe_lite_brew_price_id: PlanTier.LITE_BREW,
        settings.stripe_signature_blend_price_id: PlanTier.SIGNATURE_BLEND,
        settings.stripe_taro_cloud_price_id: PlanTier.TARO_CLOUD,
    }
    return {price_id: tier for price_id, tier in configured.items() if price_id}


def resolve_entitlements(plan_id: Optional[str], settings: Optional[Settings] = None) -> Entitlements:
    """
    Look up the entitlements for a plan id.

    Args:
        plan_id: Payment provider price identifier (may be None or empty)
        settings: Settings to read price ids from (defaults to get_settings())

    Returns:
        Entitlements for the matching tier, or the Lite Brew tier with
        ``recognized=False`` when nothing matches
    """
    tier = plan_table(settings).get((plan_id or "").strip()) if plan_id else None
    if tier is None:
        return replace(TIER_ENTITLEMENTS[DEFAULT_TIER], recognized=False)
    return TIER_ENTITLEMENTS[tier]


def plan_display_name(entitlements: Entitlements) -> str:
    return entitlements.tier_name if entitlements.recognized else "current"


class EntitlementService:
    """
    Plan checks run immediately before a gated mutation.

    Each ``check_*`` method raises EntitlementError on rejection and returns
    the resolved entitlements otherwise.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _reject(self, message: str, check: str, entitlements: Optional[Entitlements] = None):
        tier = entitlements.tier.value if entitlements else "none"
        logger.debug(f"Entitlement check '{check}' rejected for tier {tier}")
        record_entitlement_rejection(check, tier)
        raise EntitlementError(message, check=check)

    def governing_subscription(self, user: User) -> Optional[Subscription]:
        """The subscription that gates this user's actions: their organization owner's, else their own"""
        organization = user.organization
        if organization is not None and organization.owner_id != user.id:
            owner = self.db.get(User, organization.owner_id)
            return owner.subscription if owner else None
        return user.subscription

    def entitlements_for(self, user: User) -> Entitlements:
        subscription = self.governing_subscription(user)
        return resolve_entitlements(subscription.plan_id if subscription else None, self.settings)

    def require_active_subscription(self, user: User, message: str, check: str = "subscription") -> Entitlements:
        subscription = self.governing_subscription(user)
        if subscription is None or not subscription.is_active:
            self._reject(message, check)
        return resolve_entitlements(subscription.plan_id, self.settings)

    # ==================== Usage ====================

    def count_active_requests(self, organization_id) -> int:
        if organization_id is None:
            return 0
        return self.db.query(func.count(ClientRequest.id)).filter(
            ClientRequest.organization_id == organization_id,
            ClientRequest.status.in_(ACTIVE_REQUEST_STATUSES),
        ).scalar() or 0

    def count_seats(self, organization: Optional[Organization]) -> int:
        """Seats in use: every user attached to the organization, owner included"""
        if organization is None:
            return 1
        members = self.db.query(func.count(User.id)).filter(
            User.organization_id == organization.id
        ).scalar() or 0
        return max(members, 1)

    # ==================== Checks ====================

    def check_can_submit_request(self, user: User) -> Entitlements:
        entitlements = self.require_active_subscription(
            user, "Active subscription required to submit requests"
        )

        active = self.count_active_requests(user.organization_id)
        if active >= entitlements.max_active_requests:
            self._reject(
                f"You have reached the maximum of {entitlements.max_active_requests} active request(s) "
                f"for your tier. Please wait for a request to complete or upgrade your plan.",
                "request_quota",
                entitlements,
            )
        return entitlements

    def check_can_schedule_meeting(self, user: User, meeting_type: str) -> Entitlements:
        entitlements = self.require_active_subscription(
            user, "Active subscription required to schedule meetings"
        )

        if meeting_type == MeetingType.UX_REVIEW.value and not entitlements.has_ux_review:
            self._reject(
                "UX reviews are only available with Signature Blend or Taro Cloud plans",
                "ux_review",
                entitlements,
            )
        if meeting_type == MeetingType.STRATEGY_CALL.value and not entitlements.has_strategy_calls:
            self._reject(
                "Strategy calls are only available with Taro Cloud plan",
                "strategy_call",
                entitlements,
            )
        return entitlements

    def check_can_invite(self, user: User) -> Entitlements:
        entitlements = self.require_active_subscription(
            user, "Active subscription required to invite team members"
        )

        seats = self.count_seats(user.organization)
        if seats >= entitlements.max_seats:
            self._reject(
                f"Your {plan_display_name(entitlements)} plan supports up to {entitlements.max_seats} user(s). "
                f"Upgrade to add more team members.",
                "seats",
                entitlements,
            )
        return entitlements

    def check_can_join(self, organization: Organization) -> Entitlements:
        """Seat check on invite acceptance, against the organization owner's plan"""
        owner = self.db.get(User, organization.owner_id)
        subscription = owner.subscription if owner else None
        if subscription is None or not subscription.is_active:
            self._reject("Organization subscription is not active", "subscription")

        entitlements = resolve_entitlements(subscription.plan_id, self.settings)
        if self.count_seats(organization) >= entitlements.max_seats:
            self._reject(
                "Organization has reached maximum team size for their plan",
                "seats",
                entitlements,
            )
        return entitlements
