"""Unit tests for plan entitlements (entitlements.py)"""
from datetime import datetime

import pytest

from conftest import LITE_PLAN, SIGNATURE_PLAN, TARO_PLAN
from portal.error_handlers import EntitlementError
from portal.models import (
    ClientRequest, MeetingType, RequestStatus, SubscriptionStatus, UserRole
)
from portal.services.entitlements import (
    EntitlementService,
    PlanTier,
    plan_display_name,
    plan_table,
    resolve_entitlements,
)
from portal.services.team_service import ensure_organization


def add_request(db, organization, status=RequestStatus.SUBMITTED.value):
    request = ClientRequest(
        organization_id=organization.id,
        title="Landing page",
        status=status,
        sla_hours=84,
        submitted_at=datetime.utcnow(),
        due_date=datetime.utcnow(),
    )
    db.add(request)
    db.commit()
    return request


def add_member(db, make_user, organization):
    member = make_user(plan_id=None, role=UserRole.TEAM_MEMBER.value)
    member.organization_id = organization.id
    db.commit()
    db.refresh(member)
    return member


@pytest.mark.unit
class TestResolveEntitlements:
    """Test plan id resolution"""

    def test_lite_brew(self, settings):
        entitlements = resolve_entitlements(LITE_PLAN, settings)

        assert entitlements.tier == PlanTier.LITE_BREW
        assert entitlements.max_active_requests == 1
        assert entitlements.sla_hours == 84
        assert entitlements.has_ux_review is False
        assert entitlements.has_strategy_calls is False
        assert entitlements.max_seats == 1
        assert entitlements.recognized is True

    def test_signature_blend(self, settings):
        entitlements = resolve_entitlements(SIGNATURE_PLAN, settings)

        assert entitlements.tier == PlanTier.SIGNATURE_BLEND
        assert entitlements.max_active_requests == 2
        assert entitlements.sla_hours == 48
        assert entitlements.has_ux_review is True
        assert entitlements.has_strategy_calls is False
        assert entitlements.max_seats == 3

    def test_taro_cloud(self, settings):
        entitlements = resolve_entitlements(TARO_PLAN, settings)

        assert entitlements.tier == PlanTier.TARO_CLOUD
        assert entitlements.max_active_requests == 3
        assert entitlements.sla_hours == 24
        assert entitlements.has_ux_review is True
        assert entitlements.has_strategy_calls is True
        assert entitlements.max_seats == 5

    @pytest.mark.parametrize("plan_id", ["price_unknown", "", None, "PRICE_TARO"])
    def test_unknown_plan_fails_closed(self, settings, plan_id):
        entitlements = resolve_entitlements(plan_id, settings)

        assert entitlements.tier == PlanTier.LITE_BREW
        assert entitlements.max_active_requests == 1
        assert entitlements.recognized is False
        assert plan_display_name(entitlements) == "current"

    def test_unconfigured_price_id_never_matches(self, settings):
        unconfigured = settings.model_copy(update={"stripe_taro_cloud_price_id": ""})

        assert "" not in plan_table(unconfigured)
        assert resolve_entitlements("", unconfigured).recognized is False
        assert resolve_entitlements(TARO_PLAN, unconfigured).tier == PlanTier.LITE_BREW

    def test_configuration_change_takes_effect(self, settings):
        moved = settings.model_copy(update={"stripe_taro_cloud_price_id": "price_taro_2027"})

        assert resolve_entitlements("price_taro_2027", moved).tier == PlanTier.TARO_CLOUD
        assert resolve_entitlements(TARO_PLAN, moved).recognized is False

    def test_to_dict(self, settings):
        data = resolve_entitlements(SIGNATURE_PLAN, settings).to_dict()

        assert data["tier"] == "signature_blend"
        assert data["tier_name"] == "Signature Blend"
        assert data["max_seats"] == 3


@pytest.mark.unit
class TestRequestQuota:
    """Test active request quota"""

    def test_first_request_allowed(self, db_session, make_user, settings):
        user = make_user(plan_id=LITE_PLAN)
        service = EntitlementService(db_session, settings)

        assert service.check_can_submit_request(user).tier == PlanTier.LITE_BREW

    def test_lite_brew_second_active_rejected(self, db_session, make_user, settings):
        user = make_user(plan_id=LITE_PLAN)
        organization = ensure_organization(db_session, user)
        add_request(db_session, organization)
        service = EntitlementService(db_session, settings)

        with pytest.raises(EntitlementError) as exc_info:
            service.check_can_submit_request(user)

        assert exc_info.value.status_code == 403
        assert exc_info.value.check == "request_quota"
        assert exc_info.value.message == (
            "You have reached the maximum of 1 active request(s) for your tier. "
            "Please wait for a request to complete or upgrade your plan."
        )

    def test_finished_requests_do_not_count(self, db_session, make_user, settings):
        user = make_user(plan_id=LITE_PLAN)
        organization = ensure_organization(db_session, user)
        add_request(db_session, organization, status=RequestStatus.COMPLETED.value)
        add_request(db_session, organization, status=RequestStatus.CANCELLED.value)
        service = EntitlementService(db_session, settings)

        service.check_can_submit_request(user)
        assert service.count_active_requests(organization.id) == 0

    @pytest.mark.parametrize("status", [RequestStatus.IN_PROGRESS.value, RequestStatus.IN_REVIEW.value])
    def test_in_flight_statuses_count(self, db_session, make_user, settings, status):
        user = make_user(plan_id=LITE_PLAN)
        organization = ensure_organization(db_session, user)
        add_request(db_session, organization, status=status)

        with pytest.raises(EntitlementError):
            EntitlementService(db_session, settings).check_can_submit_request(user)

    def test_signature_blend_allows_two(self, db_session, make_user, settings):
        user = make_user(plan_id=SIGNATURE_PLAN)
        organization = ensure_organization(db_session, user)
        service = EntitlementService(db_session, settings)

        add_request(db_session, organization)
        service.check_can_submit_request(user)
        add_request(db_session, organization)
        with pytest.raises(EntitlementError):
            service.check_can_submit_request(user)

    def test_unknown_plan_gets_lite_quota(self, db_session, make_user, settings):
        user = make_user(plan_id="price_legacy")
        organization = ensure_organization(db_session, user)
        add_request(db_session, organization)

        with pytest.raises(EntitlementError):
            EntitlementService(db_session, settings).check_can_submit_request(user)

    @pytest.mark.parametrize("status", [SubscriptionStatus.CANCELLED.value, SubscriptionStatus.PAST_DUE.value])
    def test_inactive_subscription_rejected(self, db_session, make_user, settings, status):
        user = make_user(plan_id=TARO_PLAN, status=status)

        with pytest.raises(EntitlementError) as exc_info:
            EntitlementService(db_session, settings).check_can_submit_request(user)

        assert exc_info.value.message == "Active subscription required to submit requests"

    def test_no_subscription_rejected(self, db_session, make_user, settings):
        user = make_user(plan_id=None)

        with pytest.raises(EntitlementError) as exc_info:
            EntitlementService(db_session, settings).check_can_submit_request(user)

        assert exc_info.value.check == "subscription"

    def test_team_member_uses_owner_plan(self, db_session, make_user, settings):
        owner = make_user(plan_id=SIGNATURE_PLAN)
        organization = ensure_organization(db_session, owner)
        db_session.commit()
        member = add_member(db_session, make_user, organization)
        add_request(db_session, organization)
        service = EntitlementService(db_session, settings)

        assert service.entitlements_for(member).tier == PlanTier.SIGNATURE_BLEND
        service.check_can_submit_request(member)
        add_request(db_session, organization)
        with pytest.raises(EntitlementError):
            service.check_can_submit_request(member)


@pytest.mark.unit
class TestMeetingFeatures:
    """Test meeting type gating"""

    @pytest.mark.parametrize("plan_id,meeting_type,allowed", [
        (LITE_PLAN, MeetingType.CHECK_IN.value, True),
        (LITE_PLAN, MeetingType.UX_REVIEW.value, False),
        (LITE_PLAN, MeetingType.STRATEGY_CALL.value, False),
        (SIGNATURE_PLAN, MeetingType.UX_REVIEW.value, True),
        (SIGNATURE_PLAN, MeetingType.STRATEGY_CALL.value, False),
        (TARO_PLAN, MeetingType.UX_REVIEW.value, True),
        (TARO_PLAN, MeetingType.STRATEGY_CALL.value, True),
    ])
    def test_meeting_gating(self, db_session, make_user, settings, plan_id, meeting_type, allowed):
        user = make_user(plan_id=plan_id)
        service = EntitlementService(db_session, settings)

        if allowed:
            service.check_can_schedule_meeting(user, meeting_type)
        else:
            with pytest.raises(EntitlementError):
                service.check_can_schedule_meeting(user, meeting_type)

    def test_rejection_messages(self, db_session, make_user, settings):
        user = make_user(plan_id=LITE_PLAN)
        service = EntitlementService(db_session, settings)

        with pytest.raises(EntitlementError) as ux:
            service.check_can_schedule_meeting(user, MeetingType.UX_REVIEW.value)
        with pytest.raises(EntitlementError) as strategy:
            service.check_can_schedule_meeting(user, MeetingType.STRATEGY_CALL.value)

        assert ux.value.message == "UX reviews are only available with Signature Blend or Taro Cloud plans"
        assert strategy.value.message == "Strategy calls are only available with Taro Cloud plan"

    def test_inactive_subscription(self, db_session, make_user, settings):
        user = make_user(plan_id=TARO_PLAN, status=SubscriptionStatus.CANCELLED.value)

        with pytest.raises(EntitlementError) as exc_info:
            EntitlementService(db_session, settings).check_can_schedule_meeting(user, MeetingType.CHECK_IN.value)

        assert exc_info.value.message == "Active subscription required to schedule meetings"


@pytest.mark.unit
class TestSeats:
    """Test team size limits"""

    def test_lite_brew_owner_cannot_invite(self, db_session, make_user, settings):
        owner = make_user(plan_id=LITE_PLAN)

        with pytest.raises(EntitlementError) as exc_info:
            EntitlementService(db_session, settings).check_can_invite(owner)

        assert exc_info.value.check == "seats"
        assert exc_info.value.message == (
            "Your Lite Brew plan supports up to 1 user(s). Upgrade to add more team members."
        )

    def test_unknown_plan_message_names_current_plan(self, db_session, make_user, settings):
        owner = make_user(plan_id="price_legacy")

        with pytest.raises(EntitlementError) as exc_info:
            EntitlementService(db_session, settings).check_can_invite(owner)

        assert exc_info.value.message.startswith("Your current plan supports up to 1 user(s).")

    def test_seats_include_owner(self, db_session, make_user, settings):
        owner = make_user(plan_id=SIGNATURE_PLAN)
        organization = ensure_organization(db_session, owner)
        db_session.commit()
        service = EntitlementService(db_session, settings)

        assert service.count_seats(organization) == 1
        add_member(db_session, make_user, organization)
        service.check_can_invite(owner)
        add_member(db_session, make_user, organization)

        assert service.count_seats(organization) == 3
        with pytest.raises(EntitlementError):
            service.check_can_invite(owner)

    def test_join_checks_owner_plan(self, db_session, make_user, settings):
        owner = make_user(plan_id=SIGNATURE_PLAN)
        organization = ensure_organization(db_session, owner)
        db_session.commit()
        service = EntitlementService(db_session, settings)

        service.check_can_join(organization)
        add_member(db_session, make_user, organization)
        add_member(db_session, make_user, organization)

        with pytest.raises(EntitlementError) as exc_info:
            service.check_can_join(organization)
        assert exc_info.value.message == "Organization has reached maximum team size for their plan"

    def test_join_requires_active_owner_subscription(self, db_session, make_user, settings):
        owner = make_user(plan_id=TARO_PLAN, status=SubscriptionStatus.PAST_DUE.value)
        organization = ensure_organization(db_session, owner)
        db_session.commit()

        with pytest.raises(EntitlementError) as exc_info:
            EntitlementService(db_session, settings).check_can_join(organization)

        assert exc_info.value.message == "Organization subscription is not active"
