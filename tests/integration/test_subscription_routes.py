"""Integration tests for subscription, health and metrics endpoints"""
import pytest

from conftest import auth_header, TARO_PLAN
from portal.models import SubscriptionStatus


@pytest.mark.integration
class TestSubscriptionRoutes:

    def test_current_plan(self, client, make_user):
        user = make_user(plan_id=TARO_PLAN)

        response = client.get("/api/portal/subscription", headers=auth_header(user))

        assert response.status_code == 200
        body = response.json()
        assert body["plan_id"] == TARO_PLAN
        assert body["is_active"] is True
        assert body["entitlements"]["tier"] == "taro_cloud"
        assert body["entitlements"]["max_seats"] == 5

    def test_unknown_plan_reports_lite_brew(self, client, make_user):
        user = make_user(plan_id="price_retired")

        body = client.get("/api/portal/subscription", headers=auth_header(user)).json()

        assert body["entitlements"]["tier"] == "lite_brew"
        assert body["entitlements"]["max_active_requests"] == 1

    def test_inactive(self, client, make_user):
        user = make_user(plan_id=TARO_PLAN, status=SubscriptionStatus.PAST_DUE.value)

        body = client.get("/api/portal/subscription", headers=auth_header(user)).json()

        assert body["status"] == "PAST_DUE"
        assert body["is_active"] is False

    def test_no_subscription(self, client, make_user):
        user = make_user(plan_id=None)

        body = client.get("/api/portal/subscription", headers=auth_header(user)).json()

        assert body["plan_id"] is None
        assert body["is_active"] is False


@pytest.mark.integration
class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "webhook_deliveries_total" in response.text
