"""Integration tests for webhook subscription endpoints"""
import pytest

from conftest import auth_header


HOOK_URL = "https://hooks.example.com/portal"


def create(client, user, **overrides):
    body = {"url": HOOK_URL, "events": ["invoice.paid", "task.created"], **overrides}
    return client.post("/api/webhooks", json=body, headers=auth_header(user))


@pytest.mark.integration
class TestWebhookRoutes:

    def test_create_returns_secret_once(self, client, make_user):
        user = make_user()

        response = create(client, user, description="Billing sync")

        assert response.status_code == 201
        body = response.json()
        assert len(body["secret"]) == 64
        assert body["events"] == ["invoice.paid", "task.created"]
        assert body["is_active"] is True

        listed = client.get("/api/webhooks", headers=auth_header(user)).json()
        assert len(listed) == 1
        assert "secret" not in listed[0]

        detail = client.get(f"/api/webhooks/{body['id']}", headers=auth_header(user)).json()
        assert "secret" not in detail

    def test_create_requires_url_and_events(self, client, make_user):
        user = make_user()

        response = create(client, user, events=[])

        assert response.status_code == 400
        assert response.json()["detail"] == "URL and at least one event required"

    def test_create_rejects_unknown_event(self, client, make_user):
        user = make_user()
        assert create(client, user, events=["invoice.exploded"]).status_code == 400

    def test_create_rejects_bad_url(self, client, make_user):
        user = make_user()
        assert create(client, user, url="ftp://hooks.example.com").status_code == 400

    def test_list_events(self, client, make_user):
        user = make_user()

        events = client.get("/api/webhooks/events", headers=auth_header(user)).json()

        assert "invoice.paid" in events
        assert "message.sent" in events

    def test_tenant_isolation(self, client, make_user):
        owner = make_user()
        other = make_user()
        subscription_id = create(client, owner).json()["id"]

        assert client.get("/api/webhooks", headers=auth_header(other)).json() == []
        assert client.get(f"/api/webhooks/{subscription_id}", headers=auth_header(other)).status_code == 404
        assert client.patch(
            f"/api/webhooks/{subscription_id}", json={"is_active": False}, headers=auth_header(other)
        ).status_code == 404
        assert client.delete(f"/api/webhooks/{subscription_id}", headers=auth_header(other)).status_code == 404
        assert client.get(
            f"/api/webhooks/{subscription_id}/deliveries", headers=auth_header(other)
        ).status_code == 404

    def test_update(self, client, make_user):
        user = make_user()
        subscription_id = create(client, user).json()["id"]

        response = client.patch(
            f"/api/webhooks/{subscription_id}",
            json={"events": ["file.uploaded"], "is_active": False},
            headers=auth_header(user),
        )

        assert response.status_code == 200
        assert response.json()["events"] == ["file.uploaded"]
        assert response.json()["is_active"] is False

    def test_delete(self, client, make_user):
        user = make_user()
        subscription_id = create(client, user).json()["id"]

        assert client.delete(f"/api/webhooks/{subscription_id}", headers=auth_header(user)).status_code == 204
        assert client.get(f"/api/webhooks/{subscription_id}", headers=auth_header(user)).status_code == 404

    def test_deliveries_empty(self, client, make_user):
        user = make_user()
        subscription_id = create(client, user).json()["id"]

        response = client.get(f"/api/webhooks/{subscription_id}/deliveries", headers=auth_header(user))

        assert response.status_code == 200
        assert response.json() == []
