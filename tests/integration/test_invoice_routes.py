"""Integration tests for invoice endpoints and the webhooks they emit"""
import json

import httpx
import pytest

from conftest import auth_header
from portal.dependencies.webhooks import get_webhook_client
from portal.main import app
from portal.models import WebhookDelivery, DeliveryState
from portal.services.webhook_delivery import EVENT_HEADER, SIGNATURE_HEADER, verify_signature


class Receiver:
    """Records webhook requests and answers with a fixed status"""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)


@pytest.fixture
def receiver(client):
    receiver = Receiver()
    webhook_client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
    app.dependency_overrides[get_webhook_client] = lambda: webhook_client
    return receiver


def subscribe(client, user, events):
    response = client.post(
        "/api/webhooks",
        json={"url": "https://erp.example.com/hooks", "events": events},
        headers=auth_header(user),
    )
    return response.json()


def create_invoice(client, admin, customer, amount="150.00"):
    return client.post(
        "/api/admin/invoices",
        json={"client_id": str(customer.id), "amount": amount, "currency": "usd"},
        headers=auth_header(admin),
    )


@pytest.mark.integration
class TestInvoiceRoutes:

    def test_admin_only(self, client, make_user, receiver):
        customer = make_user()

        response = create_invoice(client, customer, customer)

        assert response.status_code == 403

    def test_create_emits_signed_event(self, client, make_user, admin_user, receiver):
        customer = make_user()
        subscription = subscribe(client, customer, ["invoice.created"])

        response = create_invoice(client, admin_user, customer)

        assert response.status_code == 201
        invoice = response.json()
        assert invoice["status"] == "DRAFT"
        assert invoice["currency"] == "USD"
        assert invoice["number"].startswith("INV-")

        assert len(receiver.requests) == 1
        request = receiver.requests[0]
        body = request.content.decode("utf-8")
        assert request.headers[EVENT_HEADER] == "invoice.created"
        assert verify_signature(body, request.headers[SIGNATURE_HEADER], subscription["secret"])
        assert json.loads(body)["data"]["id"] == invoice["id"]

    def test_lifecycle(self, client, make_user, admin_user, receiver):
        customer = make_user()
        subscribe(client, customer, ["invoice.sent", "invoice.paid"])
        invoice_id = create_invoice(client, admin_user, customer).json()["id"]

        sent = client.post(f"/api/admin/invoices/{invoice_id}/send", headers=auth_header(admin_user))
        assert sent.status_code == 200
        assert sent.json()["status"] == "SENT"

        paid = client.post(f"/api/admin/invoices/{invoice_id}/mark-paid", headers=auth_header(admin_user))
        assert paid.status_code == 200
        assert paid.json()["paid_at"] is not None

        assert [r.headers[EVENT_HEADER] for r in receiver.requests] == ["invoice.sent", "invoice.paid"]

        again = client.post(f"/api/admin/invoices/{invoice_id}/mark-paid", headers=auth_header(admin_user))
        assert again.status_code == 400

    def test_failing_receiver_does_not_fail_payment(self, client, db_session, make_user, admin_user, receiver):
        receiver.status_code = 503
        customer = make_user()
        subscribe(client, customer, ["invoice.paid"])
        invoice_id = create_invoice(client, admin_user, customer).json()["id"]

        paid = client.post(f"/api/admin/invoices/{invoice_id}/mark-paid", headers=auth_header(admin_user))

        assert paid.status_code == 200
        delivery = db_session.query(WebhookDelivery).one()
        assert delivery.event == "invoice.paid"
        assert delivery.success is False
        assert delivery.status_code == 503
        assert delivery.state == DeliveryState.PENDING.value
        assert delivery.next_retry_at is not None

    def test_client_lists_own_invoices(self, client, make_user, admin_user, receiver):
        customer = make_user()
        other = make_user()
        create_invoice(client, admin_user, customer)

        mine = client.get("/api/portal/invoices", headers=auth_header(customer)).json()
        theirs = client.get("/api/portal/invoices", headers=auth_header(other)).json()

        assert len(mine) == 1
        assert mine[0]["amount"] == "150.00"
        assert theirs == []

    def test_unknown_invoice(self, client, admin_user, receiver):
        response = client.post(
            "/api/admin/invoices/00000000-0000-0000-0000-000000000000/send",
            headers=auth_header(admin_user),
        )
        assert response.status_code == 404

    def test_unknown_client(self, client, admin_user, receiver):
        response = client.post(
            "/api/admin/invoices",
            json={"client_id": "00000000-0000-0000-0000-000000000000", "amount": "10.00"},
            headers=auth_header(admin_user),
        )
        assert response.status_code == 404
