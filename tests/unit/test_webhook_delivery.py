"""Unit tests for webhook signing and transport (webhook_delivery.py)"""
import asyncio
import hashlib
import hmac
import json
import uuid
from datetime import datetime
from decimal import Decimal

import httpx
import pytest

from portal.services.webhook_delivery import (
    SIGNATURE_HEADER,
    EVENT_HEADER,
    build_payload,
    build_headers,
    sign_payload,
    verify_signature,
    deliver,
)


SECRET = "a" * 64


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestSignature:
    """Test HMAC signing and verification"""

    def test_signature_is_deterministic(self):
        payload = build_payload("invoice.paid", {"id": "inv_1"})
        assert sign_payload(payload, SECRET) == sign_payload(payload, SECRET)

    def test_signature_is_hex_sha256(self):
        payload = '{"event":"task.created"}'
        expected = hmac.new(SECRET.encode(), payload.encode(), hashlib.sha256).hexdigest()

        signature = sign_payload(payload, SECRET)

        assert signature == expected
        assert len(signature) == 64

    def test_signature_changes_with_secret(self):
        payload = '{"event":"task.created"}'
        assert sign_payload(payload, SECRET) != sign_payload(payload, "b" * 64)

    def test_signature_changes_with_payload(self):
        assert sign_payload('{"a":1}', SECRET) != sign_payload('{"a":2}', SECRET)

    def test_verify_accepts_own_signature(self):
        payload = build_payload("message.sent", {"body": "héllo"})
        assert verify_signature(payload, sign_payload(payload, SECRET), SECRET) is True

    def test_verify_rejects_tampered_payload(self):
        payload = build_payload("invoice.paid", {"amount": "10.00"})
        signature = sign_payload(payload, SECRET)
        tampered = payload.replace("10.00", "99.00")

        assert verify_signature(tampered, signature, SECRET) is False

    def test_verify_rejects_wrong_secret(self):
        payload = build_payload("invoice.paid", {})
        assert verify_signature(payload, sign_payload(payload, SECRET), "other") is False

    @pytest.mark.parametrize("signature", ["", "not-hex", "é" * 64, "0" * 63])
    def test_verify_rejects_malformed_signature(self, signature):
        payload = build_payload("invoice.paid", {})
        assert verify_signature(payload, signature, SECRET) is False


@pytest.mark.unit
class TestBuildPayload:
    """Test event envelope serialization"""

    def test_envelope_fields(self):
        payload = build_payload("project.created", {"name": "Rebrand"}, timestamp=datetime(2026, 1, 2, 3, 4, 5))
        body = json.loads(payload)

        assert body == {
            "event": "project.created",
            "timestamp": "2026-01-02T03:04:05.000Z",
            "data": {"name": "Rebrand"},
        }

    def test_compact_serialization(self):
        payload = build_payload("task.created", {"a": 1})
        assert ", " not in payload
        assert ": " not in payload

    def test_non_json_values_are_stringified(self):
        item_id = uuid.uuid4()
        payload = build_payload("invoice.created", {"id": item_id, "amount": Decimal("12.50")})
        data = json.loads(payload)["data"]

        assert data["id"] == str(item_id)
        assert data["amount"] == "12.50"

    def test_headers(self):
        payload = build_payload("file.uploaded", {})
        headers = build_headers(payload, SECRET, "file.uploaded")

        assert headers["Content-Type"] == "application/json"
        assert headers[SIGNATURE_HEADER] == sign_payload(payload, SECRET)
        assert headers[EVENT_HEADER] == "file.uploaded"


@pytest.mark.unit
class TestDeliver:
    """Test a single POST to a subscriber"""

    @pytest.mark.asyncio
    async def test_success_sends_exact_bytes_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            seen["signature"] = request.headers[SIGNATURE_HEADER]
            seen["event"] = request.headers[EVENT_HEADER]
            return httpx.Response(200, text="ok")

        payload = build_payload("invoice.paid", {"id": "inv_1"})
        async with mock_client(handler) as client:
            result = await deliver(client, "https://hooks.example.com/in", payload, SECRET, "invoice.paid")

        assert result.success is True
        assert result.status_code == 200
        assert result.response_body == "ok"
        assert result.error_message is None
        assert seen["body"] == payload.encode("utf-8")
        assert verify_signature(seen["body"].decode("utf-8"), seen["signature"], SECRET)
        assert seen["event"] == "invoice.paid"

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure_with_status(self):
        async with mock_client(lambda request: httpx.Response(503, text="down")) as client:
            result = await deliver(client, "https://hooks.example.com/in", "{}", SECRET, "task.created")

        assert result.success is False
        assert result.status_code == 503
        assert result.response_body == "down"
        assert result.outcome == "http_error"

    @pytest.mark.asyncio
    async def test_redirect_is_not_success(self):
        async with mock_client(lambda request: httpx.Response(302, headers={"Location": "/x"})) as client:
            result = await deliver(client, "https://hooks.example.com/in", "{}", SECRET, "task.created")

        assert result.success is False
        assert result.status_code == 302

    @pytest.mark.asyncio
    async def test_response_body_truncated(self):
        async with mock_client(lambda request: httpx.Response(500, text="x" * 5000)) as client:
            result = await deliver(client, "https://hooks.example.com/in", "{}", SECRET, "task.created")

        assert len(result.response_body) == 1000

    @pytest.mark.asyncio
    async def test_network_error_has_no_status(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            result = await deliver(client, "https://hooks.example.com/in", "{}", SECRET, "task.created")

        assert result.success is False
        assert result.status_code is None
        assert "connection refused" in result.error_message
        assert result.outcome == "network_error"

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        async with mock_client(handler) as client:
            result = await deliver(
                client, "https://hooks.example.com/in", "{}", SECRET, "task.created", timeout=0.05
            )

        assert result.success is False
        assert result.status_code is None
        assert "Timed out" in result.error_message

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_raise(self):
        def handler(request):
            raise RuntimeError("boom")

        async with mock_client(handler) as client:
            result = await deliver(client, "https://hooks.example.com/in", "{}", SECRET, "task.created")

        assert result.success is False
        assert result.status_code is None
        assert result.error_message
