"""
Signing and transport for outbound webhooks.

Subscribers receive:

    POST <subscription url>
    Content-Type: application/json
    X-Webhook-Signature: <hex HMAC-SHA256 of the raw body>
    X-Webhook-Event: <event name>

    {"event": "...", "timestamp": "...Z", "data": {...}}

The signature covers the exact body bytes. The serialized body is stored with
the delivery record and re-signed verbatim on every retry.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RESPONSE_MAX_CHARS = 1000


@dataclass
class DeliveryResult:
    """Outcome of a single POST to a subscriber"""
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: int = 0

    @property
    def outcome(self) -> str:
        if self.success:
            return "success"
        return "http_error" if self.status_code is not None else "network_error"


def build_payload(event: str, data: Dict[str, Any], timestamp: Optional[datetime] = None) -> str:
    """Serialize the event envelope once; this string is what gets signed and stored."""
    moment = timestamp or datetime.utcnow()
    envelope = {
        "event": event,
        "timestamp": moment.isoformat(timespec="milliseconds") + "Z",
        "data": data,
    }
    return json.dumps(envelope, separators=(",", ":"), default=str)


def sign_payload(payload: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of the payload string"""
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def verify_signature(payload: str, signature: str, secret: str) -> bool:
    """
    Check a received signature against the payload.

    Uses a constant-time comparison. Signatures that are not ASCII hex can
    never match and return False instead of raising.
    """
    if not signature:
        return False
    expected = sign_payload(payload, secret)
    try:
        provided = signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(provided, expected.encode("ascii"))


def build_headers(payload: str, secret: str, event: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign_payload(payload, secret),
        EVENT_HEADER: event,
    }


async def deliver(
    client: httpx.AsyncClient,
    url: str,
    payload: str,
    secret: str,
    event: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    response_max_chars: int = DEFAULT_RESPONSE_MAX_CHARS,
) -> DeliveryResult:
    """
    POST a signed payload to a subscriber.

    Never raises: timeouts, connection errors and malformed URLs come back as
    a failed result with ``status_code=None``; non-2xx responses come back as
    a failed result carrying the status code and (truncated) body.

    Args:
        client: Shared async HTTP client
        url: Subscriber endpoint
        payload: Serialized body, sent byte-for-byte
        secret: Subscription signing secret
        event: Event name for the event header
        timeout: Overall deadline for the attempt, in seconds

    Returns:
        DeliveryResult describing the attempt
    """
    headers = build_headers(payload, secret, event)
    start_time = time.monotonic()

    try:
        response = await asyncio.wait_for(
            client.post(url, content=payload.encode("utf-8"), headers=headers),
            timeout=timeout,
        )
        duration_ms = int((time.monotonic() - start_time) * 1000)

        body = response.text
        return DeliveryResult(
            success=200 <= response.status_code < 300,
            status_code=response.status_code,
            response_body=body[:response_max_chars] if body else None,
            duration_ms=duration_ms,
        )

    except asyncio.TimeoutError:
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.warning(f"Webhook delivery to {url} timed out after {timeout}s")
        return DeliveryResult(
            success=False,
            error_message=f"Timed out after {timeout:g}s",
            duration_ms=duration_ms,
        )

    except Exception as e:
        duration_ms = int((time.monotonic() - start_time) * 1000)
        message = str(e) or e.__class__.__name__
        logger.warning(f"Webhook delivery to {url} failed: {message}")
        return DeliveryResult(
            success=False,
            error_message=message[:500],
            duration_ms=duration_ms,
        )
