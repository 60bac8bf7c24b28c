"""
Outbound HTTP client dependency for routes that raise webhook events.
"""

from typing import Optional

import httpx


def get_webhook_client() -> Optional[httpx.AsyncClient]:
    """Client used to deliver webhooks; None lets each dispatch open its own"""
    return None
