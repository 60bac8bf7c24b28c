"""
Webhook Service for tenant event notifications.

Supports:
- Tenant-owned webhook subscriptions filtered by event name
- Concurrent fan-out with per-delivery timeout
- Retry sweeper with exponential backoff and a bounded worker pool
- Lease-based claiming so several sweepers never retry the same delivery
- Optional deactivation of subscriptions whose deliveries keep exhausting retries
"""

import asyncio
import logging
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from portal.config import Settings, get_settings
from portal.error_handlers import ValidationError
from portal.metrics import (
    record_webhook_delivery,
    record_webhook_abandoned,
    record_sweep_result,
    record_subscription_deactivated,
)
from portal.models import WebhookSubscription, WebhookDelivery, WebhookEvent, DeliveryState
from portal.services.webhook_delivery import DeliveryResult, build_payload, deliver

logger = logging.getLogger(__name__)

VALID_EVENTS = frozenset(e.value for e in WebhookEvent)

# Fields a tenant may change on an existing subscription
UPDATABLE_FIELDS = ("url", "events", "description", "is_active")


def compute_next_retry(
    attempts: int,
    now: datetime,
    max_attempts: int = 3,
    initial_minutes: int = 5,
) -> Optional[datetime]:
    """
    When the next attempt should run, given how many attempts have been made.

    The first retry is a flat ``initial_minutes`` after the first failure.
    Later retries back off as ``2 ** attempts * initial_minutes``
    (attempt 2 -> 20 min, attempt 3 -> 40 min). Returns None once
    ``attempts`` reaches ``max_attempts``.
    """
    if attempts >= max_attempts:
        return None
    if attempts <= 1:
        return now + timedelta(minutes=initial_minutes)
    return now + timedelta(minutes=(2 ** attempts) * initial_minutes)


def validate_events(events: List[str]) -> List[str]:
    """Reject unknown event names; returns the de-duplicated list in input order"""
    if not events:
        raise ValidationError("At least one event is required")
    invalid = [e for e in events if e not in VALID_EVENTS]
    if invalid:
        raise ValidationError(
            f"Invalid event(s): {', '.join(invalid)}. Valid events: {sorted(VALID_EVENTS)}"
        )
    return list(dict.fromkeys(events))


def validate_url(url: str) -> str:
    """Subscriber URLs must be absolute http(s) URLs"""
    try:
        parsed = httpx.URL(url)
    except Exception:
        raise ValidationError("Invalid URL")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError("Invalid URL")
    return url


class WebhookService:
    """Service for managing subscriptions and delivering webhooks"""

    def __init__(
        self,
        db: Session,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.client = client
        self.settings = settings or get_settings()

    @asynccontextmanager
    async def _http(self):
        """Use the injected client, or a short-lived one for this call"""
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.settings.webhook_timeout_seconds) as client:
            yield client

    def _next_retry(self, attempts: int, now: datetime) -> Optional[datetime]:
        return compute_next_retry(
            attempts,
            now,
            max_attempts=self.settings.webhook_max_attempts,
            initial_minutes=self.settings.webhook_initial_retry_minutes,
        )

    async def _send(self, client: httpx.AsyncClient, url: str, payload: str, secret: str, event: str) -> DeliveryResult:
        return await deliver(
            client,
            url,
            payload,
            secret,
            event,
            timeout=self.settings.webhook_timeout_seconds,
            response_max_chars=self.settings.webhook_response_max_chars,
        )

    def _safe_rollback(self):
        try:
            self.db.rollback()
        except Exception as e:
            logger.warning(f"Rollback failed: {e}")

    # ==================== Dispatch ====================

    async def trigger_webhooks(
        self,
        owner_id: uuid.UUID,
        event: Union[WebhookEvent, str],
        data: Dict[str, Any],
    ) -> List[WebhookDelivery]:
        """
        Deliver an event to every active subscription of a tenant.

        Deliveries run concurrently and each outcome is recorded as soon as
        it completes. Nothing raised here reaches the caller: the business
        operation that fired the event has already happened and must not
        fail because a subscriber is down.

        Args:
            owner_id: Tenant (user) whose subscriptions should receive the event
            event: Event type
            data: Event-specific data

        Returns:
            Delivery records created, in completion order (empty on no match or error)
        """
        event_name = event.value if isinstance(event, WebhookEvent) else str(event)

        try:
            candidates = self.db.query(WebhookSubscription).filter(
                WebhookSubscription.owner_id == owner_id,
                WebhookSubscription.is_active == True,  # noqa: E712
            ).all()
            subscribed = [s for s in candidates if s.subscribes_to(event_name)]

            if not subscribed:
                logger.debug(f"No webhook subscriptions for {event_name}", extra={"owner_id": str(owner_id)})
                return []

            payload = build_payload(event_name, data)
            completed: List[WebhookDelivery] = []

            async with self._http() as client:
                results = await asyncio.gather(
                    *(
                        self._deliver_and_record(client, subscription, event_name, payload, completed)
                        for subscription in subscribed
                    ),
                    return_exceptions=True,
                )

            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Failed to record webhook delivery for {event_name}: {result}")

            return completed

        except Exception as e:
            logger.error(f"Failed to trigger webhooks for {event_name}: {e}", exc_info=True)
            self._safe_rollback()
            return []

    async def _deliver_and_record(
        self,
        client: httpx.AsyncClient,
        subscription: WebhookSubscription,
        event: str,
        payload: str,
        completed: List[WebhookDelivery],
    ) -> WebhookDelivery:
        """First attempt for one subscription, persisted immediately"""
        subscription_id = subscription.id
        url, secret = subscription.url, subscription.secret

        result = await self._send(client, url, payload, secret, event)
        now = datetime.utcnow()

        delivery = WebhookDelivery(
            subscription_id=subscription_id,
            event=event,
            payload=payload,
            attempts=1,
            created_at=now,
        )
        self._apply_result(delivery, result, now)

        try:
            self.db.add(delivery)
            subscription = self.db.get(WebhookSubscription, subscription_id)
            if result.success:
                delivery.state = DeliveryState.SUCCEEDED.value
                delivery.next_retry_at = None
                self._reset_exhausted(subscription)
            else:
                delivery.next_retry_at = self._next_retry(delivery.attempts, now)
                if delivery.next_retry_at is None:
                    self._abandon(delivery, subscription)
                else:
                    delivery.state = DeliveryState.PENDING.value
            self.db.commit()
        except Exception:
            self._safe_rollback()
            raise

        record_webhook_delivery(event, result.outcome, "initial", result.duration_ms)
        if not result.success:
            logger.info(
                f"Webhook delivery failed, retry scheduled for {delivery.next_retry_at}",
                extra={"subscription_id": str(subscription_id), "event": event, "status_code": result.status_code},
            )

        completed.append(delivery)
        return delivery

    def _apply_result(self, delivery: WebhookDelivery, result: DeliveryResult, now: datetime):
        delivery.success = result.success
        delivery.status_code = result.status_code
        delivery.response_body = result.response_body
        delivery.error_message = result.error_message
        delivery.duration_ms = result.duration_ms
        delivery.last_attempt_at = now

    def _reset_exhausted(self, subscription: Optional[WebhookSubscription]):
        if subscription is not None and subscription.consecutive_exhausted:
            subscription.consecutive_exhausted = 0

    def _abandon(self, delivery: WebhookDelivery, subscription: Optional[WebhookSubscription]):
        """Terminal failure; applies the exhausted-delivery deactivation policy"""
        delivery.state = DeliveryState.ABANDONED.value
        delivery.next_retry_at = None
        record_webhook_abandoned(delivery.event)

        logger.warning(
            f"Webhook delivery abandoned after {delivery.attempts} attempt(s)",
            extra={"delivery_id": str(delivery.id), "event": delivery.event},
        )

        if subscription is None:
            return

        subscription.consecutive_exhausted = (subscription.consecutive_exhausted or 0) + 1
        threshold = self.settings.webhook_auto_deactivate_after
        if threshold > 0 and subscription.is_active and subscription.consecutive_exhausted >= threshold:
            subscription.is_active = False
            record_subscription_deactivated()
            logger.warning(
                f"Webhook subscription deactivated after {subscription.consecutive_exhausted} "
                f"exhausted deliveries",
                extra={"subscription_id": str(subscription.id)},
            )

    # ==================== Retry Sweeper ====================

    async def retry_failed_deliveries(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Re-attempt failed deliveries whose retry time has come.

        Picks up at most ``webhook_retry_batch_size`` due deliveries (oldest
        first) and retries them through a pool of
        ``webhook_retry_concurrency`` workers. Each delivery is claimed with
        a conditional update before it is touched. Never raises.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Counters: selected, claimed, succeeded, failed, abandoned, skipped, errors
        """
        stats = {
            "selected": 0,
            "claimed": 0,
            "succeeded": 0,
            "failed": 0,
            "abandoned": 0,
            "skipped": 0,
            "errors": 0,
        }
        sweep_time = now or datetime.utcnow()

        try:
            due_ids = [
                row.id for row in self.db.query(WebhookDelivery.id).filter(
                    WebhookDelivery.success == False,  # noqa: E712
                    WebhookDelivery.attempts < self.settings.webhook_max_attempts,
                    WebhookDelivery.next_retry_at.isnot(None),
                    WebhookDelivery.next_retry_at <= sweep_time,
                    or_(
                        WebhookDelivery.claimed_until.is_(None),
                        WebhookDelivery.claimed_until < sweep_time,
                    ),
                ).order_by(WebhookDelivery.created_at.asc()).limit(
                    self.settings.webhook_retry_batch_size
                ).all()
            ]
        except Exception as e:
            logger.error(f"Failed to select webhook deliveries for retry: {e}", exc_info=True)
            self._safe_rollback()
            return stats

        stats["selected"] = len(due_ids)
        if not due_ids:
            logger.debug("No webhook deliveries due for retry")
            return stats

        semaphore = asyncio.Semaphore(max(1, self.settings.webhook_retry_concurrency))

        async def run(delivery_id: uuid.UUID) -> Tuple[bool, str]:
            async with semaphore:
                return await self._retry_one(client, delivery_id, sweep_time)

        async with self._http() as client:
            outcomes = await asyncio.gather(*(run(d) for d in due_ids), return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error(f"Unexpected error in webhook retry: {outcome}")
                stats["errors"] += 1
            else:
                claimed, result = outcome
                if claimed:
                    stats["claimed"] += 1
                stats[result] += 1

        for result in ("succeeded", "failed", "abandoned", "skipped", "errors"):
            record_sweep_result(result, stats[result])

        logger.info(
            f"Webhook retry sweep complete: {stats['selected']} selected, "
            f"{stats['succeeded']} succeeded, {stats['failed']} failed, "
            f"{stats['abandoned']} abandoned, {stats['skipped']} skipped, {stats['errors']} errors"
        )
        return stats

    def _claim(self, delivery_id: uuid.UUID, now: datetime) -> bool:
        """Take a lease on a due delivery; False if another sweeper holds or handled it"""
        claimed = self.db.query(WebhookDelivery).filter(
            WebhookDelivery.id == delivery_id,
            WebhookDelivery.success == False,  # noqa: E712
            WebhookDelivery.next_retry_at.isnot(None),
            WebhookDelivery.next_retry_at <= now,
            or_(
                WebhookDelivery.claimed_until.is_(None),
                WebhookDelivery.claimed_until < now,
            ),
        ).update(
            {WebhookDelivery.claimed_until: now + timedelta(seconds=self.settings.webhook_claim_seconds)},
            synchronize_session=False,
        )
        self.db.commit()
        return claimed == 1

    async def _retry_one(
        self,
        client: httpx.AsyncClient,
        delivery_id: uuid.UUID,
        now: datetime,
    ) -> Tuple[bool, str]:
        """Retry a single delivery; returns (claimed, outcome bucket) for sweep stats"""
        claimed = False
        try:
            if not self._claim(delivery_id, now):
                return claimed, "skipped"
            claimed = True

            delivery = self.db.get(WebhookDelivery, delivery_id)
            self.db.refresh(delivery)
            subscription = delivery.subscription

            # Subscriptions can be deactivated between the failure and the sweep
            if subscription is None or not subscription.is_active:
                delivery.claimed_until = None
                self.db.commit()
                logger.debug(f"Skipping retry for inactive subscription", extra={"delivery_id": str(delivery_id)})
                return claimed, "skipped"

            url, secret = subscription.url, subscription.secret
            payload, event = delivery.payload, delivery.event

            result = await self._send(client, url, payload, secret, event)
            delivery = self.db.get(WebhookDelivery, delivery_id)
            subscription = delivery.subscription

            delivery.attempts += 1
            self._apply_result(delivery, result, now)
            delivery.claimed_until = None

            if result.success:
                delivery.state = DeliveryState.SUCCEEDED.value
                delivery.next_retry_at = None
                self._reset_exhausted(subscription)
                outcome = "succeeded"
            else:
                delivery.next_retry_at = self._next_retry(delivery.attempts, now)
                if delivery.next_retry_at is None:
                    self._abandon(delivery, subscription)
                    outcome = "abandoned"
                else:
                    delivery.state = DeliveryState.RETRYING.value
                    outcome = "failed"

            self.db.commit()
            record_webhook_delivery(event, result.outcome, "retry", result.duration_ms)
            return claimed, outcome

        except Exception as e:
            logger.error(
                f"Webhook retry failed: {e}",
                extra={"delivery_id": str(delivery_id)},
                exc_info=True,
            )
            self._safe_rollback()
            return claimed, "errors"

    # ==================== Subscription Management ====================

    def create_subscription(
        self,
        owner_id: uuid.UUID,
        url: str,
        events: List[str],
        description: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> WebhookSubscription:
        """Create a subscription; a signing secret is generated when none is given"""
        subscription = WebhookSubscription(
            owner_id=owner_id,
            url=validate_url(url),
            events=validate_events(events),
            description=description,
            secret=secret or secrets.token_hex(32),
            is_active=True,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)

        logger.info(
            f"Webhook subscription created for {len(subscription.events)} event(s)",
            extra={"subscription_id": str(subscription.id), "owner_id": str(owner_id)},
        )
        return subscription

    def list_subscriptions(self, owner_id: uuid.UUID) -> List[WebhookSubscription]:
        """Subscriptions owned by a tenant, newest first"""
        return self.db.query(WebhookSubscription).filter(
            WebhookSubscription.owner_id == owner_id
        ).order_by(WebhookSubscription.created_at.desc()).all()

    def get_subscription(
        self,
        subscription_id: uuid.UUID,
        owner_id: Optional[uuid.UUID] = None,
    ) -> Optional[WebhookSubscription]:
        """Get a subscription; with ``owner_id`` another tenant's subscription reads as missing"""
        query = self.db.query(WebhookSubscription).filter(WebhookSubscription.id == subscription_id)
        if owner_id is not None:
            query = query.filter(WebhookSubscription.owner_id == owner_id)
        return query.first()

    def update_subscription(
        self,
        subscription_id: uuid.UUID,
        owner_id: uuid.UUID,
        **updates,
    ) -> Optional[WebhookSubscription]:
        """Update a tenant's subscription"""
        subscription = self.get_subscription(subscription_id, owner_id)
        if not subscription:
            return None

        for key, value in updates.items():
            if key not in UPDATABLE_FIELDS or value is None:
                continue
            if key == "url":
                value = validate_url(value)
            elif key == "events":
                value = validate_events(value)
            elif key == "is_active" and value and not subscription.is_active:
                # Re-enabling starts the exhausted-delivery count over
                subscription.consecutive_exhausted = 0
            setattr(subscription, key, value)

        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def delete_subscription(self, subscription_id: uuid.UUID, owner_id: uuid.UUID) -> bool:
        """Delete a subscription and its delivery log"""
        subscription = self.get_subscription(subscription_id, owner_id)
        if not subscription:
            return False

        self.db.delete(subscription)
        self.db.commit()
        return True

    def get_deliveries(
        self,
        subscription_id: uuid.UUID,
        limit: int = 100,
    ) -> List[WebhookDelivery]:
        """Delivery history for a subscription, newest first"""
        return self.db.query(WebhookDelivery).filter(
            WebhookDelivery.subscription_id == subscription_id
        ).order_by(WebhookDelivery.created_at.desc()).limit(limit).all()

    def get_delivery_counts(self, owner_id: uuid.UUID) -> Dict[uuid.UUID, int]:
        """Number of deliveries per subscription for a tenant"""
        rows = self.db.query(
            WebhookDelivery.subscription_id, func.count(WebhookDelivery.id)
        ).join(WebhookSubscription).filter(
            WebhookSubscription.owner_id == owner_id
        ).group_by(WebhookDelivery.subscription_id).all()
        return {subscription_id: count for subscription_id, count in rows}
