"""
Celery application initialization and configuration.

Background work for the portal: the webhook retry sweeper runs on a beat
schedule. Tasks are registered from the portal.tasks modules listed below.
"""

from celery import Celery
from portal.config import get_settings

settings = get_settings()

# Result backend defaults to the application database (sqlalchemy backend)
result_backend = settings.celery_result_backend or (
    f"db+{settings.database_url}" if settings.database_url else ""
)

celery_app = Celery(
    "agency_portal",
    broker=settings.celery_broker_url,
    backend=result_backend,
    include=[
        "portal.tasks.webhooks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.celery_task_time_limit,
    worker_prefetch_multiplier=settings.celery_worker_prefetch_multiplier,
    result_expires=3600,  # Results expire after 1 hour
)

# Celery Beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    # Re-attempt failed webhook deliveries that are due (every 5 minutes by default)
    "retry-webhook-deliveries": {
        "task": "portal.tasks.webhooks.retry_webhook_deliveries_task",
        "schedule": settings.webhook_retry_interval_seconds,
    },
}


if __name__ == "__main__":
    celery_app.start()
