"""
Celery tasks for outbound webhooks.
"""

import asyncio
import logging
import time
from celery import Task
from portal.celery_app import celery_app
from portal.database import SessionLocal
from portal.metrics import record_celery_task

logger = logging.getLogger(__name__)


class DatabaseTask(Task):
    """Base task that manages database session lifecycle"""

    _db = None

    def after_return(self, *args, **kwargs):
        """Close database session after task completes"""
        if self._db is not None:
            self._db.close()
            self._db = None


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    soft_time_limit=240,  # 4 minutes soft limit
    time_limit=290,  # Hard limit stays under the default sweep interval
    name="portal.tasks.webhooks.retry_webhook_deliveries_task"
)
def retry_webhook_deliveries_task(self):
    """
    Retry failed webhook deliveries whose next attempt is due.

    Returns:
        dict: Sweep statistics (selected, succeeded, failed, abandoned, ...)
    """
    logger.info("Starting Celery task: retry_webhook_deliveries_task")
    start_time = time.monotonic()

    db = SessionLocal()
    self._db = db

    try:
        from portal.services.webhook_service import WebhookService

        stats = asyncio.run(WebhookService(db).retry_failed_deliveries())
        record_celery_task("retry_webhook_deliveries", "success", time.monotonic() - start_time)

        return {
            "status": "success",
            **stats,
            "task_id": self.request.id
        }

    except Exception as e:
        logger.error(f"Error in retry_webhook_deliveries_task: {str(e)}", exc_info=True)
        record_celery_task("retry_webhook_deliveries", "failed", time.monotonic() - start_time)
        return {
            "status": "failed",
            "error": str(e),
            "task_id": self.request.id
        }
