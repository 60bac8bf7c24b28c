"""
Celery worker entrypoint.

This module starts the Celery worker process that executes background tasks.

Usage:
    celery -A celery_worker worker --loglevel=info --concurrency=4

Environment Variables:
    CELERY_BROKER_URL: Redis broker URL (default: redis://redis:6379/1)
    DATABASE_URL: Database connection string (also used as result backend)
"""

import logging

from portal.celery_app import celery_app
from portal.config import get_settings
from portal.logging_config import setup_logging

settings = get_settings()
setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir,
    app_name="agency-portal-worker",
    enable_json=settings.log_json
)

logger = logging.getLogger(__name__)
logger.info("Celery worker starting...")

if __name__ == "__main__":
    # If run directly (not via celery CLI), start worker programmatically
    celery_app.worker_main([
        'worker',
        '--loglevel=info',
        '--concurrency=4'
    ])
