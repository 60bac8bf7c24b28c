"""
Celery Beat scheduler entrypoint.

Dispatches the periodic webhook retry sweep.

Usage:
    celery -A celery_beat beat --loglevel=info

Environment Variables:
    CELERY_BROKER_URL: Redis broker URL (default: redis://redis:6379/1)
    WEBHOOK_RETRY_INTERVAL_SECONDS: Sweep cadence (default: 300)
"""

import logging

from portal.celery_app import celery_app

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)
logger.info("Celery Beat scheduler starting...")

if __name__ == "__main__":
    celery_app.Beat().run()
