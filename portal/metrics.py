"""
Prometheus metrics for the Agency Portal API

Provides application metrics for monitoring:
- HTTP request latency and counts
- Outbound webhook delivery outcomes and latency
- Retry sweep results
- Plan entitlement rejections
- Celery task metrics
"""
from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response
import time
import logging

logger = logging.getLogger(__name__)

metrics_router = APIRouter(tags=["metrics"])

# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"]
)

# =============================================================================
# Webhook Metrics
# =============================================================================

WEBHOOK_DELIVERIES_TOTAL = Counter(
    "webhook_deliveries_total",
    "Total number of outbound webhook delivery attempts",
    ["event", "outcome", "phase"]  # outcome: success, http_error, network_error; phase: initial, retry
)

WEBHOOK_DELIVERY_DURATION = Histogram(
    "webhook_delivery_duration_seconds",
    "Outbound webhook delivery duration in seconds",
    ["phase"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

WEBHOOK_DELIVERIES_ABANDONED = Counter(
    "webhook_deliveries_abandoned_total",
    "Deliveries that exhausted their retry attempts",
    ["event"]
)

WEBHOOK_SWEEP_DELIVERIES = Counter(
    "webhook_sweep_deliveries_total",
    "Deliveries handled by the retry sweeper",
    ["result"]  # succeeded, failed, abandoned, skipped, errors
)

WEBHOOK_SUBSCRIPTIONS_DEACTIVATED = Counter(
    "webhook_subscriptions_deactivated_total",
    "Subscriptions deactivated by the exhausted-delivery policy"
)

# =============================================================================
# Entitlement Metrics
# =============================================================================

ENTITLEMENT_REJECTIONS = Counter(
    "entitlement_rejections_total",
    "Actions rejected by subscription plan entitlements",
    ["check", "tier"]
)

# =============================================================================
# Celery Task Metrics
# =============================================================================

CELERY_TASKS_TOTAL = Counter(
    "celery_tasks_total",
    "Total number of Celery tasks",
    ["task_name", "status"]  # status: success, failed
)

CELERY_TASK_DURATION = Histogram(
    "celery_task_duration_seconds",
    "Celery task duration in seconds",
    ["task_name"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300]
)

# =============================================================================
# System Info
# =============================================================================

APP_INFO = Info(
    "agency_portal",
    "Agency Portal API application information"
)

APP_INFO.info({
    "version": "1.0.0",
    "framework": "fastapi"
})

# =============================================================================
# Metrics Endpoint
# =============================================================================

@metrics_router.get("/metrics", include_in_schema=False)
async def metrics():
    """
    Prometheus metrics endpoint

    Returns all application metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# =============================================================================
# Middleware for HTTP Metrics
# =============================================================================

def normalize_path(path: str) -> str:
    """Collapse UUID and numeric path segments to keep label cardinality low"""
    normalized_parts = []
    for part in path.split("/"):
        if part.isdigit() or (len(part) == 36 and "-" in part):
            normalized_parts.append("{id}")
        else:
            normalized_parts.append(part)
    return "/".join(normalized_parts)


async def metrics_middleware(request, call_next):
    """
    Middleware to collect HTTP request metrics
    """
    method = request.method
    endpoint = normalize_path(request.url.path)

    HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

    start_time = time.time()
    status_code = "500"

    try:
        response = await call_next(request)
        status_code = str(response.status_code)
        return response

    finally:
        duration = time.time() - start_time
        HTTP_REQUEST_DURATION.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code
        ).observe(duration)
        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code
        ).inc()
        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()


# =============================================================================
# Helper Functions for Business Metrics
# =============================================================================

def record_webhook_delivery(event: str, outcome: str, phase: str, duration_ms: int = None):
    """Record one outbound webhook attempt"""
    WEBHOOK_DELIVERIES_TOTAL.labels(event=event, outcome=outcome, phase=phase).inc()
    if duration_ms is not None:
        WEBHOOK_DELIVERY_DURATION.labels(phase=phase).observe(duration_ms / 1000.0)


def record_webhook_abandoned(event: str):
    """Record a delivery that ran out of retries"""
    WEBHOOK_DELIVERIES_ABANDONED.labels(event=event).inc()


def record_sweep_result(result: str, count: int = 1):
    """Record retry sweeper outcomes"""
    if count:
        WEBHOOK_SWEEP_DELIVERIES.labels(result=result).inc(count)


def record_subscription_deactivated():
    WEBHOOK_SUBSCRIPTIONS_DEACTIVATED.inc()


def record_entitlement_rejection(check: str, tier: str):
    """Record a plan entitlement rejection"""
    ENTITLEMENT_REJECTIONS.labels(check=check, tier=tier).inc()


def record_celery_task(task_name: str, status: str, duration: float = None):
    """Record a Celery task event"""
    CELERY_TASKS_TOTAL.labels(task_name=task_name, status=status).inc()
    if duration is not None:
        CELERY_TASK_DURATION.labels(task_name=task_name).observe(duration)
