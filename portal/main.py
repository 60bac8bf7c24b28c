from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from contextlib import asynccontextmanager

from portal.config import get_settings
from portal.database import check_db_connection
from portal.api.webhook_routes import router as webhook_router
from portal.api.request_routes import router as request_router
from portal.api.meeting_routes import router as meeting_router
from portal.api.team_routes import router as team_router
from portal.api.subscription_routes import router as subscription_router
from portal.api.invoice_routes import router as invoice_router, admin_router as admin_invoice_router
from portal.metrics import metrics_router, metrics_middleware
from portal.logging_config import setup_logging, log_requests_middleware
from portal.error_handlers import register_error_handlers
from portal.middleware.rate_limit import limiter, rate_limit_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

settings = get_settings()

setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir,
    app_name="agency-portal",
    enable_json=settings.log_json
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown tasks"""
    logger.info("Starting application...")

    if not settings.jwt_secret_key.strip():
        _msg = "JWT_SECRET_KEY is not set; bearer tokens from the identity provider cannot be verified."
        if not settings.debug:
            raise RuntimeError(_msg)
        logger.warning(f"{_msg} Allowed in debug mode only.")

    configured_plans = [
        name for name, value in (
            ("Lite Brew", settings.stripe_lite_brew_price_id),
            ("Signature Blend", settings.stripe_signature_blend_price_id),
            ("Taro Cloud", settings.stripe_taro_cloud_price_id),
        ) if not value
    ]
    if configured_plans:
        logger.warning(
            f"No price id configured for: {', '.join(configured_plans)}. "
            f"Subscribers on those plans will get Lite Brew entitlements."
        )

    yield

    logger.info("Shutting down application...")


app = FastAPI(
    title=settings.app_name,
    description="Agency client portal API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

cors_origins = settings.cors_origin_list or (["*"] if settings.debug else [])
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

register_error_handlers(app)

if settings.enable_request_logging:
    app.middleware("http")(log_requests_middleware)

app.include_router(webhook_router, prefix="/api")
app.include_router(request_router, prefix="/api")
app.include_router(meeting_router, prefix="/api")
app.include_router(team_router, prefix="/api")
app.include_router(subscription_router, prefix="/api")
app.include_router(invoice_router, prefix="/api")
app.include_router(admin_invoice_router, prefix="/api")
app.include_router(metrics_router)

app.middleware("http")(metrics_middleware)


@app.get("/health")
async def health_check():
    """Health check endpoint with database connectivity test"""
    db_connected = check_db_connection()

    logger.debug("Health check performed", extra={"db_connected": db_connected})

    return {
        "status": "healthy" if db_connected else "unhealthy",
        "service": settings.app_name,
        "database": "connected" if db_connected else "disconnected"
    }
