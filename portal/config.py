from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "postgresql://portal:portal@db:5432/portal"

    # Application
    app_name: str = "Agency Portal API"
    debug: bool = False
    log_level: str = "INFO"

    # Logging
    log_dir: str = ""  # Empty disables file logging
    log_json: bool = False  # Enable JSON logging for production
    enable_request_logging: bool = True

    # Celery (distributed task queue)
    celery_broker_url: str = "redis://redis:6379/1"
    celery_result_backend: str = ""  # Defaults to database_url with sqlalchemy prefix
    celery_task_time_limit: int = 1800  # 30 minutes hard limit
    celery_worker_prefetch_multiplier: int = 4

    # JWT verification (tokens are issued by the identity provider)
    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/minute"
    rate_limit_storage_uri: str = "memory://"  # Use redis://... when running more than one instance

    # CORS (comma-separated list)
    cors_origins: str = ""

    # Plan price identifiers (payment provider)
    stripe_lite_brew_price_id: str = ""
    stripe_signature_blend_price_id: str = ""
    stripe_taro_cloud_price_id: str = ""

    # Outbound webhooks
    webhook_timeout_seconds: float = 30.0
    webhook_max_attempts: int = 3
    webhook_initial_retry_minutes: int = 5
    webhook_retry_batch_size: int = 50
    webhook_retry_concurrency: int = 10
    webhook_claim_seconds: int = 120  # Lease held by a sweeper on a delivery
    webhook_response_max_chars: int = 1000
    webhook_auto_deactivate_after: int = 0  # 0 = never deactivate on exhausted deliveries
    webhook_retry_interval_seconds: float = 300.0  # Celery beat cadence

    # Team invites
    team_invite_expire_days: int = 7

    @field_validator(
        'stripe_lite_brew_price_id',
        'stripe_signature_blend_price_id',
        'stripe_taro_cloud_price_id',
        mode='before',
    )
    @classmethod
    def strip_price_id(cls, v):
        """Price ids pasted from the payment dashboard often carry whitespace"""
        return v.strip() if isinstance(v, str) else v

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins"""
        return [origin.strip() for origin in self.cors_origins.split(',') if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
