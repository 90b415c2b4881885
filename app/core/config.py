from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(alias="REDIS_URL")

    celery_broker_url: str = Field(alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(alias="CELERY_RESULT_BACKEND")

    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_api_timeout_seconds: float = Field(default=10.0, alias="STRIPE_API_TIMEOUT_SECONDS")
    checkout_success_url: str = Field(
        default="http://localhost:3000/checkout/success?session_id={CHECKOUT_SESSION_ID}",
        alias="CHECKOUT_SUCCESS_URL",
    )
    checkout_cancel_url: str = Field(
        default="http://localhost:3000/checkout/cancel",
        alias="CHECKOUT_CANCEL_URL",
    )

    chat_monthly_base_minor: int = Field(default=999, alias="CHAT_MONTHLY_BASE_MINOR")
    billing_unknown_status_fallback: str = Field(
        default="past_due",
        alias="BILLING_UNKNOWN_STATUS_FALLBACK",
    )
    admin_user_ids: str = Field(default="", alias="ADMIN_USER_IDS")

    notifications_webhook_url: str = Field(default="", alias="NOTIFICATIONS_WEBHOOK_URL")
    ops_alert_webhook_url: str = Field(default="", alias="OPS_ALERT_WEBHOOK_URL")
    ops_alert_slack_webhook_url: str = Field(default="", alias="OPS_ALERT_SLACK_WEBHOOK_URL")
    ops_alert_pagerduty_routing_key: str = Field(
        default="",
        alias="OPS_ALERT_PAGERDUTY_ROUTING_KEY",
    )
    ops_alert_pagerduty_events_url: str = Field(default="", alias="OPS_ALERT_PAGERDUTY_EVENTS_URL")
    ops_alert_escalation_policy_json: str = Field(
        default="",
        alias="OPS_ALERT_ESCALATION_POLICY_JSON",
    )

    webhook_processing_ttl_seconds: int = Field(default=300, alias="WEBHOOK_PROCESSING_TTL_SECONDS")
    webhook_failure_alert_threshold: int = Field(default=3, alias="WEBHOOK_FAILURE_ALERT_THRESHOLD")
    processed_events_retention_days: int = Field(default=90, alias="PROCESSED_EVENTS_RETENTION_DAYS")

    notifications_batch_size: int = Field(default=100, alias="NOTIFICATIONS_BATCH_SIZE")
    notifications_max_attempts: int = Field(default=5, alias="NOTIFICATIONS_MAX_ATTEMPTS")
    notifications_timeout_seconds: float = Field(default=5.0, alias="NOTIFICATIONS_TIMEOUT_SECONDS")
    reconciliation_period_grace_seconds: int = Field(
        default=86400,
        alias="RECONCILIATION_PERIOD_GRACE_SECONDS",
    )

    @field_validator("billing_unknown_status_fallback")
    @classmethod
    def _validate_unknown_status_fallback(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"active", "past_due", "cancelled"}:
            raise ValueError("BILLING_UNKNOWN_STATUS_FALLBACK must be active, past_due or cancelled")
        return normalized


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
