from functools import lru_cache

from pydantic import EmailStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str

    # Redis (named locks shared across workers)
    redis_url: str | None = None
    lock_timeout_seconds: int = 30
    lock_wait_seconds: float = 10.0

    # Refill scheduler
    refill_scheduler_enabled: bool = False
    refill_scheduler_interval_seconds: int = 86400
    default_refill_interval_days: int = 30

    # Inventory providers
    inventory_sync_enabled: bool = False
    inventory_sync_poll_seconds: int = 60
    provider_request_timeout_seconds: float = 10.0
    provider_page_size: int = 100
    auto_promote_min_confidence: float = 0.5
    auto_map_threshold: float = 0.7

    # Orders
    default_shipping_method: str = "ground"
    default_shipping_cost: float = 8.50
    order_conflict_retries: int = 1

    # Email
    email_from: EmailStr = "no-reply@example.com"
    email_backend: str = "smtp"  # smtp | resend | console
    email_smtp_host: str = "localhost"
    email_smtp_port: int = 1025
    email_smtp_username: str | None = None
    email_smtp_password: str | None = None
    email_sandbox_mode: bool = True
    email_test_recipient: EmailStr | None = None
    resend_api_key: str | None = None

    # SMS
    sms_enabled: bool = False
    sms_provider: str = "none"

    # Pydantic v2 style config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the .env is parsed once.
    """
    return Settings()
