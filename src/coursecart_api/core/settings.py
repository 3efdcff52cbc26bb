from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./coursecart.db"

    # Stripe configuration
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Application URLs
    frontend_url: str = "http://localhost:3000"

    # Internal API security
    checkout_api_key: str = ""

    # Checkout policy
    bundle_min_items: int = 5

    # Learning platform (LMS)
    lms_base_url: str = "https://lms.example.com"
    lms_api_token: str = ""
    lms_client_id: str = ""
    lms_timeout_seconds: float = 15.0
    lms_identity_pacing_seconds: float = 1.0
    lms_enrollment_pacing_seconds: float = 1.0
    lms_enrollment_max_retries: int = 3
    lms_enrollment_retry_delay_seconds: float = 10.0

    @field_validator("lms_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    # Refund policy
    refund_course_window_days: int = 3
    refund_bundle_window_days: int = 6
    refund_processing_fee_percent: float = 0.0

    # Email / notification settings
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None
    support_email: str = "support@coursecart.example"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
