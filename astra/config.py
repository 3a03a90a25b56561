"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (queue wake-ups + worker heartbeats)
    redis_url: str = "redis://localhost:6379/0"

    # Sentry
    sentry_dsn: str = ""

    # Dashboard auth (tokens are issued by the external auth provider)
    dashboard_jwt_secret: str = ""
    allowed_origins: str = ""  # Comma-separated CORS origins

    # Telegram notifications
    telegram_bot_token: str = ""  # Default bot; tenants may override
    telegram_api_base: str = "https://api.telegram.org"
    telegram_timeout_seconds: float = Field(10.0, gt=0)

    # AfterShip tracking
    aftership_api_key: str = ""
    aftership_base_url: str = "https://api.aftership.com/tracking/2024-07"
    aftership_timeout_seconds: float = Field(15.0, gt=0)

    # Notification queue
    notification_worker_enabled: bool = True
    notification_batch_size: int = Field(10, ge=1, le=500)
    notification_max_attempts: int = Field(3, ge=1)
    notification_processing_timeout_seconds: int = Field(300, ge=30)
    notification_poll_interval_seconds: int = Field(30, ge=1)

    # Webhook diagnostic log (empty path = console + memory only)
    webhook_log_path: str = "logs/webhooks.log"
    webhook_log_buffer_size: int = Field(1000, ge=1)

    @field_validator("telegram_api_base", "aftership_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def jwt_secret(self) -> str:
        """Dashboard token secret, falling back to the app secret."""
        return self.dashboard_jwt_secret or self.app_secret_key


@lru_cache()
def get_settings() -> Settings:
    return Settings()
