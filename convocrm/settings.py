"""Application settings using Pydantic BaseSettings."""

import os
import re

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_async_database_url() -> str:
    """Get database URL converted for asyncpg driver."""
    url = os.environ.get("DATABASE_URL", "") or settings.database_url
    # Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy async
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    # asyncpg doesn't support sslmode, it uses ssl parameter
    if "sslmode=" in url:
        url = re.sub(r'[?&]sslmode=[^&]*', '', url)
        url = url.rstrip('?&')
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (Postgres in production, SQLite for local runs)
    database_url: str = "sqlite+aiosqlite:///./convocrm.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Redis (optional, backs the query cache when enabled)
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = False

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    api_v1_prefix: str = "/api/v1"

    # Telegram Bot API
    telegram_bot_token: str | None = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_timeout_seconds: float = 15.0
    telegram_start_greeting: str = (
        "Hello! This is the support bot. Write your message and a manager will get back to you."
    )
    telegram_max_download_bytes: int = 50 * 1024 * 1024
    # Optional secret Telegram echoes in X-Telegram-Bot-Api-Secret-Token
    telegram_webhook_secret: str | None = None

    # Partner platform (status webhook + user lookup)
    partner_webhook_url: str | None = None
    partner_api_url: str | None = None
    partner_api_token: str | None = None
    # Optional shared secret expected in X-Webhook-Token or a Bearer header
    partner_webhook_secret: str | None = None
    partner_webhook_timeout_seconds: float = 10.0
    partner_webhook_max_attempts: int = 3
    partner_webhook_backoff_base_seconds: float = 1.0
    partner_webhook_backoff_cap_seconds: float = 5.0

    # Object storage (GCS)
    gcp_project_id: str = "local-development"
    gcs_attachments_bucket: str | None = None
    attachment_max_bytes: int = 50 * 1024 * 1024

    # Sender used for audit entries written by the system itself
    system_sender_id: int = 0

    # Query cache
    cache_ttl_orders_seconds: int = 300
    cache_ttl_messages_seconds: int = 180

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
