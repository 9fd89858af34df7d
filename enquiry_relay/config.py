from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - SQLAlchemy URL (Supabase Postgres or SQLite)
    DATABASE_URL: str

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Telegram Bot
    TELEGRAM_BOT_TOKEN: str
    BOT_USERNAME: Optional[str] = None
    ADMIN_TELEGRAM_ID: Optional[str] = None
    BOT_MODE: Literal["polling", "webhook", "disabled"] = "polling"

    # Webhook delivery (BOT_MODE=webhook)
    WEBHOOK_BASE_URL: Optional[str] = None
    WEBHOOK_SECRET: Optional[str] = None

    # QR code default target: https://t.me/<DEFAULT_CHANNEL>
    DEFAULT_CHANNEL: str = "enquiry_chat_bot"

    PORT: int = 3000


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
