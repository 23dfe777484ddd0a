"""Application configuration via pydantic-settings.

All secrets are loaded from environment variables (.env file).
Settings are organized into logical groups and composed into a single Settings object.
"""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelegramSettings(BaseSettings):
    """Telegram bot credential."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    telegram_bot_token: str = Field(
        default="",
        description="Telegram bot token (required at startup)",
    )


class BackendSettings(BaseSettings):
    """Remote transaction backend (REST API)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    backend_base_url: str = Field(
        default="",
        validation_alias=AliasChoices("BACKEND_BASE_URL", "LARAVEL_BASE_URL"),
        description="Backend root URL, without the /api suffix",
    )
    backend_bot_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("BACKEND_BOT_API_KEY", "LARAVEL_BOT_API_KEY"),
        description="Static bearer key used when the chat has no access token",
    )
    request_timeout: float = Field(default=15.0, description="JSON call timeout in seconds")
    upload_timeout: float = Field(default=20.0, description="Multipart/download timeout in seconds")

    @property
    def api_base_url(self) -> str | None:
        """Base URL for /api routes, or None when the backend is not configured."""
        if not self.backend_base_url:
            return None
        return self.backend_base_url.rstrip("/") + "/api"


class FlowSettings(BaseSettings):
    """Conversation flow limits."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    max_pin_attempts: int = Field(default=3, ge=1)
    max_upload_bytes: int = Field(default=2 * 1024 * 1024, description="Largest accepted attachment")
    download_attempts: int = Field(default=3, ge=1)
    download_backoff: float = Field(default=0.5, description="Seconds, multiplied by the attempt number")
    deposit_currency: str = Field(default="XAF", description="Only wallet currency accepted for deposits")
    flow_idle_timeout: int = Field(default=0, description="Seconds before a waiting flow expires (0 = never)")


class SessionSettings(BaseSettings):
    """In-memory session store bounds."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    session_max_entries: int = Field(default=10_000, ge=1, description="LRU bound on live chats")
    session_idle_ttl: int = Field(default=0, description="Seconds of inactivity before eviction (0 = never)")


class Settings(BaseSettings):
    """Root settings composing all sub-settings.

    Usage:
        settings = Settings()
        settings.backend.api_base_url
        settings.flow.max_pin_attempts
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    port: int = Field(default=3000)

    # Composed settings (loaded from same .env)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    flow: FlowSettings = Field(default_factory=FlowSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            msg = f"Invalid log level: {v}. Must be one of {valid}"
            raise ValueError(msg)
        return upper


# Module-level singleton. Import this wherever settings are needed.
settings = Settings()
