"""Application settings loaded from environment variables (+ optional .env)."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """FieldSync Core settings.

    Every field can be overridden with a ``FIELDSYNC_`` prefixed environment
    variable, e.g. ``FIELDSYNC_DATABASE_URL`` or ``FIELDSYNC_REQUIRE_REVIEW=true``.
    """

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./fieldsync.db"

    # HTTP
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    # Business day boundaries for time tracking (IANA zone name)
    timezone: str = "UTC"

    # When enabled, completed work lands in pending_review until an admin approves it
    require_review: bool = False

    # Documents
    max_document_bytes: int = 10 * 1024 * 1024

    # Chat
    max_chat_message_length: int = 5000

    # Realtime change feed
    realtime_keepalive_seconds: float = 15.0
    realtime_queue_size: int = 1000

    # Web push
    push_default_url: str = "/panel"
    push_icon: str = "/favicon.png"
    push_timeout_seconds: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
