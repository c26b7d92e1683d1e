"""Client settings loaded from environment variables (+ optional .env)."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """FieldSync client settings.

    Override with ``FIELDSYNC_CLIENT_`` prefixed environment variables, e.g.
    ``FIELDSYNC_CLIENT_API_BASE_URL``.
    """

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_CLIENT_", env_file=".env", extra="ignore")

    api_base_url: str = "http://localhost:8000/api/v1"

    # Seconds to wait for a channel's subscribed confirmation before polling
    confirm_timeout: float = 5.0
    # Polling interval while a channel is unhealthy
    poll_interval: float = 1.5
    # Grace period after confirmation during which changes are catch-up traffic
    settle_delay: float = 1.0
    # Local notifications auto-dismiss after this many seconds
    notification_timeout: float = 5.0

    request_timeout: float = 10.0
    # Server keepalives arrive every 15 s; a silent stream is dead after this
    stream_read_timeout: float = 45.0
    reconnect_delay: float = 1.0
    reconnect_max_delay: float = 30.0


@lru_cache
def get_client_settings() -> ClientSettings:
    """Return the cached client settings instance."""
    return ClientSettings()
