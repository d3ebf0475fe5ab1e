from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (default uses docker-compose service name)
    redis_url: str = "redis://redis:6379/0"

    # App settings
    app_name: str = "Stream Overlay"
    debug: bool = False

    # Shared secrets (empty disables the check)
    api_secret: str = ""
    cron_secret: str = ""

    # Poll resolution
    resolution_lock_ttl_seconds: int = 10
    cas_retries: int = 5
    poll_tick_seconds: int = 30

    # Push channel
    # keep below the client's PUSH_SILENCE_SECONDS
    heartbeat_interval_seconds: float = 10.0
    channel_queue_size: int = 32
    broadcast_relay_enabled: bool = True
    broadcast_channel: str = "overlay:broadcast"

    # Session liveness (auto-start gate)
    liveness_url: str = ""
    liveness_token: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
