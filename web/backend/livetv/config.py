"""
Configuration management for the Live TV backend.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "Live TV"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    # Default allows all origins; the relay needs this for browser reads
    cors_origins: list[str] = ["*"]
    cors_max_age: int = 86400  # 24 hours of preflight caching

    # Rate Limiting (segment fetches are frequent, keep this generous)
    rate_limit_per_minute: int = 600

    # Relay Configuration
    relay_path: str = "/relay"
    relay_public_base: str = ""  # absolute origin the relay is served from, if known
    relay_timeout_seconds: float = 30.0
    relay_cookie_name: str = "Edge-Cache-Cookie"
    relay_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    # Playback policy
    max_network_retries: int = 3
    network_retry_delay_seconds: float = 1.0  # fixed backoff, live streams
    controls_idle_seconds: float = 3.0
    probe_timeout_seconds: float = 20.0

    # Adaptive engine tuning (passed through, never interpreted here)
    engine_max_buffer_length: int = 30
    engine_max_max_buffer_length: int = 600
    engine_live_sync_duration_count: int = 3
    engine_enable_worker: bool = True
    engine_low_latency_mode: bool = True
    engine_manifest_timeout_seconds: float = 10.0

    # Catalogue limits
    max_stream_sources: int = 5
    recents_limit: int = 20

    # Database
    database_path: str = "data/livetv.db"

    # Admin API key for protected endpoints
    admin_api_key: str = "dev-admin-key"

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="LIVETV_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
