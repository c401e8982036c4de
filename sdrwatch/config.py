"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "SDR Watch"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Remote feed ---
    live_fetch_enabled: bool = True  # False = serve mock batches only
    request_timeout_seconds: float = 30.0
    max_retries: int = 5
    backoff_base_seconds: float = 1.0
    max_concurrent_tasks: int = 5
    feed_timezone: str = "America/New_York"  # publication-day boundary
    historical_max_days: int = 30
    historical_cache_ttl_seconds: float = 86400.0  # 24h per (partition, day)

    # --- Client polling ---
    polling_interval_seconds: float = 30.0

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
