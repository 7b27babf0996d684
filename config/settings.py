"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables (prefix ``SWR_``)."""

    # Revalidation defaults (seconds)
    loading_timeout_seconds: float = 3.0
    slow_connection_loading_timeout_seconds: float = 5.0
    focus_throttle_interval_seconds: float = 5.0
    revalidate_on_focus: bool = True

    # Worker pool for fetches and deferred revalidation
    revalidation_workers: int = 4
    coalesce_timeout_seconds: float = 30.0

    # Default HTTP fetcher
    fetch_base_url: Optional[str] = None
    fetch_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "SWR_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
