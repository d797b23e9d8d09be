"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables (SILO_CACHE_*)."""

    # Memory tier
    max_memory_items: int = Field(default=100, ge=0)
    default_ttl: float = 300          # seconds, CacheTTL.MEDIUM

    # Durable tier
    persist_to_storage: bool = True
    storage_prefix: str = "silo_cache_"
    storage_url: str = "sqlite:///./silo_cache.db"

    # Fetch coordination
    # None = coalesced callers wait for the in-flight fetch indefinitely
    coalesce_timeout: Optional[float] = None

    # Backend REST API used by fetchers
    api_base_url: str = "http://localhost:9000/api"
    api_token: Optional[str] = None
    request_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "SILO_CACHE_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
