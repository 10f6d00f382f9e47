"""
Shared configuration management for the FoodList access layer.
"""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientConfig(BaseSettings):
    """Configuration for the request gateway and user data cache."""

    model_config = SettingsConfigDict(
        env_prefix="FOODLIST_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend
    api_base_url: str = Field(default="http://localhost:3000")
    session_endpoint: str = Field(default="/api/auth/session")
    users_endpoint: str = Field(default="/api/users")
    request_timeout: float = Field(default=10.0, gt=0)
    timeout_retries: int = Field(default=0, ge=0)

    # Session credentials
    session_safety_margin: float = Field(default=60.0, ge=0)
    session_default_lifetime: int = Field(default=3600, gt=0)
    session_backoff: float = Field(default=0.1, ge=0)
    session_backoff_attempts: int = Field(default=50, ge=1)
    fallback_token_env: str = Field(default="FOODLIST_ACCESS_TOKEN")
    sign_in_path: str = Field(default="/auth/signin")

    # Request deduplication
    inflight_ttl: float = Field(default=30.0, gt=0)
    bulk_inflight_ttl: float = Field(default=60.0, gt=0)

    # Entity cache
    cache_ttl: float = Field(default=300.0, gt=0)
    cache_backend: str = Field(default="memory", pattern="^(memory|redis)$")
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_namespace: str = Field(default="foodlist:")

    # Aggregate loading
    debounce_window: float = Field(default=0.3, ge=0)
    page_limit: int = Field(default=12, gt=0)
    bulk_page_limit: int = Field(default=24, gt=0)
    bulk_max_pages: int = Field(default=10, gt=0)
    enable_reviews: bool = Field(default=True)
    enable_lists: bool = Field(default=True)
    enable_restaurants: bool = Field(default=True)

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_recovery_timeout: float = Field(default=30.0, ge=0)


def get_config(**overrides: Any) -> ClientConfig:
    """Get client configuration, environment first, keyword overrides last."""
    return ClientConfig(**overrides)
