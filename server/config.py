"""Server configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # Storage
    database_url: str = Field(
        default="sqlite:///./bill_tracker.db",
        description="Hosted store connection URL",
    )
    offline_mode: bool = Field(
        default=False,
        description="Use the local fallback store for everything",
    )
    local_store_path: Optional[str] = Field(
        default="./local_store.json",
        description="JSON file backing the local fallback store (memory only if empty)",
    )

    # Workflow
    strict_transitions: bool = Field(
        default=False,
        description="Only allow forward moves through the invoice stages",
    )
    optimistic_concurrency: bool = Field(
        default=False,
        description="Reject record updates based on a stale version",
    )
    enforce_role_permissions: bool = Field(
        default=True,
        description="Restrict which statuses each role may set",
    )

    # Notifications
    notification_poll_interval: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between notification polls for clients without the feed",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
