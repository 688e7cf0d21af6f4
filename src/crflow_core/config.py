"""Application settings loaded from the environment (CRFLOW_ prefix)."""
import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the change request workflow."""

    model_config = SettingsConfigDict(env_prefix="CRFLOW_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./crflow.db"
    # Seconds SQLite waits on a locked database before failing
    sqlite_busy_timeout: float = 30.0
    log_level: str = "INFO"

    # Attachments
    max_attachments_per_cr: int = Field(5, ge=1)
    max_attachment_size: int = Field(10 * 1024 * 1024, ge=1)
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: [
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "image/jpeg",
            "image/png",
            "image/gif",
            "text/plain",
        ]
    )

    # Listing
    default_page_size: int = Field(20, ge=1)
    max_page_size: int = Field(100, ge=1)

    # Dashboard
    dashboard_recent_limit: int = Field(5, ge=1)
    dashboard_pending_limit: int = Field(10, ge=1)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Apply the standard log format at the configured level."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
