"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from message_queue.constants import (
    DEFAULT_COLLECTION_NAME,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_PROCESSING_TIMEOUT_MS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "message_queue"
    mongodb_server_selection_timeout_ms: int = 5000

    # Queue Configuration
    queue_collection_name: str = DEFAULT_COLLECTION_NAME
    queue_polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS
    queue_processing_timeout_ms: int = DEFAULT_PROCESSING_TIMEOUT_MS
    queue_max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "message-queue"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
