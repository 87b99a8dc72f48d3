"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # Startup connection handling
    database_connect_retries: int = 5
    database_connect_backoff_seconds: float = 1.0
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Image Marketplace API"
    api_version: str = "0.1.0"
    api_description: str = "Purchase settlement and download authorization for the image marketplace"

    # Security - service-to-service key for the surrounding application
    service_api_key: str | None = None

    # Settlement
    currency: str = "USD"
    allow_self_purchase: bool = False  # Creators may not buy their own images by default

    # Download tokens
    download_token_ttl_hours: int = 24
    download_token_bytes: int = 32  # 256 bits of entropy

    # Signed asset references handed to the delivery collaborator
    asset_signing_secret: str = ""  # generate with: openssl rand -hex 32
    asset_link_ttl_seconds: int = 300
    asset_delivery_base_url: str = "http://localhost:8080/assets"

    # Asset storage (upload pipeline)
    storage_upload_url: str = "http://localhost:8080/upload"
    storage_api_key: str = ""
    upload_max_retries: int = 3  # additional attempts after the first
    upload_backoff_base_seconds: float = 0.5
    upload_backoff_max_seconds: float = 8.0
    upload_request_timeout_seconds: float = 25.0
    upload_total_timeout_seconds: float = 60.0
    upload_max_bytes: int = 25 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "image-marketplace-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        This prevents silent failures that only manifest at runtime.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        if len(self.asset_signing_secret) < 32:
            errors.append("ASSET_SIGNING_SECRET must be at least 32 characters")

        if self.download_token_bytes < 16:
            errors.append("DOWNLOAD_TOKEN_BYTES must be at least 16 (128 bits)")
        elif self.download_token_bytes > 96:
            # token column holds 128 url-safe characters
            errors.append("DOWNLOAD_TOKEN_BYTES cannot exceed 96 (128 characters)")

        if self.download_token_ttl_hours <= 0:
            errors.append("DOWNLOAD_TOKEN_TTL_HOURS must be positive")

        if self.upload_max_retries < 0:
            errors.append("UPLOAD_MAX_RETRIES cannot be negative")

        if len(self.currency) != 3:
            errors.append(f"CURRENCY must be an ISO 4217 code, got: {self.currency}")

        # If we have errors, fail immediately with clear messaging
        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured store is SQLite (development and tests)."""
        return self.database_url.startswith("sqlite")


# Global settings instance - validates at import time
settings = Settings()
