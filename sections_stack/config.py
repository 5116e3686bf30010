"""
Application Configuration - Pydantic Settings for type-safe config.

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
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Sections Stack API"
    api_version: str = "0.1.0"
    api_description: str = "Section catalog, purchases and theme installs for Shopify stores"

    # Shopify app credentials
    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_admin_api_version: str = "2025-01"
    shopify_app_url: str = ""
    shopify_request_timeout_seconds: float = 15.0

    # Billing
    shopify_billing_test_mode: bool = True
    billing_currency: str = "USD"

    # Internal API (platform integration layer -> this service)
    internal_api_token: str = ""

    # Store retry policy (transient persistence failures only)
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.2

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "sections-stack-api"

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
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        # Webhook HMAC and session tokens are both signed with the app secret
        if not self.shopify_api_secret:
            errors.append("SHOPIFY_API_SECRET is required but empty or missing")

        if self.store_retry_attempts < 1:
            errors.append("STORE_RETRY_ATTEMPTS must be at least 1")

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
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def app_base_url(self) -> str:
        """Public app URL without trailing slash."""
        return self.shopify_app_url.rstrip("/")


# Global settings instance - validates at import time
settings = Settings()
