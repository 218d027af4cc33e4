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
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # Service identity
    service_name: str = "qos-refund-engine"
    service_version: str = "0.1.0"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True

    # Payment Processor - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    processor_timeout_seconds: float = 15.0

    # Refund Policy - thresholds (see RefundPolicyConfig)
    refund_policy_version: str = "v1.0"
    refund_full_buffer_ratio: float = 0.20
    refund_half_buffer_ratio: float = 0.10
    refund_full_downtime_ratio: float = 0.20
    refund_half_downtime_ratio: float = 0.10
    refund_min_watch_ms: int = 30_000
    refund_fatal_errors_for_full: int = 3
    refund_max_watch_ms_full_fatal: int = 5 * 60_000
    refund_max_watch_ms_half_fatal: int = 2 * 60_000
    refund_excessive_buffer_events: int = 10
    refund_partial_fraction: float = 0.25

    # Used when a game has no usable schedule
    default_event_duration_ms: int = 90 * 60_000

    # Settlement sweep
    settlement_batch_size: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The engine MUST NOT start against a non-PostgreSQL database: the
        double-refund guard depends on row locks and unique constraints.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.processor_timeout_seconds <= 0:
            errors.append(
                f"PROCESSOR_TIMEOUT_SECONDS must be positive, got: {self.processor_timeout_seconds}"
            )

        if self.default_event_duration_ms <= 0:
            errors.append(
                f"DEFAULT_EVENT_DURATION_MS must be positive, got: {self.default_event_duration_ms}"
            )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - ENGINE CANNOT START",
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


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
