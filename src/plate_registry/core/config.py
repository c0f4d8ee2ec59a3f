"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg://...)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Import
    import_batch_size: int = Field(
        default=500,
        description="Rows per precheck/write batch",
        gt=0,
    )
    import_precheck_enabled: bool = Field(
        default=True,
        description="Run the advisory existence precheck before each batch write",
    )
    import_max_audit_entries: int = Field(
        default=50_000,
        description="Maximum rejected-row entries kept for the audit report",
        gt=0,
    )
    import_max_retries: int = Field(
        default=3,
        description="Attempts per store call before a transient error becomes fatal",
        ge=1,
    )
    import_retry_base_delay: float = Field(
        default=0.5,
        description="Base delay in seconds for exponential retry backoff",
        ge=0,
    )
    import_default_status: str = Field(
        default="Available",
        description="Status assigned to newly imported plates when none is given",
    )
    import_max_upload_mb: int = Field(
        default=500,
        description="Maximum size of a multipart upload in megabytes",
        gt=0,
    )
    import_stream_chunk_size: int = Field(
        default=64 * 1024,
        description="Read size in bytes when streaming a file from disk",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def import_max_upload_bytes(self) -> int:
        """Upload size limit in bytes."""
        return self.import_max_upload_mb * 1024 * 1024


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
