"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(..., description="PostgreSQL connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Credential Encryption
    encryption_key: str = Field(
        ..., min_length=32, description="Shared secret the credential key is derived from"
    )

    # Application Configuration
    app_name: str = Field(default="loop-worker-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production/test)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Webhook Delivery
    webhook_timeout_seconds: float = Field(
        default=30.0, description="Deadline for a single webhook POST (seconds)"
    )
    webhook_header_prefix: str = Field(
        default="X-Loop", description="Prefix of the outbound webhook headers"
    )
    webhook_max_attempts: int = Field(
        default=5, description="Attempts after which a transport failure is terminal"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("webhook_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("webhook_max_attempts must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
