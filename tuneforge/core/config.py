"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


_DEFAULT_JWT_SECRET = "dev-insecure-key-change-me"


class Settings(BaseSettings):
    """
    Application settings with validation.

    Every field can be overridden by the upper-cased environment variable
    of the same name, or from a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:3001",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./tuneforge.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(default=5, description="Number of persistent database connections")
    db_max_overflow: int = Field(default=10, description="Extra connections allowed during traffic bursts")
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled (prevents stale connections)"
    )

    # Authentication
    # AUTH_ENABLED: when False, every request runs as an anonymous admin (dev mode).
    jwt_secret_key: str = Field(
        default=_DEFAULT_JWT_SECRET,
        description="JWT signing secret (override in production)"
    )
    jwt_algorithm: str = Field(default="HS256")
    auth_enabled: bool = Field(
        default=False,
        description="Enable JWT authentication (False for development)"
    )

    # Music generation provider (Suno-compatible API)
    suno_api_base: str = Field(
        default="https://api.sunoapi.com/api/v1",
        description="Base URL of the music generation provider"
    )
    suno_api_key: str = Field(
        default="",
        description="Bearer key for the provider (empty = provider not configured)"
    )
    suno_request_timeout: float = Field(default=30.0, description="Seconds per provider request")
    suno_max_retries: int = Field(
        default=2,
        description="Attempts per provider request on connection errors and 5xx"
    )

    # Polling / reconciliation policy
    poll_base_interval_seconds: float = Field(default=15.0, description="Backoff base interval")
    poll_max_interval_seconds: float = Field(default=60.0, description="Backoff ceiling")
    poll_backoff_factor: float = Field(default=1.2, description="Backoff growth per attempt")
    poll_backoff_grace_attempts: int = Field(
        default=5,
        description="Attempts polled at the base interval before backoff grows"
    )
    max_poll_attempts: int = Field(default=30, description="Poll attempts before a task is failed")
    task_max_age_minutes: int = Field(default=20, description="Task lifetime before abandonment")

    # Trigger surfaces
    sweep_batch_size: int = Field(default=10, description="Tasks reconciled per sweep invocation")
    recovery_window_hours: int = Field(default=24, description="Look-back of the recovery surface")
    pending_check_window_minutes: int = Field(
        default=60,
        description="Look-back of the client 'check pending' surface"
    )
    # SWEEP_TOKEN: shared secret for the sweep endpoints. Empty = open (dev only).
    sweep_token: str = Field(default="", description="Shared secret for sweep endpoints")
    worker_poll_interval: int = Field(default=10, description="Seconds between worker sweeps")

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        # SECURITY: Prevent wildcard CORS
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('max_poll_attempts', 'sweep_batch_size')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup if security-critical settings use insecure
        defaults or the provider is not configured. In development, returns
        silently and main.py logs warnings instead.

        Raises:
            ConfigurationError: If production config is insecure or incomplete.
        """
        errors: list[str] = []

        if self.jwt_secret_key == _DEFAULT_JWT_SECRET:
            errors.append(
                "JWT_SECRET_KEY is using the default insecure value. "
                "Generate a secure key: openssl rand -hex 32"
            )

        if not self.auth_enabled:
            errors.append(
                "AUTH_ENABLED is false. "
                "Authentication must be enabled in production."
            )

        if not self.suno_api_key:
            errors.append("SUNO_API_KEY is empty. Music generation cannot run.")

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is invalid:\n  - " + "\n  - ".join(errors)
            )

    def uses_default_jwt_secret(self) -> bool:
        return self.jwt_secret_key == _DEFAULT_JWT_SECRET

    def secret_values(self) -> tuple:
        """Configured secrets that logging must redact."""
        return (self.suno_api_key, self.jwt_secret_key, self.sweep_token)


# Global settings instance
settings = Settings()
