"""
Pydantic configuration models for distcron.

These models provide type-safe configuration with validation for:
- Deployment environment (lock key namespace)
- Lock store selection and default expiry
- Database connection
- Scheduler runner settings
- Logging
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_ENVIRONMENT = "dev"


# =============================================================================
# Enums
# =============================================================================


class LockBackend(str, Enum):
    """Supported lock stores."""

    SQL = "sql"
    MEMORY = "memory"


# =============================================================================
# Lock Configuration
# =============================================================================


class LockConfig(BaseModel):
    """Distributed lock settings."""

    backend: LockBackend = Field(
        default=LockBackend.SQL,
        description="Store holding the lock records",
    )
    default_ttl_seconds: int = Field(
        default=600,
        ge=1,
        description="Lock expiry for jobs released after their run completes",
    )


# =============================================================================
# Scheduler Configuration
# =============================================================================


class SchedulerConfig(BaseModel):
    """Task runner settings."""

    timezone: str = Field(
        default="UTC",
        description="Timezone used by the timer",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Worker threads shared by all jobs of one runner",
    )


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite:///data/distcron.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Connection pool size",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )

    @field_validator("level")
    @classmethod
    def level_is_known(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    environment: str = Field(
        default=DEFAULT_ENVIRONMENT,
        description="Deployment name appended to every lock key (dev, staging, prod)",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    locks: LockConfig = Field(default_factory=LockConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def default_blank_environment(cls, v: object) -> str:
        """Blank or missing environment names fall back to 'dev'."""
        if v is None:
            return DEFAULT_ENVIRONMENT
        value = str(v).strip()
        return value or DEFAULT_ENVIRONMENT
