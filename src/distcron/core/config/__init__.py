"""Configuration loading and validation."""

from .models import (
    # Enums
    LockBackend,
    # Config models
    AppConfig,
    DatabaseConfig,
    LockConfig,
    LoggingConfig,
    SchedulerConfig,
)
from .loader import ConfigError, load_app_config

__all__ = [
    # Enums
    "LockBackend",
    # Config models
    "AppConfig",
    "DatabaseConfig",
    "LockConfig",
    "LoggingConfig",
    "SchedulerConfig",
    # Loaders
    "ConfigError",
    "load_app_config",
]
