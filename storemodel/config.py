"""
Configuration management for storemodel.

Configuration comes from environment variables prefixed STOREMODEL_, or
from configure() at startup. One StoreConfig is active per process.

Invariants:
    - All settings have defaults suitable for local development
    - debug_reset destroys all data on every physical open; never enable
      it in production
    - Configuration must be set before the first storage operation

How to change safely:
    - Add new settings with defaults that keep current behavior
    - Validate new settings in validate_config()
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

LOG_FORMATS = ("text", "json")

_global_config: Optional[StoreConfig] = None
_config_lock = threading.Lock()


class StoreConfig(BaseSettings):
    """storemodel configuration.

    Attributes:
        database_name: Logical database identifier
        debug_reset: Destroy and recreate the database on every open
        validate_schema_only: Compile schemas without touching storage
        data_dir: Directory for SQLite database files
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (text, json)
    """

    database_name: str = Field(default="defaultDB")
    debug_reset: bool = Field(default=False, description="Recreate database on every open")
    validate_schema_only: bool = Field(
        default=False, description="Validate stores only; storage is never opened"
    )

    data_dir: str = Field(default=".storemodel")
    wal_mode: bool = Field(default=True)
    busy_timeout_ms: int = Field(default=5000)

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text")

    model_config = {"env_prefix": "STOREMODEL_"}

    def validate_config(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.database_name:
            raise ValueError("STOREMODEL_DATABASE_NAME cannot be empty")
        if not re.fullmatch(r"[A-Za-z0-9_-]+", self.database_name):
            raise ValueError(
                f"Invalid STOREMODEL_DATABASE_NAME '{self.database_name}'. "
                "Only letters, digits, '-' and '_' are allowed"
            )
        if self.busy_timeout_ms < 0:
            raise ValueError(
                f"STOREMODEL_BUSY_TIMEOUT_MS must be >= 0, got {self.busy_timeout_ms}"
            )
        if self.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid STOREMODEL_LOG_FORMAT '{self.log_format}'. Must be one of: text, json"
            )
        if self.debug_reset:
            logger.warning(
                f"debug_reset is enabled: database '{self.database_name}' "
                "will be destroyed on every open"
            )


def get_config() -> StoreConfig:
    """Get the process-wide configuration, loading it from the environment if unset."""
    global _global_config
    with _config_lock:
        if _global_config is None:
            _global_config = StoreConfig()
            _global_config.validate_config()
        return _global_config


def configure(**overrides: Any) -> StoreConfig:
    """Replace the process-wide configuration.

    Unspecified settings are read from the environment.

    Example:
        >>> configure(database_name="app", debug_reset=True)
    """
    global _global_config
    config = StoreConfig(**overrides)
    config.validate_config()
    with _config_lock:
        _global_config = config
    return config


def reset_config() -> None:
    """Reset the process-wide configuration (for testing only)."""
    global _global_config
    with _config_lock:
        _global_config = None
