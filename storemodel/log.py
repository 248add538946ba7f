"""
Logging setup for applications using storemodel.

Library modules only create loggers; handlers are installed here, once,
by the application.
"""

from __future__ import annotations

import logging
from typing import Optional

import json_log_formatter

from .config import StoreConfig, get_config

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: Optional[StoreConfig] = None) -> logging.Handler:
    """Configure logging based on configuration.

    The json format writes one JSON object per line, with any
    ``extra={...}`` context as top-level keys.

    Args:
        config: Configuration to use (process-wide config if not provided)

    Returns:
        The installed handler
    """
    config = config or get_config()
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
    return handler
