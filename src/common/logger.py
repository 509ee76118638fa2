"""Logging infrastructure for the addon repository mirror.

Provides centralized logging configuration with optional rotating file
output and console output using ISO 8601 timestamps.
"""

import logging
import logging.handlers
import os
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _resolve_level(level: str) -> int:
    level_upper = level.upper()
    resolved = logging.getLevelName(level_upper)
    if not isinstance(resolved, int):
        raise ValueError(
            f"Invalid log level: {level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
    return resolved


def setup_logger(
    name: str,
    log_dir: Optional[str] = None,
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Set up a logger with optional file and console handlers.

    Args:
        name: Logger name (typically the component name)
        log_dir: Directory for log files; file logging is off when None
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string
        date_format: Custom date format string (ISO 8601 by default)
        console_logging: Enable console logging
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep

    Returns:
        Configured logger instance

    Raises:
        ValueError: If the level name is unknown
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        log_format or DEFAULT_LOG_FORMAT,
        datefmt=date_format or DEFAULT_DATE_FORMAT,
    )

    if log_dir is not None:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a component logger.

    Component loggers live under the ``addon_mirror`` namespace so a single
    ``setup_logger("addon_mirror")`` call configures all of them.

    Args:
        name: Component name

    Returns:
        Logger instance
    """
    return logging.getLogger(f"addon_mirror.{name}")
