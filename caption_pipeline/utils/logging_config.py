"""Centralized logging configuration for the caption pipeline.

This module provides consistent logging setup across the CLI and the API
server. Configuration respects environment variables and provides sensible
defaults for production and development.
"""

from __future__ import annotations

import logging
import sys
from typing import Literal

from caption_pipeline.utils.constant import LOG_LEVEL

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Client libraries that log every request/connection at DEBUG/INFO.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "pymongo",
    "botocore",
    "boto3",
    "urllib3",
    "python_multipart",
    "multipart",
)


def _configure_third_party_log_levels(*, log_level: int) -> None:
    """Set explicit levels for noisy third-party loggers.

    Args:
        log_level: Effective root log level chosen for the application.
    """
    floor = max(log_level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def configure_logging(
    *,
    level: LogLevel | None = None,
    verbose: bool = False,
    quiet: bool = False,
    format_string: str | None = None,
) -> None:
    """Configure centralized logging for the application.

    This should be called once at application startup (CLI entry or
    server launch).

    Args:
        level: Explicit log level (overrides verbose/quiet).
        verbose: Enable verbose logging (DEBUG level).
        quiet: Suppress all non-critical logs.
            Without any of these, ``LOG_LEVEL`` from the environment applies.
        format_string: Custom log format (uses default if None).

    Examples:
        >>> # CLI verbose mode
        >>> configure_logging(verbose=True)

        >>> # Server debug mode
        >>> configure_logging(level="DEBUG")
    """
    if level is not None:
        log_level = getattr(logging, level.upper())
    elif verbose:
        log_level = logging.DEBUG
    elif quiet:
        log_level = logging.CRITICAL
    else:
        log_level = logging.getLevelName(LOG_LEVEL)
        if not isinstance(log_level, int):
            log_level = logging.INFO

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=format_string,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,  # Reconfigure even if already configured
    )
    _configure_third_party_log_levels(log_level=log_level)

    if not quiet:
        logger = logging.getLogger(__name__)
        logger.debug("Logging configured: level=%s", logging.getLevelName(log_level))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ of calling module).

    Returns:
        Configured logger instance.

    Examples:
        >>> logger = get_logger(__name__)
        >>> logger.info("Render dispatched")
    """
    return logging.getLogger(name)
