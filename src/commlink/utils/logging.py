"""Logging configuration for commlink."""

import logging
import sys
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

LOGGER_NAME = "commlink"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

# SOAP envelopes, connection pool chatter and token cache traces
THIRD_PARTY_LOGGERS = ("zeep", "urllib3", "msal")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the commlink logger.

    Library loggers in THIRD_PARTY_LOGGERS are held at WARNING unless
    ``level`` is DEBUG.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, parent directories are created

    Returns:
        Configured logger instance

    Raises:
        ConfigurationError: If ``level`` is not a logging level name
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ConfigurationError(f"Unknown log level: {level}")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return logger
