"""
Logging helpers for sql_flow.

Library modules obtain loggers with get_logger(); the package root installs a
NullHandler so nothing is printed unless the application configures logging.
The CLI calls setup_logging() to attach a console handler.
"""

import logging
import sys
from typing import Optional, Union

PACKAGE_LOGGER = "sql_flow"

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_level(level: Union[str, int]) -> int:
    """Parse a logging level from a name or a number (INFO when unknown)."""
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.upper() in LEVEL_MAP:
        return LEVEL_MAP[level.upper()]
    return logging.INFO


def setup_logging(
    level: Union[str, int] = logging.WARNING,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """Configure console logging for the sql_flow package logger.

    Existing handlers on the package logger are replaced, so calling this
    twice does not duplicate output.

    Args:
        level: Logging level as a name ("DEBUG") or number.
        format_string: Optional custom format string.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.handlers.clear()
    logger.setLevel(_parse_level(level))

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(format_string or "%(levelname)-8s %(name)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the sql_flow package logger.

    Args:
        name: Module name, usually ``__name__``.
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
