"""
Logging helpers for the translation pipeline.

Service modules call ``log()`` for progress messages and use module-level
loggers (``logging.getLogger(__name__)``) for warnings and errors.
"""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER_NAME = "novel_translator"
_logger = logging.getLogger(_LOGGER_NAME)

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
    """
    Configure root logging once for CLI usage.

    Args:
        level: Logging level for the package logger
        fmt: Optional format string (defaults to DEFAULT_FORMAT)
    """
    logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT)
    logging.getLogger(_LOGGER_NAME).setLevel(level)


def log(message: str, level: int = logging.INFO) -> None:
    """Log a progress message on the package logger."""
    _logger.log(level, message)
