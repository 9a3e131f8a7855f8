"""
Logging utilities for the extension runtime.

Provides a centralized logging configuration for the entire package.
Extension code logs through ``ExtensionContext.log`` which lands under the
``extension_runtime.ext.<name>`` logger.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

# Package root logger
_root_logger = logging.getLogger("extension_runtime")

# Level names accepted by ExtensionContext.log (``success`` is an INFO alias)
LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logging(
    level: str | int = "INFO",
    format: str | None = None,
    stream: TextIO | None = None,
    file: str | None = None,
) -> None:
    """
    Configure logging for the extension runtime.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL) or int
        format: Custom log format string
        stream: Output stream (defaults to stderr)
        file: Optional file path to write logs

    Example:
        from extension_runtime.logging import setup_logging

        setup_logging("DEBUG")
        setup_logging("INFO", file="extensions.log")
    """
    level = resolve_level(level)

    _root_logger.setLevel(level)
    _root_logger.handlers.clear()

    if format is None:
        format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    formatter = logging.Formatter(format)

    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(level)
    _root_logger.addHandler(stream_handler)

    if file:
        file_handler = logging.FileHandler(file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        _root_logger.addHandler(file_handler)


def resolve_level(level: str | int) -> int:
    """Convert a level name (including ``success``) to a logging level int."""
    if isinstance(level, int):
        return level
    return LEVELS.get(level.lower(), getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a submodule.

    Args:
        name: Submodule name (e.g., "lifecycle", "hooks")

    Returns:
        Logger instance
    """
    if name.startswith("extension_runtime."):
        return logging.getLogger(name)
    return logging.getLogger(f"extension_runtime.{name}")


def set_level(level: str | int) -> None:
    """Set the log level for the extension runtime."""
    _root_logger.setLevel(resolve_level(level))


def disable() -> None:
    """Disable all logging for the extension runtime."""
    _root_logger.disabled = True


def enable() -> None:
    """Re-enable logging for the extension runtime."""
    _root_logger.disabled = False
