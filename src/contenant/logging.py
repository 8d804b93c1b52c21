"""Diagnostic logging for contenant.

Two output channels are kept apart:

- rich consoles in the CLI talk to the user (panels, tables, errors)
- loggers under the ``contenant`` namespace trace what the pipeline, the
  allowlist resolver and the bridge are doing

Loggers are quiet (WARNING) unless ``contenant --debug`` is given or
``CONTENANT_DEBUG`` is set to 1, true or yes. Debug records carry the line
number so backend commands and DNS lookups can be traced to their caller.

Usage:
    from contenant.logging import get_logger
    logger = get_logger(__name__)
    logger.info("Resolving domain %s", domain)
"""

from __future__ import annotations

import logging
import os
import sys

from .constants import APP_NAME

DEBUG_ENV = "CONTENANT_DEBUG"
_TRUTHY = ("1", "true", "yes")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FORMAT_DEBUG = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_loggers: dict[str, logging.Logger] = {}
_initialized = False


def _get_log_level() -> int:
    """Read the log level from ``CONTENANT_DEBUG``."""
    if os.environ.get(DEBUG_ENV, "").lower() in _TRUTHY:
        return logging.DEBUG
    return logging.WARNING


def _formatter(debug: bool) -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT_DEBUG if debug else LOG_FORMAT, datefmt=DATE_FORMAT)


def _configure(level: int) -> None:
    """Apply level and format to the namespace logger and its handlers."""
    namespace = logging.getLogger(APP_NAME)
    namespace.setLevel(level)
    for handler in namespace.handlers:
        handler.setLevel(level)
        handler.setFormatter(_formatter(level == logging.DEBUG))


def _init_logging() -> None:
    """Attach the stderr handler once and apply the environment's level."""
    global _initialized
    if _initialized:
        return

    namespace = logging.getLogger(APP_NAME)
    # Re-imports (tests, reloads) must not stack handlers
    if not namespace.handlers:
        namespace.addHandler(logging.StreamHandler(sys.stderr))
    _configure(_get_log_level())

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module, placed under the ``contenant`` namespace.

    Args:
        name: Module name, usually ``__name__``.
    """
    _init_logging()

    if not name.startswith(APP_NAME):
        name = f"{APP_NAME}.{name}"

    logger = _loggers.get(name)
    if logger is None:
        logger = _loggers[name] = logging.getLogger(name)
    return logger


def set_debug(enabled: bool = True) -> None:
    """Switch debug logging on or off (the CLI's ``--debug`` flag)."""
    _init_logging()
    _configure(logging.DEBUG if enabled else logging.WARNING)
