"""Logging setup for KV OAuth.

All modules log through children of the ``kv_oauth`` logger, which owns a
single stderr handler. Session identifiers are bearer secrets, so they
are only ever logged through :func:`short_id`.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kv_oauth.config import Config

LOGGER_NAME = "kv_oauth"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

SESSION_ID_LOG_CHARS = 8

_handler: logging.Handler | None = None


def setup_logging(config: Config) -> None:
    """Attach the stderr handler and apply the configured level.

    Safe to call repeatedly: later calls only change the level.

    Args:
        config: Application configuration
    """
    global _handler

    level = logging.getLevelName(config.log_level.value)
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(level)

    if _handler is None:
        package_logger.handlers.clear()
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        package_logger.addHandler(_handler)
        package_logger.propagate = False

    _handler.setLevel(level)
    package_logger.debug("Log level set to %s", config.log_level.value)


def get_logger(name: str) -> logging.Logger:
    """Return the ``kv_oauth`` child logger for ``name``.

    Module ``__name__`` values inside the package are used unchanged.
    """
    if name == LOGGER_NAME or name.startswith(f"{LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def short_id(session_id: str | None) -> str:
    """Truncate a session identifier for log output."""
    if not session_id:
        return "<none>"
    return session_id[:SESSION_ID_LOG_CHARS]


def reset_logging() -> None:
    """Detach the handler so tests can set logging up again."""
    global _handler
    logging.getLogger(LOGGER_NAME).handlers.clear()
    _handler = None
