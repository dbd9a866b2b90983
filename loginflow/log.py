"""Logging for the sign-in engine.

Every module logs under the ``loginflow`` logger (``loginflow.auth``,
``loginflow.config`` and so on). The library never attaches a handler on
its own; the CLI calls ``configure`` once to send records to stderr.
Token request bodies pass through ``redact_sensitive_data`` before they
are logged, so codes, tokens and secrets never reach the log.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


LOGGER_NAME = "loginflow"

_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# Marks the stderr handler installed by configure().
_HANDLER_NAME = "loginflow-stderr"

# Substrings of form fields and JSON keys whose values are credentials.
_SENSITIVE_KEYS = ("token", "secret", "password", "code", "credential", "assertion")

REDACTED = "[REDACTED]"


def get_logger() -> logging.Logger:
    """The ``loginflow`` package logger."""
    return logging.getLogger(LOGGER_NAME)


def _stderr_handler(logger: logging.Logger) -> logging.Handler:
    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    logger.addHandler(handler)
    return handler


def configure(level: int | str = logging.WARNING, fmt: str | None = None) -> logging.Logger:
    """Send sign-in logs to stderr at ``level``.

    Safe to call more than once: the stderr handler is installed on the
    first call and reformatted on later ones.

    Parameters
    ----------
    level : int or str
        Level name or number, e.g. ``"INFO"``.
    fmt : str, optional
        Record format (default: time, logger, level, message).

    Returns
    -------
    logging.Logger
        The package logger.
    """
    logger = get_logger()
    handler = _stderr_handler(logger)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    set_level(level)
    return logger


def set_level(level: int | str) -> None:
    """Set the package logger's level; names are case-insensitive."""
    if isinstance(level, str):
        number = logging.getLevelName(level.upper())
        if not isinstance(number, int):
            msg = f"Unknown log level: {level}"
            raise ValueError(msg)
        level = number
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Enable debug mode for verbose listener, exchange and status logging."""
    set_level(logging.DEBUG)


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return any(part in name for part in _SENSITIVE_KEYS)


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Copy a request body or token payload with credential values masked.

    ``refresh_token``, ``code``, ``client_secret`` and similar fields are
    replaced by ``"[REDACTED]"`` at any nesting level up to ``max_depth``;
    deeper values are dropped as ``"[MAX_DEPTH]"``.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
