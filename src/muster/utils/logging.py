"""Logging utilities for Muster."""

import logging
import sys
from typing import Any


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """Configure logging for Muster.

    Calling this again replaces the handler installed by the previous call
    instead of stacking a second one.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_string: Custom format string.
        handler: Custom handler. Defaults to StreamHandler.

    Returns:
        The configured package logger.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(logging.Formatter(format_string))

    logger = logging.getLogger("muster")
    for existing in list(logger.handlers):
        if getattr(existing, "_muster_handler", False):
            logger.removeHandler(existing)
    handler._muster_handler = True  # type: ignore[attr-defined]
    logger.setLevel(level)
    logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a Muster module.

    Args:
        name: Module name (e.g., "store", "roles.capture").

    Returns:
        Configured logger.
    """
    return logging.getLogger(f"muster.{name}")


class StructuredLogger:
    """Logger that appends key=value context to every message."""

    def __init__(self, name: str, **context: Any):
        """Initialize structured logger.

        Args:
            name: Logger name.
            **context: Context included in every message.
        """
        self._logger = get_logger(name)
        self._context: dict[str, Any] = dict(context)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def with_context(self, **kwargs: Any) -> "StructuredLogger":
        """Add context to all log messages.

        Args:
            **kwargs: Context key-value pairs.

        Returns:
            Self for chaining.
        """
        self._context.update(kwargs)
        return self

    def _format_message(self, message: str, **kwargs: Any) -> str:
        """Format message with context."""
        data = {**self._context, **kwargs}
        if data:
            pairs = [f"{k}={v}" for k, v in data.items()]
            return f"{message} | {' '.join(pairs)}"
        return message

    def debug(self, message: str, **kwargs: Any) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._format_message(message, **kwargs))
