"""
Logging utilities for the OAuth endpoints and session actors.

Provides a consistent logging format plus explicitly constructed, per-component
loggers that are handed to each component instead of being swapped at runtime.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Tuple

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )


class ContextLogger(logging.LoggerAdapter):
    """Logger bound to a component context and a minimum level.

    Structured fields are passed as keyword ``extra`` data and rendered as a
    ``key=value`` suffix so they survive the plain-text formatter.
    """

    def __init__(self, logger: logging.Logger, context: str, level: int) -> None:
        super().__init__(logger, {"context": context})
        self._context = context
        self._level = level

    @property
    def context(self) -> str:
        return self._context

    @property
    def level(self) -> int:
        return self._level

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802 - logging API
        return level >= self._level and self.logger.isEnabledFor(level)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        fields = kwargs.pop("extra", None) or {}
        if fields:
            rendered = " ".join(f"{key}={value}" for key, value in fields.items())
            msg = f"{msg} | {rendered}"
        kwargs["extra"] = {"context": self._context, "fields": fields}
        return f"[{self._context}] {msg}", kwargs

    def child(self, context: str) -> "ContextLogger":
        """Return a new logger for a sub-context at the same level."""
        return build_logger(f"{self._context}.{context}", self._level)


def _coerce_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def build_logger(context: str, level: str | int = "INFO") -> ContextLogger:
    """Construct a logger for ``context`` that filters below ``level``."""
    return ContextLogger(
        logging.getLogger(f"broker_gateway.{context}"),
        context,
        _coerce_level(level),
    )


def sanitize_key_for_log(key: str | None, visible: int = 4) -> str:
    """Mask the identifier portion of a storage key for log output."""
    if not key:
        return "<none>"
    prefix, sep, identifier = key.rpartition(":")
    if not sep:
        identifier, prefix = key, ""
    if len(identifier) <= visible:
        masked = "*" * len(identifier)
    else:
        masked = identifier[:visible] + "*" * (len(identifier) - visible)
    return f"{prefix}{sep}{masked}"


def describe_error(error: BaseException) -> str:
    """Return a short description of an exception without its arguments' payloads."""
    message = str(error) or error.__class__.__name__
    if len(message) > 200:
        message = message[:200] + "..."
    return f"{error.__class__.__name__}: {message}"


__all__ = [
    "ContextLogger",
    "build_logger",
    "configure_logging",
    "describe_error",
    "sanitize_key_for_log",
]
