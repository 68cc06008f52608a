# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Structured logger used by the tracker, its flush loop and its HTTP surface.

The tracker must never log through the path it is tracking, so it takes an
explicit Logger rather than relying on the host application's handlers.

Example:
    >>> from panel_error_tracker.logger import create_logger
    >>> logger = create_logger(logger_type="stdout", level="INFO", name="error-tracker")
    >>> logger.info("Flush completed", persisted=3, requeued=0)
"""

import json
import logging
import sys
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class Logger(ABC):
    """Abstract base class for loggers."""

    @abstractmethod
    def info(self, message: str, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def warning(self, message: str, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def error(self, message: str, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def debug(self, message: str, **kwargs: Any) -> None:
        pass

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an error from inside an exception handler, with traceback."""
        kwargs.setdefault("exc_info", True)
        self.error(message, **kwargs)


class StdoutLogger(Logger):
    """Logger that writes one JSON object per line to stdout."""

    def __init__(self, level: str = "INFO", name: str | None = None):
        """Initialize stdout logger.

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            name: Optional logger name for identification

        Raises:
            ValueError: If level is not a known level name
        """
        self.level = level.upper()
        self.name = name or "error-tracker"

        if self.level not in _LEVELS:
            raise ValueError(f"Invalid log level: {level}. Must be one of {list(_LEVELS)}")

        # Mirror into stdlib logging so caplog and host handlers see records
        self._stdlib_logger = logging.getLogger(self.name)
        self._stdlib_logger.setLevel(logging.NOTSET)

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        if _LEVELS[level] < _LEVELS[self.level]:
            return

        exc_info = kwargs.pop("exc_info", None)

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "logger": self.name,
            "message": message,
        }
        if kwargs:
            log_entry["extra"] = kwargs

        try:
            print(json.dumps(log_entry, default=str), file=sys.stdout, flush=True)
        except (TypeError, ValueError) as e:
            print(f"{level}: {message} (JSON serialization failed: {e})", file=sys.stderr, flush=True)

        extra = {"extra": kwargs} if kwargs else None
        self._stdlib_logger.log(_LEVELS[level], message, exc_info=exc_info, extra=extra)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("DEBUG", message, **kwargs)


class SilentLogger(Logger):
    """Logger that keeps records in memory. Used by tests to assert on logs."""

    def __init__(self, level: str = "INFO", name: str | None = None):
        self.level = level.upper()
        self.name = name or "error-tracker"
        self.logs: list[dict[str, Any]] = []

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        log_entry: dict[str, Any] = {"level": level, "message": message}
        if kwargs:
            log_entry["extra"] = kwargs
        self.logs.append(log_entry)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("DEBUG", message, **kwargs)

    def get_logs(self, level: str | None = None) -> list[dict[str, Any]]:
        if level is None:
            return self.logs
        return [log for log in self.logs if log["level"] == level]

    def has_log(self, message: str, level: str | None = None) -> bool:
        """Check whether a message containing ``message`` was logged."""
        return any(message in log["message"] for log in self.get_logs(level))

    def clear_logs(self) -> None:
        self.logs.clear()


def create_logger(
    logger_type: str = "stdout",
    level: str = "INFO",
    name: str | None = None,
) -> Logger:
    """Create a logger.

    Args:
        logger_type: "stdout" or "silent"
        level: Logging level
        name: Logger name

    Returns:
        Logger instance

    Raises:
        ValueError: If logger_type is unknown
    """
    logger_type = logger_type.lower()
    if logger_type == "stdout":
        return StdoutLogger(level=level, name=name)
    if logger_type == "silent":
        return SilentLogger(level=level, name=name)
    raise ValueError(f"Unknown logger_type: {logger_type}. Must be one of ['stdout', 'silent']")
