# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Alert notifiers invoked when a critical error is captured."""

from abc import ABC, abstractmethod
from typing import Any

from .logger import Logger, create_logger
from .models import ErrorEntry


class CriticalAlertNotifier(ABC):
    """Abstract base class for critical alert delivery.

    Implementations may raise; the tracker logs the failure and carries on.
    """

    @abstractmethod
    def notify(self, entry: ErrorEntry) -> None:
        """Deliver an alert for a critical error entry.

        Args:
            entry: Snapshot of the entry that triggered the alert
        """
        pass


class LoggingAlertNotifier(CriticalAlertNotifier):
    """Notifier that writes critical alerts to the structured log.

    This is the default notifier; deployments wire a chat or email transport
    by implementing CriticalAlertNotifier.
    """

    def __init__(self, logger: Logger | None = None):
        self.logger = logger or create_logger(logger_type="stdout", name="error-tracker.alerts")

    def notify(self, entry: ErrorEntry) -> None:
        self.logger.error(
            f"CRITICAL ERROR: {entry.message}",
            error_id=entry.id,
            fingerprint=entry.fingerprint,
            category=entry.category.value,
            count=entry.count,
            context=entry.context,
        )


class SilentAlertNotifier(CriticalAlertNotifier):
    """Notifier that records alerts in memory for testing."""

    def __init__(self):
        self.alerts: list[ErrorEntry] = []

    def notify(self, entry: ErrorEntry) -> None:
        self.alerts.append(entry)

    def clear(self) -> None:
        self.alerts.clear()


def create_notifier(notifier_type: str = "log", **kwargs: Any) -> CriticalAlertNotifier:
    """Create a critical alert notifier.

    Args:
        notifier_type: "log" or "silent"
        **kwargs: Driver arguments (``logger`` for the log driver)

    Raises:
        ValueError: If notifier_type is not recognized
    """
    notifier_type = notifier_type.lower()
    if notifier_type == "log":
        return LoggingAlertNotifier(logger=kwargs.get("logger"))
    if notifier_type == "silent":
        return SilentAlertNotifier()
    raise ValueError(f"Unknown notifier_type: {notifier_type}. Supported: log, silent")
