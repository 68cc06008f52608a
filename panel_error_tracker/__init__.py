# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Panel Error Tracker.

Aggregates unhandled exceptions from request handlers and background jobs,
groups them by fingerprint, buffers counts in memory and flushes them to a
durable store with increment-safe upserts.

Example:
    >>> from panel_error_tracker import ErrorTrackerConfig, create_error_tracker
    >>> tracker = create_error_tracker(ErrorTrackerConfig(log_type="silent"))
    >>> tracker.start()
    >>> with tracker.track({"job": "invoice-sync"}):
    ...     sync_invoices()
    >>> tracker.stop()
"""

__version__ = "0.1.0"

from .buffer import DedupBuffer
from .classifier import determine_category, determine_severity
from .config import ErrorTrackerConfig
from .fingerprint import generate_fingerprint
from .gateway import (
    ErrorNotFoundError,
    PersistenceConnectionError,
    PersistenceError,
    PersistenceGateway,
    PersistenceNotConnectedError,
    create_persistence_gateway,
)
from .inmemory_gateway import InMemoryPersistenceGateway
from .logger import Logger, create_logger
from .metrics import MetricsCollector, create_metrics_collector
from .models import (
    CaptureOptions,
    ErrorCategory,
    ErrorEntry,
    ErrorInfo,
    ErrorPage,
    ErrorQuery,
    ErrorSeverity,
    ErrorStats,
    RequestInfo,
    TopError,
)
from .notifier import CriticalAlertNotifier, create_notifier
from .sanitizer import REDACTED, sanitize_body, sanitize_context
from .scheduler import FlushResult, FlushScheduler, FlushState
from .stats import StatsAggregator
from .tracker import ErrorTracker


def create_error_tracker(
    config: ErrorTrackerConfig | None = None,
    *,
    gateway: PersistenceGateway | None = None,
    notifier: CriticalAlertNotifier | None = None,
    logger: Logger | None = None,
    metrics: MetricsCollector | None = None,
) -> ErrorTracker:
    """Build an ErrorTracker from configuration.

    Collaborators passed explicitly take precedence over the configured
    drivers. The tracker is returned unstarted; call ``start()``.

    Args:
        config: Tracker configuration (defaults when None)
        gateway: Persistence gateway override
        notifier: Critical alert notifier override
        logger: Logger override
        metrics: Metrics collector override

    Returns:
        ErrorTracker instance
    """
    config = config or ErrorTrackerConfig()
    logger = logger or create_logger(
        logger_type=config.log_type,
        level=config.log_level,
        name=config.logger_name,
    )
    if gateway is None:
        gateway_kwargs = {}
        if config.store_type == "mongodb":
            gateway_kwargs = {
                "host": config.mongo_host,
                "port": config.mongo_port,
                "database": config.mongo_database,
                "collection": config.mongo_collection,
                "username": config.mongo_username,
                "password": config.mongo_password,
            }
        gateway = create_persistence_gateway(config.store_type, **gateway_kwargs)

    return ErrorTracker(
        gateway=gateway,
        notifier=notifier or create_notifier(config.notifier_type, logger=logger),
        config=config,
        logger=logger,
        metrics=metrics or create_metrics_collector(config.metrics_backend),
    )


__all__ = [
    # Version
    "__version__",
    # Service
    "ErrorTracker",
    "create_error_tracker",
    "ErrorTrackerConfig",
    # Components
    "DedupBuffer",
    "FlushScheduler",
    "FlushState",
    "FlushResult",
    "StatsAggregator",
    "determine_category",
    "determine_severity",
    "generate_fingerprint",
    "sanitize_body",
    "sanitize_context",
    "REDACTED",
    # Models
    "CaptureOptions",
    "ErrorCategory",
    "ErrorEntry",
    "ErrorInfo",
    "ErrorPage",
    "ErrorQuery",
    "ErrorSeverity",
    "ErrorStats",
    "RequestInfo",
    "TopError",
    # Persistence
    "PersistenceGateway",
    "InMemoryPersistenceGateway",
    "create_persistence_gateway",
    "PersistenceError",
    "PersistenceNotConnectedError",
    "PersistenceConnectionError",
    "ErrorNotFoundError",
    # Collaborators
    "CriticalAlertNotifier",
    "create_notifier",
    "Logger",
    "create_logger",
    "MetricsCollector",
    "create_metrics_collector",
]
