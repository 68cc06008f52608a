# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Error tracker service: ingestion, query and mutation APIs.

Captured errors are sanitized, classified, fingerprinted and folded into an
in-memory dedup buffer. A background scheduler flushes the buffer to the
durable store; critical errors are flushed and alerted synchronously.

The tracker is fail-open: nothing that goes wrong inside ``capture()`` or
``capture_request()`` propagates to the caller.
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

from .buffer import DedupBuffer
from .classifier import determine_category, determine_severity
from .config import ErrorTrackerConfig
from .fingerprint import generate_fingerprint
from .gateway import ErrorNotFoundError, PersistenceError, PersistenceGateway
from .logger import Logger, create_logger
from .metrics import MetricsCollector, NoOpMetricsCollector
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
    generate_entry_id,
    utcnow,
)
from .notifier import CriticalAlertNotifier, LoggingAlertNotifier
from .sanitizer import sanitize_body, sanitize_context
from .scheduler import FlushResult, FlushScheduler
from .stats import StatsAggregator


class ErrorTracker:
    """Explicitly constructed tracker with injected store and notifier.

    Lifecycle: ``start()`` connects the gateway and starts the flush loop;
    ``stop()`` stops the loop, makes a final bounded flush and disconnects.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        notifier: CriticalAlertNotifier | None = None,
        config: ErrorTrackerConfig | None = None,
        logger: Logger | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.config = config or ErrorTrackerConfig()
        self.gateway = gateway
        self.logger = logger or create_logger(
            logger_type=self.config.log_type,
            level=self.config.log_level,
            name=self.config.logger_name,
        )
        self.notifier = notifier or LoggingAlertNotifier(self.logger)
        self.metrics = metrics or NoOpMetricsCollector()
        self.buffer = DedupBuffer()
        self.scheduler = FlushScheduler(
            self.buffer,
            gateway,
            interval_seconds=self.config.flush_interval_seconds,
            shutdown_timeout_seconds=self.config.shutdown_timeout_seconds,
            logger=self.logger,
            metrics=self.metrics,
        )
        self.stats = StatsAggregator(gateway, top_errors_limit=self.config.top_errors_limit)

    def start(self) -> None:
        """Connect the gateway and start the periodic flush loop.

        Raises:
            PersistenceConnectionError: If the durable store is unreachable
        """
        self.gateway.connect()
        self.scheduler.start()
        self.logger.info("Error tracker started", store=type(self.gateway).__name__)

    def stop(self) -> FlushResult | None:
        """Stop flushing, attempt a final flush, disconnect the gateway."""
        result = self.scheduler.stop()
        self.gateway.disconnect()
        self.logger.info("Error tracker stopped")
        return result

    def __enter__(self) -> ErrorTracker:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # Ingestion

    def capture(
        self,
        error: BaseException | ErrorInfo,
        context: Mapping[str, Any] | None = None,
        options: CaptureOptions | None = None,
    ) -> str | None:
        """Record one occurrence of an error.

        Args:
            error: The exception (or a pre-normalized ErrorInfo)
            context: Request or job attributes; sanitized before buffering
            options: Explicit category/severity/metadata overrides

        Returns:
            The aggregate entry id, or None if the tracker failed internally
        """
        try:
            return self._capture(ErrorInfo.coerce(error), context, options or CaptureOptions())
        except Exception as e:
            self.metrics.increment("error_tracker_capture_failures_total")
            self.logger.error("Failed to capture error", error=str(e), exc_info=True)
            return None

    def capture_request(
        self,
        error: BaseException | ErrorInfo,
        request: RequestInfo | Mapping[str, Any],
    ) -> str | None:
        """Capture an error with context derived from a request-shaped object."""
        try:
            context = self._request_context(request)
        except Exception as e:
            self.metrics.increment("error_tracker_capture_failures_total")
            self.logger.error("Failed to build request context", error=str(e), exc_info=True)
            return None
        return self.capture(error, context)

    @contextmanager
    def track(
        self,
        context: Mapping[str, Any] | None = None,
        options: CaptureOptions | None = None,
    ) -> Iterator[None]:
        """Capture any exception escaping the block, then re-raise it.

        Usable as a context manager or a decorator::

            with tracker.track({"job": "invoice-sync"}):
                sync_invoices()
        """
        try:
            yield
        except Exception as error:
            self.capture(error, context, options)
            raise

    def _capture(self, info: ErrorInfo, context: Mapping[str, Any] | None, options: CaptureOptions) -> str:
        safe_context = sanitize_context(context)
        if options.category is not None:
            category = ErrorCategory(options.category)
        else:
            category = determine_category(info)
        if options.severity is not None:
            severity = ErrorSeverity(options.severity)
        else:
            severity = determine_severity(info, category)
        fingerprint = generate_fingerprint(info, category)

        occurrence = ErrorEntry(
            id=generate_entry_id(),
            message=info.message,
            stack=info.stack,
            category=category,
            severity=severity,
            fingerprint=fingerprint,
            occurred_at=utcnow(),
            context=safe_context,
            metadata=options.metadata,
        )
        entry_id = self.buffer.upsert(fingerprint, occurrence)

        self.metrics.increment(
            "error_tracker_captures_total",
            tags={"category": category.value, "severity": severity.value},
        )

        if self.config.echo_captures:
            self.logger.error(
                f"[{category.value.upper()}] {info.message}",
                severity=severity.value,
                context=safe_context,
                stack=info.stack,
            )

        if severity == ErrorSeverity.CRITICAL:
            self._handle_critical(fingerprint, occurrence)

        return entry_id

    def _handle_critical(self, fingerprint: str, occurrence: ErrorEntry) -> None:
        snapshot = self.buffer.get(fingerprint) or occurrence

        result = self.scheduler.flush_now()
        if not result.ok:
            self.logger.error(
                "Critical error could not be persisted immediately; it stays buffered",
                fingerprint=fingerprint,
                error=str(result.error),
            )

        try:
            self.notifier.notify(snapshot)
            self.metrics.increment("error_tracker_critical_alerts_total")
        except Exception as e:
            self.metrics.increment("error_tracker_alert_failures_total")
            self.logger.error(
                "Critical alert notification failed",
                fingerprint=fingerprint,
                error=str(e),
                exc_info=True,
            )

    @staticmethod
    def _request_context(request: RequestInfo | Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(request, RequestInfo):
            request = RequestInfo.from_mapping(request)

        context = {
            "url": request.url,
            "method": request.method,
            "headers": request.headers,
            "body": sanitize_body(request.body),
            "query": request.query,
            "ip": request.ip,
            "user_id": request.user_id,
            "request_id": request.header("x-request-id"),
        }
        # Absent attributes must not overwrite earlier ones in the shallow merge
        return {key: value for key, value in context.items() if value is not None}

    # Flushing

    def flush(self) -> FlushResult:
        """Flush buffered occurrences now."""
        return self.scheduler.flush_now()

    # Queries

    def list(
        self,
        category: ErrorCategory | str | None = None,
        severity: ErrorSeverity | str | None = None,
        resolved: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> ErrorPage:
        """List persisted entries, most recent first.

        Only flushed data is visible; the store lags the buffer by up to one
        flush interval.

        Raises:
            ValueError: If category or severity is not a known value
            PersistenceError: If the store query fails
        """
        if limit is None:
            limit = self.config.default_page_size
        limit = max(1, min(limit, self.config.max_page_size))
        page = max(1, page)

        query = ErrorQuery(
            category=ErrorCategory(category) if category is not None else None,
            severity=ErrorSeverity(severity) if severity is not None else None,
            resolved=resolved,
            search=search or None,
        )
        errors = self.gateway.find_many(
            query,
            sort_by="occurred_at",
            descending=True,
            skip=(page - 1) * limit,
            limit=limit,
        )
        total = self.gateway.count(query)

        return ErrorPage(
            errors=errors,
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    def get_stats(self) -> ErrorStats:
        """Summarize persisted entries.

        Raises:
            PersistenceError: If a store query fails
        """
        return self.stats.get_stats()

    # Mutations

    def resolve(self, fingerprint: str) -> bool:
        """Mark an entry resolved. Returns False if it is not in the store."""
        return self._set_resolved(fingerprint, True)

    def unresolve(self, fingerprint: str) -> bool:
        """Clear the resolved flag. Returns False if it is not in the store."""
        return self._set_resolved(fingerprint, False)

    def _set_resolved(self, fingerprint: str, resolved: bool) -> bool:
        patch = {"resolved": resolved, "resolved_at": utcnow() if resolved else None}
        try:
            self.gateway.update(fingerprint, patch)
        except ErrorNotFoundError:
            self.logger.warning("Error entry not found", fingerprint=fingerprint, resolved=resolved)
            return False
        except PersistenceError as e:
            self.logger.error(
                "Failed to update resolved flag",
                fingerprint=fingerprint,
                error=str(e),
                exc_info=True,
            )
            return False
        return True

    def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete resolved entries whose resolved_at is older than the cutoff.

        Returns:
            Number of deleted entries (0 if the store failed)
        """
        if older_than_days is None:
            older_than_days = self.config.retention_days
        cutoff = utcnow() - timedelta(days=older_than_days)

        try:
            deleted = self.gateway.delete_many(ErrorQuery(resolved=True, resolved_before=cutoff))
        except PersistenceError as e:
            self.logger.error("Retention cleanup failed", error=str(e), exc_info=True)
            return 0

        self.logger.info("Retention cleanup completed", deleted=deleted, older_than_days=older_than_days)
        return deleted
