# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Periodic and on-demand flushing of the dedup buffer to the durable store."""

import threading
import time
from dataclasses import dataclass
from enum import Enum

from .buffer import DedupBuffer
from .gateway import PersistenceConnectionError, PersistenceGateway, PersistenceNotConnectedError
from .logger import Logger
from .metrics import MetricsCollector, NoOpMetricsCollector
from .models import ErrorEntry

STORE_UNAVAILABLE_ERRORS = (PersistenceConnectionError, PersistenceNotConnectedError)


class FlushState(str, Enum):
    IDLE = "idle"
    FLUSHING = "flushing"


@dataclass
class FlushResult:
    """Outcome of one flush.

    Attributes:
        persisted: Entries written to the store
        requeued: Entries merged back into the buffer after a failure
        error: The persistence failure, if any
    """

    persisted: int = 0
    requeued: int = 0
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FlushScheduler:
    """Drives buffer flushes from a background thread and on demand.

    Only one flush runs at a time. A caller of ``flush_now()`` that arrives
    while another flush is in progress waits for it, then drains whatever
    accumulated in the meantime.
    """

    def __init__(
        self,
        buffer: DedupBuffer,
        gateway: PersistenceGateway,
        interval_seconds: float = 30.0,
        shutdown_timeout_seconds: float = 10.0,
        logger: Logger | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """Initialize the scheduler.

        Args:
            buffer: Buffer to drain
            gateway: Durable store receiving upsert-increments
            interval_seconds: Time between background flushes
            shutdown_timeout_seconds: Bound on the final flush in ``stop()``
            logger: Logger instance
            metrics: Metrics collector
        """
        self.buffer = buffer
        self.gateway = gateway
        self.interval_seconds = interval_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self.logger = logger
        self.metrics = metrics or NoOpMetricsCollector()
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False
        self._state = FlushState.IDLE

    @property
    def state(self) -> FlushState:
        return self._state

    def start(self):
        """Start the flush loop in a background thread."""
        if self._running:
            if self.logger:
                self.logger.warning("Flush scheduler already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="error-tracker-flush", daemon=True)
        self._thread.start()
        self._running = True

        if self.logger:
            self.logger.info("Flush scheduler started", interval_seconds=self.interval_seconds)

    def stop(self) -> FlushResult | None:
        """Stop the loop and make one bounded final flush attempt.

        Joining the loop thread and the final flush share one deadline of
        ``shutdown_timeout_seconds``.

        Returns:
            Result of the final flush, or None if it did not finish in time
        """
        deadline = time.monotonic() + self.shutdown_timeout_seconds
        if self._running:
            self._stop_event.set()
            if self._thread and self._thread.is_alive():
                self._thread.join(timeout=self.shutdown_timeout_seconds)
            self._running = False

        result = self._final_flush(max(0.0, deadline - time.monotonic()))

        if self.logger:
            self.logger.info("Flush scheduler stopped")
        return result

    def is_running(self) -> bool:
        return self._running

    def flush_now(self) -> FlushResult:
        """Flush the buffer synchronously.

        Persistence failures are logged and the entries that were not written
        are requeued; nothing is raised.
        """
        with self._flush_lock:
            self._state = FlushState.FLUSHING
            try:
                return self._flush_batch()
            finally:
                self._state = FlushState.IDLE
                self.metrics.gauge("error_tracker_buffer_entries", len(self.buffer))

    def _flush_batch(self) -> FlushResult:
        entries = self.buffer.drain()
        if not entries:
            return FlushResult()

        start_time = time.monotonic()
        persisted = 0
        failed: list[ErrorEntry] = []
        last_error: Exception | None = None

        for index, entry in enumerate(entries):
            try:
                self.gateway.upsert_increment(entry)
            except STORE_UNAVAILABLE_ERRORS as e:
                # The rest of the batch would fail the same way
                failed.extend(entries[index:])
                last_error = e
                break
            except Exception as e:
                if self.logger:
                    self.logger.warning(
                        "Failed to persist error entry",
                        fingerprint=entry.fingerprint,
                        error=str(e),
                    )
                failed.append(entry)
                last_error = e
                continue
            persisted += 1

        if failed:
            # Entries already written are never requeued; that would apply
            # their increments twice.
            requeued = self.buffer.requeue(failed)
            self.metrics.increment("error_tracker_flush_failures_total")
            self.metrics.increment("error_tracker_requeued_entries_total", requeued)
            if persisted:
                self.metrics.increment("error_tracker_flushed_entries_total", persisted)
            if self.logger:
                self.logger.error(
                    "Failed to persist error entries; failed entries requeued",
                    persisted=persisted,
                    requeued=requeued,
                    error=str(last_error),
                    exc_info=last_error,
                )
            return FlushResult(persisted=persisted, requeued=requeued, error=last_error)

        duration = time.monotonic() - start_time
        self.metrics.observe("error_tracker_flush_duration_seconds", duration)
        self.metrics.increment("error_tracker_flushed_entries_total", persisted)

        if self.logger:
            self.logger.debug("Flushed error buffer", persisted=persisted, duration_seconds=duration)
        return FlushResult(persisted=persisted)

    def _run_loop(self):
        """Main flush loop."""
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.flush_now()
            except Exception as e:
                if self.logger:
                    self.logger.error("Error in scheduled flush", error=str(e), exc_info=True)

    def _final_flush(self, timeout: float) -> FlushResult | None:
        outcome: list[FlushResult] = []
        worker = threading.Thread(
            target=lambda: outcome.append(self.flush_now()),
            name="error-tracker-final-flush",
            daemon=True,
        )
        worker.start()
        worker.join(timeout=timeout)

        if worker.is_alive() or not outcome:
            if self.logger:
                self.logger.warning(
                    "Final flush did not complete before shutdown timeout; abandoning",
                    timeout_seconds=self.shutdown_timeout_seconds,
                )
            return None

        result = outcome[0]
        if not result.ok and self.logger:
            self.logger.error(
                "Dropping unpersisted error entries at shutdown",
                entries=len(self.buffer),
                occurrences=self.buffer.pending_occurrences(),
            )
        return result
