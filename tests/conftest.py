# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Pytest configuration and fixtures."""

import pytest

from panel_error_tracker.config import ErrorTrackerConfig
from panel_error_tracker.inmemory_gateway import InMemoryPersistenceGateway
from panel_error_tracker.logger import create_logger
from panel_error_tracker.metrics import NoOpMetricsCollector
from panel_error_tracker.notifier import SilentAlertNotifier
from panel_error_tracker.tracker import ErrorTracker


@pytest.fixture
def gateway():
    """Create a connected in-memory gateway."""
    store = InMemoryPersistenceGateway()
    store.connect()
    return store


@pytest.fixture
def logger():
    return create_logger(logger_type="silent", level="DEBUG", name="error-tracker-test")


@pytest.fixture
def metrics():
    return NoOpMetricsCollector()


@pytest.fixture
def notifier():
    return SilentAlertNotifier()


@pytest.fixture
def config():
    # Long interval so the background loop never fires during a test
    return ErrorTrackerConfig(flush_interval_seconds=3600, shutdown_timeout_seconds=2, log_type="silent")


@pytest.fixture
def tracker(gateway, notifier, config, logger, metrics):
    """Create an error tracker wired to in-memory collaborators (not started)."""
    return ErrorTracker(
        gateway=gateway,
        notifier=notifier,
        config=config,
        logger=logger,
        metrics=metrics,
    )
