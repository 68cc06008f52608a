# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for data models and the package-level factory."""

from datetime import datetime, timedelta, timezone

from panel_error_tracker import (
    ErrorTracker,
    ErrorTrackerConfig,
    InMemoryPersistenceGateway,
    create_error_tracker,
)
from panel_error_tracker.logger import SilentLogger
from panel_error_tracker.models import (
    ErrorCategory,
    ErrorEntry,
    ErrorInfo,
    ErrorQuery,
    ErrorSeverity,
    RequestInfo,
)
from panel_error_tracker.mongo_gateway import MongoPersistenceGateway
from panel_error_tracker.notifier import LoggingAlertNotifier, SilentAlertNotifier

from .test_helpers import make_entry, raise_and_catch


class TestErrorInfo:
    """Tests for ErrorInfo."""

    def test_from_raised_exception(self):
        info = ErrorInfo.from_exception(raise_and_catch(KeyError("order")))
        assert info.name == "KeyError"
        assert info.message == "'order'"
        assert "raise error" in info.stack

    def test_from_unraised_exception(self):
        info = ErrorInfo.from_exception(ValueError("never raised"))
        assert info.stack is None

    def test_coerce_passthrough(self):
        info = ErrorInfo(name="E", message="m")
        assert ErrorInfo.coerce(info) is info


class TestErrorEntry:
    """Tests for ErrorEntry."""

    def test_severity_rank(self):
        ranks = [s.rank for s in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)]
        assert ranks == sorted(ranks)

    def test_dict_round_trip_preserves_enums_and_dates(self):
        entry = make_entry("fp-1", context={"a": 1}, metadata={"m": 1})
        data = entry.to_dict()

        assert data["category"] == "runtime"
        assert ErrorEntry.from_dict(data) == entry

    def test_from_dict_naive_datetimes_are_utc(self):
        data = make_entry("fp-1").to_dict()
        data["occurred_at"] = datetime(2025, 1, 1)
        data["resolved_at"] = datetime(2025, 1, 2)

        entry = ErrorEntry.from_dict(data)
        assert entry.occurred_at.tzinfo is timezone.utc
        assert entry.resolved_at.tzinfo is timezone.utc


class TestErrorQuery:
    """Tests for ErrorQuery.matches."""

    def test_resolved_before_excludes_unresolved(self):
        cutoff = datetime(2025, 1, 10, tzinfo=timezone.utc)
        unresolved = make_entry("fp-1")
        resolved_old = make_entry("fp-2", resolved=True, resolved_at=cutoff - timedelta(days=1))
        resolved_new = make_entry("fp-3", resolved=True, resolved_at=cutoff)

        query = ErrorQuery(resolved_before=cutoff)
        assert not query.matches(unresolved)
        assert query.matches(resolved_old)
        assert not query.matches(resolved_new)

    def test_combined_filters(self):
        entry = make_entry("fp-1", message="Stripe declined", category=ErrorCategory.PAYMENT)
        assert ErrorQuery(category=ErrorCategory.PAYMENT, search="stripe").matches(entry)
        assert not ErrorQuery(category=ErrorCategory.PAYMENT, search="paypal").matches(entry)


class TestRequestInfo:
    """Tests for RequestInfo."""

    def test_header_case_insensitive(self):
        request = RequestInfo(headers={"X-Request-ID": "r-1"})
        assert request.header("x-request-id") == "r-1"
        assert RequestInfo().header("x-request-id") is None


class TestCreateErrorTracker:
    """Tests for create_error_tracker."""

    def test_defaults(self):
        tracker = create_error_tracker(ErrorTrackerConfig(log_type="silent"))

        assert isinstance(tracker, ErrorTracker)
        assert isinstance(tracker.gateway, InMemoryPersistenceGateway)
        assert isinstance(tracker.notifier, LoggingAlertNotifier)
        assert isinstance(tracker.logger, SilentLogger)

    def test_mongodb_from_config(self):
        config = ErrorTrackerConfig(
            store_type="mongodb",
            mongo_host="mongo",
            mongo_collection="errors",
            log_type="silent",
            notifier_type="silent",
        )

        tracker = create_error_tracker(config)

        assert isinstance(tracker.gateway, MongoPersistenceGateway)
        assert tracker.gateway.host == "mongo"
        assert tracker.gateway.collection_name == "errors"
        assert isinstance(tracker.notifier, SilentAlertNotifier)

    def test_overrides(self, gateway, notifier, logger):
        tracker = create_error_tracker(gateway=gateway, notifier=notifier, logger=logger)

        assert tracker.gateway is gateway
        assert tracker.notifier is notifier
        assert tracker.logger is logger
