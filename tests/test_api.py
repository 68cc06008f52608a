# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Unit tests for the error tracker API and request middleware."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from panel_error_tracker.api import ErrorTrackingMiddleware, create_api_router
from panel_error_tracker.logger import create_logger
from panel_error_tracker.models import ErrorInfo, ErrorSeverity
from panel_error_tracker.sanitizer import REDACTED

from .test_helpers import make_entry


def load_orders():
    raise ValueError("bad input")


def load_users():
    raise ValueError("bad input")


@pytest.fixture
def app(tracker):
    """Create an app with the error router, middleware and a failing route."""
    logger = create_logger(logger_type="silent", level="INFO", name="api-test")

    app = FastAPI()
    app.include_router(create_api_router(tracker, logger))
    app.add_middleware(ErrorTrackingMiddleware, tracker=tracker)

    @app.get("/boom")
    async def boom(request: Request):
        request.state.user_id = "u-9"
        raise RuntimeError("database connection lost")

    @app.get("/ok")
    async def ok():
        return {"status": "ok"}

    @app.get("/orders")
    async def orders():
        load_orders()

    @app.get("/users")
    async def users():
        load_users()

    return app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


class TestErrorsRouter:
    """Tests for /errors endpoints."""

    def test_list_errors(self, client, gateway):
        gateway.upsert_increment(make_entry("fp-1", count=3))

        response = client.get("/errors")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["page"] == 1
        assert data["errors"][0]["fingerprint"] == "fp-1"
        assert data["errors"][0]["count"] == 3
        assert data["errors"][0]["category"] == "runtime"

    def test_list_filters_and_paging(self, client, gateway):
        for i in range(3):
            gateway.upsert_increment(make_entry(f"fp-{i}"))
        gateway.upsert_increment(make_entry("fp-high", severity=ErrorSeverity.HIGH))

        assert client.get("/errors", params={"severity": "high"}).json()["total"] == 1
        data = client.get("/errors", params={"limit": 2, "page": 2}).json()
        assert len(data["errors"]) == 2
        assert data["total_pages"] == 2

    def test_list_rejects_invalid_params(self, client):
        assert client.get("/errors", params={"category": "bogus"}).status_code == 422
        assert client.get("/errors", params={"limit": 1000}).status_code == 422
        assert client.get("/errors", params={"page": 0}).status_code == 422

    def test_list_store_unavailable(self, client, gateway):
        gateway.disconnect()
        assert client.get("/errors").status_code == 503

    def test_stats(self, client, gateway):
        gateway.upsert_increment(make_entry("fp-1", count=2, occurred_at=datetime.now(timezone.utc)))

        response = client.get("/errors/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["last_24h"] == 1
        assert data["by_severity"]["critical"] == 0
        assert data["top_errors"][0]["fingerprint"] == "fp-1"

    def test_stats_store_unavailable(self, client, gateway):
        gateway.disconnect()
        assert client.get("/errors/stats").status_code == 503

    def test_resolve_and_unresolve(self, client, gateway):
        gateway.upsert_increment(make_entry("fp-1"))

        response = client.post("/errors/fp-1/resolve")
        assert response.status_code == 200
        assert response.json() == {"fingerprint": "fp-1", "resolved": True}
        assert gateway.entries["fp-1"].resolved is True

        response = client.post("/errors/fp-1/unresolve")
        assert response.json() == {"fingerprint": "fp-1", "resolved": False}

    def test_resolve_missing(self, client):
        assert client.post("/errors/nope/resolve").status_code == 404
        assert client.post("/errors/nope/unresolve").status_code == 404

    def test_cleanup(self, client, gateway):
        gateway.upsert_increment(make_entry("fp-1"))
        gateway.update("fp-1", {"resolved": True, "resolved_at": datetime.now(timezone.utc) - timedelta(days=10)})

        assert client.post("/errors/cleanup", params={"older_than_days": 30}).json()["deleted"] == 0
        response = client.post("/errors/cleanup", params={"older_than_days": 5})
        assert response.json() == {"deleted": 1, "older_than_days": 5}

    def test_flush(self, client, tracker, gateway):
        tracker.capture(ErrorInfo(name="KeyError", message="missing key"))

        response = client.post("/errors/flush")

        assert response.json() == {"persisted": 1, "requeued": 0, "ok": True}
        assert len(gateway.entries) == 1


class TestErrorTrackingMiddleware:
    """Tests for ErrorTrackingMiddleware."""

    def test_successful_request_not_captured(self, client, tracker):
        assert client.get("/ok").status_code == 200
        assert len(tracker.buffer) == 0

    def test_unhandled_exception_is_captured_and_reraised(self, client, gateway, notifier):
        response = client.get("/boom", params={"token": "t"}, headers={"Authorization": "Bearer x", "X-Request-Id": "req-1"})

        assert response.status_code == 500
        # database connection failures are critical, so the entry is already persisted
        entry = next(iter(gateway.entries.values()))
        assert entry.message == "database connection lost"
        assert entry.context["url"] == "/boom"
        assert entry.context["method"] == "GET"
        assert entry.context["request_id"] == "req-1"
        assert entry.context["user_id"] == "u-9"
        assert entry.context["headers"]["authorization"] == REDACTED
        assert entry.context["query"] == {"token": REDACTED}
        assert len(notifier.alerts) == 1

    def test_errors_from_different_handlers_are_not_merged(self, client, tracker):
        for path in ("/orders", "/users", "/orders"):
            assert client.get(path).status_code == 500

        entries = tracker.buffer.drain()

        assert len(entries) == 2
        by_url = {e.context["url"]: e for e in entries}
        assert by_url["/orders"].count == 2
        assert by_url["/users"].count == 1
