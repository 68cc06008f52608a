# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for the MongoDB persistence gateway (pymongo is mocked)."""

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from bson.errors import InvalidDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, OperationFailure

from panel_error_tracker.gateway import (
    ErrorNotFoundError,
    PersistenceConnectionError,
    PersistenceError,
    PersistenceNotConnectedError,
)
from panel_error_tracker.models import ErrorCategory, ErrorQuery, ErrorSeverity
from panel_error_tracker.mongo_gateway import MongoPersistenceGateway, build_filter, build_upsert_pipeline

from .test_helpers import make_entry


@pytest.fixture
def mock_client():
    with patch("panel_error_tracker.mongo_gateway.MongoClient") as client_cls:
        yield client_cls


@pytest.fixture
def store(mock_client):
    gateway = MongoPersistenceGateway(host="localhost", port=27017, database="panel")
    gateway.connect()
    return gateway


def collection_of(mock_client):
    return mock_client.return_value.__getitem__.return_value.__getitem__.return_value


class TestBuildFilter:
    """Tests for build_filter."""

    def test_empty(self):
        assert build_filter(ErrorQuery()) == {}

    def test_all_fields(self):
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)
        before = datetime(2025, 2, 1, tzinfo=timezone.utc)
        query = ErrorQuery(
            category=ErrorCategory.PAYMENT,
            severity=ErrorSeverity.HIGH,
            resolved=False,
            search="card.declined",
            occurred_since=since,
            resolved_before=before,
        )

        assert build_filter(query) == {
            "category": "payment",
            "severity": "high",
            "resolved": False,
            "message": {"$regex": r"card\.declined", "$options": "i"},
            "occurred_at": {"$gte": since},
            "resolved_at": {"$lt": before},
        }


class TestBuildUpsertPipeline:
    """Tests for build_upsert_pipeline."""

    def test_increment_and_insert_only_fields(self):
        stage = build_upsert_pipeline(make_entry("fp-1", count=3))[0]["$set"]

        assert stage["count"] == {"$add": [{"$ifNull": ["$count", 0]}, 3]}
        assert stage["id"] == {"$ifNull": ["$id", {"$literal": "err_fp-1"}]}
        assert stage["resolved"] == {"$ifNull": ["$resolved", False]}
        assert stage["message"] == {"$literal": "Something broke"}

    def test_context_is_merged(self):
        stage = build_upsert_pipeline(make_entry("fp-1", context={"a": 1}))[0]["$set"]
        assert stage["context"] == {"$mergeObjects": [{"$ifNull": ["$context", {}]}, {"$literal": {"a": 1}}]}

    def test_dollar_strings_are_literal(self):
        stage = build_upsert_pipeline(make_entry("fp-1", message="$where"))[0]["$set"]
        assert stage["message"] == {"$literal": "$where"}

    def test_metadata_kept_when_absent(self):
        stage = build_upsert_pipeline(make_entry("fp-1"))[0]["$set"]
        assert stage["metadata"] == {"$ifNull": ["$metadata", {}]}

        stage = build_upsert_pipeline(make_entry("fp-1", metadata={"team": "a"}))[0]["$set"]
        assert stage["metadata"] == {"$literal": {"team": "a"}}

    def test_unencodable_values_are_stored_as_text(self):
        lock = threading.Lock()
        when = datetime(2025, 1, 1, tzinfo=timezone.utc)
        entry = make_entry("fp-1", context={"lock": lock, "ids": (1, 2), "at": when, "nested": {"n": None}})

        stage = build_upsert_pipeline(entry)[0]["$set"]

        assert stage["context"]["$mergeObjects"][1] == {
            "$literal": {"lock": str(lock), "ids": [1, 2], "at": when, "nested": {"n": None}}
        }


class TestMongoPersistenceGateway:
    """Tests for MongoPersistenceGateway."""

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"port": 27017, "database": "panel"}, "host is required"),
            ({"host": "localhost", "database": "panel"}, "port is required"),
            ({"host": "localhost", "port": 27017}, "database is required"),
        ],
    )
    def test_required_parameters(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            MongoPersistenceGateway(**kwargs)

    def test_connect_pings_and_indexes(self, store, mock_client):
        mock_client.return_value.admin.command.assert_called_once_with("ping")
        coll = collection_of(mock_client)
        coll.create_index.assert_any_call([("fingerprint", 1)], unique=True)
        assert store.collection is coll

    def test_connect_with_credentials(self, mock_client):
        gateway = MongoPersistenceGateway(
            host="db", port=27017, database="panel", username="u", password="p"
        )
        gateway.connect()

        kwargs = mock_client.call_args.kwargs
        assert kwargs["username"] == "u"
        assert kwargs["authSource"] == "admin"

    def test_connect_failure(self, mock_client):
        mock_client.return_value.admin.command.side_effect = ConnectionFailure("unreachable")
        gateway = MongoPersistenceGateway(host="db", port=27017, database="panel")

        with pytest.raises(PersistenceConnectionError):
            gateway.connect()
        assert gateway.collection is None

    def test_requires_connection(self, mock_client):
        gateway = MongoPersistenceGateway(host="db", port=27017, database="panel")
        with pytest.raises(PersistenceNotConnectedError):
            gateway.count(ErrorQuery())

    def test_disconnect(self, store, mock_client):
        store.disconnect()
        mock_client.return_value.close.assert_called_once()
        assert store.collection is None

    def test_upsert_increment(self, store, mock_client):
        entry = make_entry("fp-1", count=2)
        store.upsert_increment(entry)

        coll = collection_of(mock_client)
        coll.update_one.assert_called_once_with(
            {"fingerprint": "fp-1"}, build_upsert_pipeline(entry), upsert=True
        )

    def test_upsert_retries_duplicate_key(self, store, mock_client):
        coll = collection_of(mock_client)
        coll.update_one.side_effect = [DuplicateKeyError("dup"), MagicMock()]

        store.upsert_increment(make_entry("fp-1"))

        assert coll.update_one.call_count == 2

    def test_upsert_failure(self, store, mock_client):
        collection_of(mock_client).update_one.side_effect = OperationFailure("boom")
        with pytest.raises(PersistenceError):
            store.upsert_increment(make_entry("fp-1"))

    def test_upsert_encode_failure_is_persistence_error(self, store, mock_client):
        collection_of(mock_client).update_one.side_effect = InvalidDocument("cannot encode object")
        with pytest.raises(PersistenceError):
            store.upsert_increment(make_entry("fp-1"))

    def test_upsert_connection_loss(self, store, mock_client):
        collection_of(mock_client).update_one.side_effect = ConnectionFailure("gone")
        with pytest.raises(PersistenceConnectionError):
            store.upsert_increment(make_entry("fp-1"))

    def test_find_many(self, store, mock_client):
        coll = collection_of(mock_client)
        cursor = coll.find.return_value.sort.return_value.skip.return_value.limit.return_value
        doc = make_entry("fp-1").to_dict()
        doc["occurred_at"] = datetime(2025, 1, 1, 12, 0)  # BSON datetimes are naive
        cursor.__iter__.return_value = iter([doc])

        result = store.find_many(ErrorQuery(resolved=False), sort_by="count", skip=5, limit=10)

        coll.find.assert_called_once_with({"resolved": False}, {"_id": 0})
        coll.find.return_value.sort.assert_called_once_with("count", -1)
        coll.find.return_value.sort.return_value.skip.assert_called_once_with(5)
        assert result[0].fingerprint == "fp-1"
        assert result[0].occurred_at.tzinfo is timezone.utc

    def test_count(self, store, mock_client):
        collection_of(mock_client).count_documents.return_value = 7
        assert store.count(ErrorQuery(severity=ErrorSeverity.LOW)) == 7
        collection_of(mock_client).count_documents.assert_called_once_with({"severity": "low"})

    def test_group_by(self, store, mock_client):
        coll = collection_of(mock_client)
        coll.aggregate.return_value = [{"_id": "high", "count": 2}, {"_id": "low", "count": 1}]

        assert store.group_by("severity") == {"high": 2, "low": 1}
        pipeline = coll.aggregate.call_args.args[0]
        assert pipeline[1] == {"$group": {"_id": "$severity", "count": {"$sum": 1}}}

    def test_update(self, store, mock_client):
        coll = collection_of(mock_client)
        coll.update_one.return_value.matched_count = 1

        store.update("fp-1", {"resolved": True})

        coll.update_one.assert_called_once_with({"fingerprint": "fp-1"}, {"$set": {"resolved": True}})

    def test_update_missing(self, store, mock_client):
        collection_of(mock_client).update_one.return_value.matched_count = 0
        with pytest.raises(ErrorNotFoundError):
            store.update("fp-1", {"resolved": True})

    def test_delete_many(self, store, mock_client):
        collection_of(mock_client).delete_many.return_value.deleted_count = 4
        assert store.delete_many(ErrorQuery(resolved=True)) == 4
