# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""MongoDB persistence gateway implementation."""

import logging
import re
from typing import Any

from bson.errors import BSONError
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from .gateway import (
    ErrorNotFoundError,
    PersistenceConnectionError,
    PersistenceError,
    PersistenceGateway,
    PersistenceNotConnectedError,
    _validate_group_field,
    _validate_sort_field,
    to_storable,
)
from .models import ErrorEntry, ErrorQuery

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "error_logs"


def build_filter(query: ErrorQuery) -> dict[str, Any]:
    """Translate an ErrorQuery into a MongoDB filter document."""
    mongo_filter: dict[str, Any] = {}
    if query.category is not None:
        mongo_filter["category"] = query.category.value
    if query.severity is not None:
        mongo_filter["severity"] = query.severity.value
    if query.resolved is not None:
        mongo_filter["resolved"] = query.resolved
    if query.search:
        mongo_filter["message"] = {"$regex": re.escape(query.search), "$options": "i"}
    if query.occurred_since is not None:
        mongo_filter["occurred_at"] = {"$gte": query.occurred_since}
    if query.resolved_before is not None:
        mongo_filter["resolved_at"] = {"$lt": query.resolved_before}
    return mongo_filter


def build_upsert_pipeline(entry: ErrorEntry) -> list[dict[str, Any]]:
    """Build the update pipeline that inserts or increments one entry.

    Caller-supplied values are wrapped in ``$literal`` so strings that start
    with ``$`` are never evaluated as field paths.
    """
    stage: dict[str, Any] = {
        "id": {"$ifNull": ["$id", {"$literal": entry.id}]},
        "category": {"$ifNull": ["$category", {"$literal": entry.category.value}]},
        "severity": {"$ifNull": ["$severity", {"$literal": entry.severity.value}]},
        "resolved": {"$ifNull": ["$resolved", False]},
        "resolved_at": {"$ifNull": ["$resolved_at", None]},
        "message": {"$literal": entry.message},
        "stack": {"$literal": entry.stack},
        "occurred_at": {"$literal": entry.occurred_at},
        "context": {
            "$mergeObjects": [{"$ifNull": ["$context", {}]}, {"$literal": to_storable(entry.context)}]
        },
        "count": {"$add": [{"$ifNull": ["$count", 0]}, entry.count]},
    }
    if entry.metadata is not None:
        stage["metadata"] = {"$literal": to_storable(entry.metadata)}
    else:
        stage["metadata"] = {"$ifNull": ["$metadata", {}]}
    return [{"$set": stage}]


class MongoPersistenceGateway(PersistenceGateway):
    """MongoDB-backed gateway storing one document per fingerprint."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        database: str | None = None,
        collection: str = DEFAULT_COLLECTION,
        **kwargs
    ):
        """Initialize MongoDB gateway.

        Args:
            host: MongoDB host (required)
            port: MongoDB port (required)
            username: MongoDB username (optional)
            password: MongoDB password (optional)
            database: Database name (required)
            collection: Collection holding error entries
            **kwargs: Additional MongoClient options

        Raises:
            ValueError: If required parameters (host, port, database) are not provided
        """
        if not host:
            raise ValueError(
                "MongoDB host is required. "
                "Provide the MongoDB server hostname or IP address."
            )
        if port is None:
            raise ValueError(
                "MongoDB port is required. "
                "Provide the MongoDB server port number."
            )
        if not database:
            raise ValueError(
                "MongoDB database is required. "
                "Provide the database name to use."
            )

        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.database_name = database
        self.collection_name = collection
        self.client_options = kwargs
        self.client: MongoClient | None = None
        self.collection = None

    def connect(self) -> None:
        """Connect to MongoDB and ensure indexes exist.

        Raises:
            PersistenceConnectionError: If connection fails
        """
        try:
            connection_params: dict[str, Any] = {
                "host": self.host,
                "port": self.port,
            }

            if self.username and self.password:
                connection_params["username"] = self.username
                connection_params["password"] = self.password
                if "authSource" not in self.client_options:
                    connection_params["authSource"] = "admin"

            connection_params.update(self.client_options)

            self.client = MongoClient(**connection_params)
            self.client.admin.command("ping")

            self.collection = self.client[self.database_name][self.collection_name]
            self.collection.create_index([("fingerprint", ASCENDING)], unique=True)
            self.collection.create_index([("occurred_at", DESCENDING)])
            self.collection.create_index([("resolved", ASCENDING), ("count", DESCENDING)])

            logger.info(
                "MongoPersistenceGateway: connected to %s:%s/%s.%s",
                self.host, self.port, self.database_name, self.collection_name,
            )

        except ConnectionFailure as e:
            logger.error("MongoPersistenceGateway: connection failed - %s", e, exc_info=True)
            self.collection = None
            raise PersistenceConnectionError(
                f"Failed to connect to MongoDB at {self.host}:{self.port}"
            ) from e
        except PyMongoError as e:
            logger.error("MongoPersistenceGateway: unexpected error during connect - %s", e, exc_info=True)
            self.collection = None
            raise PersistenceConnectionError(f"Unexpected error connecting to MongoDB: {e}") from e

    def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            self.client = None
            self.collection = None
            logger.info("MongoPersistenceGateway: disconnected")

    def _require_collection(self):
        if self.collection is None:
            raise PersistenceNotConnectedError("Not connected to MongoDB")
        return self.collection

    def upsert_increment(self, entry: ErrorEntry) -> None:
        coll = self._require_collection()
        pipeline = build_upsert_pipeline(entry)

        try:
            try:
                coll.update_one({"fingerprint": entry.fingerprint}, pipeline, upsert=True)
            except DuplicateKeyError:
                # A concurrent upsert inserted the document first; the retry matches it
                coll.update_one({"fingerprint": entry.fingerprint}, pipeline, upsert=True)
            logger.debug(
                f"MongoPersistenceGateway: upserted {entry.fingerprint} (+{entry.count})"
            )
        except ConnectionFailure as e:
            logger.error(f"MongoPersistenceGateway: upsert_increment lost connection - {e}", exc_info=True)
            raise PersistenceConnectionError(f"MongoDB unavailable while upserting {entry.fingerprint}") from e
        except (PyMongoError, BSONError, OverflowError) as e:
            logger.error(f"MongoPersistenceGateway: upsert_increment failed - {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert error entry {entry.fingerprint}") from e

    def find_many(
        self,
        query: ErrorQuery,
        *,
        sort_by: str = "occurred_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ErrorEntry]:
        coll = self._require_collection()
        _validate_sort_field(sort_by)

        try:
            cursor = (
                coll.find(build_filter(query), {"_id": 0})
                .sort(sort_by, DESCENDING if descending else ASCENDING)
                .skip(skip)
                .limit(limit)
            )
            return [ErrorEntry.from_dict(doc) for doc in cursor]
        except PyMongoError as e:
            logger.error(f"MongoPersistenceGateway: find_many failed - {e}", exc_info=True)
            raise PersistenceError("Failed to query error entries") from e

    def count(self, query: ErrorQuery) -> int:
        coll = self._require_collection()
        try:
            return coll.count_documents(build_filter(query))
        except PyMongoError as e:
            logger.error(f"MongoPersistenceGateway: count failed - {e}", exc_info=True)
            raise PersistenceError("Failed to count error entries") from e

    def group_by(self, field: str, query: ErrorQuery | None = None) -> dict[str, int]:
        coll = self._require_collection()
        _validate_group_field(field)

        pipeline = [
            {"$match": build_filter(query or ErrorQuery())},
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        ]
        try:
            return {doc["_id"]: doc["count"] for doc in coll.aggregate(pipeline)}
        except PyMongoError as e:
            logger.error(f"MongoPersistenceGateway: group_by failed - {e}", exc_info=True)
            raise PersistenceError(f"Failed to group error entries by {field}") from e

    def update(self, fingerprint: str, patch: dict[str, Any]) -> None:
        coll = self._require_collection()
        try:
            result = coll.update_one({"fingerprint": fingerprint}, {"$set": patch})
        except PyMongoError as e:
            logger.error(f"MongoPersistenceGateway: update failed - {e}", exc_info=True)
            raise PersistenceError(f"Failed to update error entry {fingerprint}") from e

        if result.matched_count == 0:
            logger.debug(f"MongoPersistenceGateway: {fingerprint} not found")
            raise ErrorNotFoundError(f"No error entry with fingerprint {fingerprint}")
        logger.debug(f"MongoPersistenceGateway: updated {fingerprint}")

    def delete_many(self, query: ErrorQuery) -> int:
        coll = self._require_collection()
        try:
            result = coll.delete_many(build_filter(query))
        except PyMongoError as e:
            logger.error(f"MongoPersistenceGateway: delete_many failed - {e}", exc_info=True)
            raise PersistenceError("Failed to delete error entries") from e

        logger.debug(f"MongoPersistenceGateway: deleted {result.deleted_count} entries")
        return result.deleted_count
