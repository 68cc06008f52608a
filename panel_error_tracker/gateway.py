# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Abstract persistence gateway for aggregated error entries."""

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from .models import ErrorEntry, ErrorQuery

SORT_FIELDS = ("occurred_at", "count")
GROUP_FIELDS = ("category", "severity")


class PersistenceError(Exception):
    """Base exception for persistence gateway errors."""
    pass


class PersistenceNotConnectedError(PersistenceError):
    """Exception raised when attempting operations on a disconnected gateway."""
    pass


class PersistenceConnectionError(PersistenceError):
    """Exception raised when connection to the durable store fails."""
    pass


class ErrorNotFoundError(PersistenceError):
    """Exception raised when no entry exists for a fingerprint."""
    pass


class PersistenceGateway(ABC):
    """Durable store contract for error entries.

    Exactly one entry exists per fingerprint. ``upsert_increment`` must add
    to the stored count rather than replace it.
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the durable store.

        Raises:
            PersistenceConnectionError: If connection fails
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the durable store."""
        pass

    @abstractmethod
    def upsert_increment(self, entry: ErrorEntry) -> None:
        """Insert an entry or merge it into the stored one.

        On conflict by fingerprint: add ``entry.count`` to the stored count,
        set occurred_at/message/stack, shallow-merge context, replace metadata
        when supplied. ``resolved`` and ``resolved_at`` are left untouched.

        Raises:
            PersistenceNotConnectedError: If not connected
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    def find_many(
        self,
        query: ErrorQuery,
        *,
        sort_by: str = "occurred_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ErrorEntry]:
        """Return entries matching ``query`` in the requested order.

        Args:
            query: Filter criteria
            sort_by: One of SORT_FIELDS
            descending: Sort direction
            skip: Number of matching entries to skip
            limit: Maximum number of entries to return
        """
        pass

    @abstractmethod
    def count(self, query: ErrorQuery) -> int:
        """Count entries matching ``query``."""
        pass

    @abstractmethod
    def group_by(self, field: str, query: ErrorQuery | None = None) -> dict[str, int]:
        """Count entries per distinct value of ``field`` (one of GROUP_FIELDS)."""
        pass

    @abstractmethod
    def update(self, fingerprint: str, patch: dict[str, Any]) -> None:
        """Apply a field patch to the entry identified by ``fingerprint``.

        Raises:
            ErrorNotFoundError: If no entry has this fingerprint
            PersistenceError: If the update fails
        """
        pass

    @abstractmethod
    def delete_many(self, query: ErrorQuery) -> int:
        """Delete entries matching ``query`` and return how many were removed."""
        pass


def _validate_sort_field(sort_by: str) -> None:
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Unsupported sort field: {sort_by}. Must be one of {SORT_FIELDS}")


def _validate_group_field(field: str) -> None:
    if field not in GROUP_FIELDS:
        raise ValueError(f"Unsupported group field: {field}. Must be one of {GROUP_FIELDS}")


def to_storable(value: Any) -> Any:
    """Coerce a context or metadata value into plain document types.

    Mappings, lists and tuples are rebuilt recursively; scalars and datetimes
    pass through; anything else is stored as ``str(value)``.
    """
    if value is None or isinstance(value, (str, bool, int, float, datetime)):
        return value
    if isinstance(value, Mapping):
        return {str(key): to_storable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storable(item) for item in value]
    return str(value)


def create_persistence_gateway(
    store_type: str | None = None,
    **kwargs
) -> PersistenceGateway:
    """Factory function to create a persistence gateway.

    Args:
        store_type: Type of store ("mongodb", "inmemory").
                   If None, reads from ERROR_TRACKER_STORE_TYPE (defaults to "inmemory")
        **kwargs: Store-specific arguments. For MongoDB, missing connection
                 parameters fall back to environment variables.

    Returns:
        PersistenceGateway instance

    Raises:
        ValueError: If store_type is not recognized
    """
    if store_type is None:
        store_type = os.getenv("ERROR_TRACKER_STORE_TYPE", "inmemory")

    store_type = store_type.lower()

    if store_type == "mongodb":
        from .mongo_gateway import MongoPersistenceGateway

        # Explicit parameters take precedence over environment variables
        mongo_kwargs: dict[str, Any] = dict(kwargs)
        mongo_kwargs.setdefault("host", os.getenv("ERROR_TRACKER_MONGO_HOST", "localhost"))
        mongo_kwargs.setdefault("port", int(os.getenv("ERROR_TRACKER_MONGO_PORT", "27017")))
        mongo_kwargs.setdefault("database", os.getenv("ERROR_TRACKER_MONGO_DATABASE", "panel"))

        username = os.getenv("ERROR_TRACKER_MONGO_USERNAME")
        if "username" not in mongo_kwargs and username is not None:
            mongo_kwargs["username"] = username
        password = os.getenv("ERROR_TRACKER_MONGO_PASSWORD")
        if "password" not in mongo_kwargs and password is not None:
            mongo_kwargs["password"] = password

        return MongoPersistenceGateway(**mongo_kwargs)
    elif store_type == "inmemory":
        from .inmemory_gateway import InMemoryPersistenceGateway
        return InMemoryPersistenceGateway()
    else:
        raise ValueError(f"Unknown store_type: {store_type}")
