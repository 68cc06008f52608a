# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""In-memory persistence gateway for testing and local development."""

import copy
import logging
import threading
from typing import Any

from .gateway import (
    ErrorNotFoundError,
    PersistenceGateway,
    PersistenceNotConnectedError,
    _validate_group_field,
    _validate_sort_field,
    to_storable,
)
from .models import ErrorEntry, ErrorQuery

logger = logging.getLogger(__name__)


class InMemoryPersistenceGateway(PersistenceGateway):
    """Gateway that keeps entries in a dict keyed by fingerprint.

    Entries are copied on the way in and out so callers cannot mutate
    stored state.
    """

    def __init__(self):
        """Initialize in-memory gateway."""
        self.entries: dict[str, ErrorEntry] = {}
        self.connected = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Pretend to connect.

        Note: Always succeeds for in-memory store
        """
        self.connected = True
        logger.debug("InMemoryPersistenceGateway: connected")

    def disconnect(self) -> None:
        """Pretend to disconnect."""
        self.connected = False
        logger.debug("InMemoryPersistenceGateway: disconnected")

    def _require_connection(self) -> None:
        if not self.connected:
            raise PersistenceNotConnectedError("InMemoryPersistenceGateway is not connected")

    def upsert_increment(self, entry: ErrorEntry) -> None:
        self._require_connection()
        with self._lock:
            stored = self.entries.get(entry.fingerprint)
            if stored is None:
                created = entry.copy()
                created.context = to_storable(entry.context)
                created.metadata = to_storable(entry.metadata)
                created.resolved = False
                created.resolved_at = None
                self.entries[entry.fingerprint] = created
                logger.debug(f"InMemoryPersistenceGateway: inserted {entry.fingerprint}")
                return

            stored.count += entry.count
            stored.occurred_at = entry.occurred_at
            stored.message = entry.message
            stored.stack = entry.stack
            stored.context = {**stored.context, **to_storable(entry.context)}
            if entry.metadata is not None:
                stored.metadata = to_storable(entry.metadata)
            logger.debug(
                f"InMemoryPersistenceGateway: incremented {entry.fingerprint} by {entry.count}"
            )

    def find_many(
        self,
        query: ErrorQuery,
        *,
        sort_by: str = "occurred_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ErrorEntry]:
        self._require_connection()
        _validate_sort_field(sort_by)
        with self._lock:
            matching = [copy.deepcopy(e) for e in self.entries.values() if query.matches(e)]

        matching.sort(key=lambda e: getattr(e, sort_by), reverse=descending)
        return matching[skip:skip + limit]

    def count(self, query: ErrorQuery) -> int:
        self._require_connection()
        with self._lock:
            return sum(1 for e in self.entries.values() if query.matches(e))

    def group_by(self, field: str, query: ErrorQuery | None = None) -> dict[str, int]:
        self._require_connection()
        _validate_group_field(field)
        query = query or ErrorQuery()

        groups: dict[str, int] = {}
        with self._lock:
            for entry in self.entries.values():
                if query.matches(entry):
                    value = getattr(entry, field).value
                    groups[value] = groups.get(value, 0) + 1
        return groups

    def update(self, fingerprint: str, patch: dict[str, Any]) -> None:
        self._require_connection()
        with self._lock:
            stored = self.entries.get(fingerprint)
            if stored is None:
                logger.debug(f"InMemoryPersistenceGateway: {fingerprint} not found")
                raise ErrorNotFoundError(f"No error entry with fingerprint {fingerprint}")
            for key, value in patch.items():
                if not hasattr(stored, key):
                    raise ValueError(f"Unknown error entry field: {key}")
                setattr(stored, key, value)
        logger.debug(f"InMemoryPersistenceGateway: updated {fingerprint} with {sorted(patch)}")

    def delete_many(self, query: ErrorQuery) -> int:
        self._require_connection()
        with self._lock:
            doomed = [fp for fp, e in self.entries.items() if query.matches(e)]
            for fingerprint in doomed:
                del self.entries[fingerprint]
        logger.debug(f"InMemoryPersistenceGateway: deleted {len(doomed)} entries")
        return len(doomed)

    def clear(self) -> None:
        """Remove every stored entry (useful for testing)."""
        with self._lock:
            self.entries.clear()
