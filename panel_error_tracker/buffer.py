# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Thread-safe in-memory deduplication buffer keyed by fingerprint."""

import threading
from collections.abc import Iterable

from .models import ErrorEntry


class DedupBuffer:
    """Holds not-yet-flushed aggregate entries, one per fingerprint.

    All mutation happens under a single lock. ``drain()`` swaps the whole map
    for a fresh one, so an ``upsert()`` racing with a drain lands either in
    the drained batch or in the new map, never in neither.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, ErrorEntry] = {}

    def upsert(self, fingerprint: str, occurrence: ErrorEntry) -> str:
        """Record an occurrence and return the id of the resident entry.

        Args:
            fingerprint: Grouping key of the occurrence
            occurrence: Occurrence carrying message, stack, context, count

        Returns:
            Id of the existing entry, or of the newly inserted one
        """
        with self._lock:
            existing = self._entries.get(fingerprint)
            if existing is not None:
                existing.merge_occurrence(occurrence)
                return existing.id

            entry = occurrence.copy()
            self._entries[fingerprint] = entry
            return entry.id

    def drain(self) -> list[ErrorEntry]:
        """Atomically remove and return every buffered entry."""
        with self._lock:
            drained, self._entries = self._entries, {}
        return list(drained.values())

    def requeue(self, entries: Iterable[ErrorEntry]) -> int:
        """Merge previously drained entries back after a failed flush.

        Occurrences that arrived since the drain are newer, so the resident
        entry keeps its narrative fields and context keys; counts are added
        and the older id is kept.

        Returns:
            Number of entries requeued
        """
        requeued = 0
        with self._lock:
            for entry in entries:
                resident = self._entries.get(entry.fingerprint)
                if resident is None:
                    self._entries[entry.fingerprint] = entry
                else:
                    resident.count += entry.count
                    resident.context = {**entry.context, **resident.context}
                    resident.id = entry.id
                    if resident.metadata is None:
                        resident.metadata = entry.metadata
                requeued += 1
        return requeued

    def get(self, fingerprint: str) -> ErrorEntry | None:
        """Return a copy of the resident entry for ``fingerprint``, if any."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            return entry.copy() if entry is not None else None

    def pending_occurrences(self) -> int:
        with self._lock:
            return sum(entry.count for entry in self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
