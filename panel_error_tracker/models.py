# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Data models for tracked errors and their aggregate statistics."""

import random
import string
import time
import traceback
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Closed set of error categories."""

    RUNTIME = "runtime"
    DATABASE = "database"
    NETWORK = "network"
    AUTH = "auth"
    VALIDATION = "validation"
    PAYMENT = "payment"
    EXTERNAL = "external"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Error severity, ordered from LOW to CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_entry_id() -> str:
    """Generate an entry id of the form ``err_<epoch-ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"err_{int(time.time() * 1000)}_{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ErrorInfo:
    """Normalized view of an error: class name, message and formatted stack.

    Attributes:
        name: Exception class name (e.g. "ValueError")
        message: Error message text
        stack: Newline-delimited traceback, or None when unavailable
        call_site: Innermost frame as ``File "...", line N, in fn``; derived
            from ``stack`` when None
    """

    name: str
    message: str
    stack: str | None = None
    call_site: str | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        """Build an ErrorInfo from a Python exception.

        The stack and call site are only populated when the exception has
        been raised and carries a traceback. The call site is the frame that
        raised it, not the frame that caught it.
        """
        stack = None
        site = None
        if error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            frame = traceback.extract_tb(error.__traceback__)[-1]
            site = f'File "{frame.filename}", line {frame.lineno}, in {frame.name}'
        return cls(name=type(error).__name__, message=str(error), stack=stack, call_site=site)

    @classmethod
    def coerce(cls, error: "BaseException | ErrorInfo") -> "ErrorInfo":
        if isinstance(error, ErrorInfo):
            return error
        return cls.from_exception(error)


@dataclass
class CaptureOptions:
    """Explicit overrides supplied by the caller of ``capture()``."""

    category: ErrorCategory | None = None
    severity: ErrorSeverity | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class RequestInfo:
    """Request-shaped input for ``capture_request()``."""

    url: str | None = None
    method: str | None = None
    headers: dict[str, str] | None = None
    body: Any = None
    query: dict[str, Any] | None = None
    ip: str | None = None
    user_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RequestInfo":
        return cls(
            url=data.get("url"),
            method=data.get("method"),
            headers=data.get("headers"),
            body=data.get("body"),
            query=data.get("query"),
            ip=data.get("ip"),
            user_id=data.get("user_id", data.get("userId")),
        )

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        if not self.headers:
            return None
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


@dataclass
class ErrorEntry:
    """Aggregate record for one fingerprint.

    While buffered the entry is mutable: ``count`` grows, narrative fields
    (message, stack, occurred_at) are overwritten by the latest occurrence,
    and ``context`` is shallow-merged.
    """

    id: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    fingerprint: str
    occurred_at: datetime
    stack: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    count: int = 1
    resolved: bool = False
    resolved_at: datetime | None = None
    metadata: dict[str, Any] | None = None

    def merge_occurrence(self, other: "ErrorEntry") -> None:
        """Fold a newer occurrence into this entry."""
        self.count += other.count
        self.occurred_at = other.occurred_at
        self.message = other.message
        self.stack = other.stack
        self.context = {**self.context, **other.context}
        if other.metadata is not None:
            self.metadata = other.metadata

    def copy(self) -> "ErrorEntry":
        """Copy the entry and its top-level context and metadata mappings.

        Context values themselves are shared, so values that cannot be
        deep-copied (locks, clients, sockets) do not break capture.
        """
        return replace(
            self,
            context=dict(self.context),
            metadata=dict(self.metadata) if self.metadata is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary with enum values as strings."""
        data = asdict(self)
        data["category"] = self.category.value
        data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ErrorEntry":
        """Create an entry from a stored document, ignoring unknown keys."""
        return cls(
            id=data["id"],
            message=data.get("message", ""),
            stack=data.get("stack"),
            category=ErrorCategory(data.get("category", ErrorCategory.UNKNOWN.value)),
            severity=ErrorSeverity(data.get("severity", ErrorSeverity.MEDIUM.value)),
            context=dict(data.get("context") or {}),
            fingerprint=data["fingerprint"],
            occurred_at=_as_aware(data["occurred_at"]),
            count=int(data.get("count", 1)),
            resolved=bool(data.get("resolved", False)),
            resolved_at=_as_aware(data["resolved_at"]) if data.get("resolved_at") else None,
            metadata=data.get("metadata"),
        )


def _as_aware(value: datetime) -> datetime:
    # BSON datetimes come back naive (UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class ErrorQuery:
    """Filter understood by every persistence gateway.

    Attributes:
        category: Exact category match
        severity: Exact severity match
        resolved: Resolved flag match
        search: Case-insensitive substring of the message
        occurred_since: Only entries with occurred_at >= this instant
        resolved_before: Only entries with resolved_at < this instant
    """

    category: ErrorCategory | None = None
    severity: ErrorSeverity | None = None
    resolved: bool | None = None
    search: str | None = None
    occurred_since: datetime | None = None
    resolved_before: datetime | None = None

    def matches(self, entry: ErrorEntry) -> bool:
        if self.category is not None and entry.category != self.category:
            return False
        if self.severity is not None and entry.severity != self.severity:
            return False
        if self.resolved is not None and entry.resolved != self.resolved:
            return False
        if self.search and self.search.lower() not in entry.message.lower():
            return False
        if self.occurred_since is not None and entry.occurred_at < self.occurred_since:
            return False
        if self.resolved_before is not None:
            if entry.resolved_at is None or entry.resolved_at >= self.resolved_before:
                return False
        return True


@dataclass
class ErrorPage:
    """One page of ``list()`` results."""

    errors: list[ErrorEntry]
    total: int
    page: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "errors": [e.to_dict() for e in self.errors],
            "total": self.total,
            "page": self.page,
            "total_pages": self.total_pages,
        }


@dataclass
class TopError:
    fingerprint: str
    message: str
    count: int
    last_occurred: datetime


@dataclass
class ErrorStats:
    """Operator-facing summary produced by the StatsAggregator."""

    total: int
    unresolved: int
    by_severity: dict[str, int]
    by_category: dict[str, int]
    last_24h: int
    top_errors: list[TopError]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
