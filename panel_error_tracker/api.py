# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""REST API for operators and request middleware for error capture."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .gateway import PersistenceError
from .logger import Logger
from .models import ErrorCategory, ErrorEntry, ErrorSeverity, RequestInfo
from .tracker import ErrorTracker


class ErrorEntryModel(BaseModel):
    """Persisted error entry."""

    id: str
    fingerprint: str
    message: str
    stack: Optional[str] = None
    category: ErrorCategory
    severity: ErrorSeverity
    context: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
    count: int
    resolved: bool
    resolved_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None

    @classmethod
    def from_entry(cls, entry: ErrorEntry) -> "ErrorEntryModel":
        return cls(**entry.to_dict())


class ErrorPageResponse(BaseModel):
    errors: list[ErrorEntryModel]
    total: int
    page: int
    total_pages: int


class TopErrorModel(BaseModel):
    fingerprint: str
    message: str
    count: int
    last_occurred: datetime


class ErrorStatsResponse(BaseModel):
    total: int
    unresolved: int
    by_severity: dict[str, int]
    by_category: dict[str, int]
    last_24h: int
    top_errors: list[TopErrorModel]


class ResolveResponse(BaseModel):
    fingerprint: str
    resolved: bool


class CleanupResponse(BaseModel):
    deleted: int
    older_than_days: int


class FlushResponse(BaseModel):
    persisted: int
    requeued: int
    ok: bool


def create_api_router(tracker: ErrorTracker, logger: Logger) -> APIRouter:
    """Create FastAPI router for error listing, statistics and resolution.

    Args:
        tracker: ErrorTracker instance
        logger: Logger instance

    Returns:
        APIRouter instance
    """
    router = APIRouter(prefix="/errors", tags=["errors"])

    @router.get("", response_model=ErrorPageResponse)
    def list_errors(
        category: Optional[ErrorCategory] = Query(None, description="Filter by category"),
        severity: Optional[ErrorSeverity] = Query(None, description="Filter by severity"),
        resolved: Optional[bool] = Query(None, description="Filter by resolved flag"),
        search: Optional[str] = Query(None, description="Case-insensitive message search"),
        page: int = Query(1, ge=1),
        limit: int = Query(tracker.config.default_page_size, ge=1, le=tracker.config.max_page_size),
    ):
        """List persisted errors, most recent first."""
        try:
            result = tracker.list(
                category=category,
                severity=severity,
                resolved=resolved,
                search=search,
                page=page,
                limit=limit,
            )
        except PersistenceError as e:
            logger.error("Failed to list errors", error=str(e))
            raise HTTPException(status_code=503, detail="Error store unavailable")

        return ErrorPageResponse(
            errors=[ErrorEntryModel.from_entry(e) for e in result.errors],
            total=result.total,
            page=result.page,
            total_pages=result.total_pages,
        )

    @router.get("/stats", response_model=ErrorStatsResponse)
    def get_stats():
        """Aggregate statistics over persisted errors."""
        try:
            stats = tracker.get_stats()
        except PersistenceError as e:
            logger.error("Failed to compute error stats", error=str(e))
            raise HTTPException(status_code=503, detail="Error store unavailable")
        return ErrorStatsResponse(**stats.to_dict())

    @router.post("/{fingerprint}/resolve", response_model=ResolveResponse)
    def resolve_error(fingerprint: str):
        """Mark an error resolved."""
        if not tracker.resolve(fingerprint):
            raise HTTPException(status_code=404, detail=f"Error {fingerprint} not found")
        logger.info("Error resolved", fingerprint=fingerprint)
        return ResolveResponse(fingerprint=fingerprint, resolved=True)

    @router.post("/{fingerprint}/unresolve", response_model=ResolveResponse)
    def unresolve_error(fingerprint: str):
        """Clear the resolved flag of an error."""
        if not tracker.unresolve(fingerprint):
            raise HTTPException(status_code=404, detail=f"Error {fingerprint} not found")
        logger.info("Error unresolved", fingerprint=fingerprint)
        return ResolveResponse(fingerprint=fingerprint, resolved=False)

    @router.post("/cleanup", response_model=CleanupResponse)
    def cleanup_errors(older_than_days: int = Query(tracker.config.retention_days, ge=0)):
        """Delete resolved errors older than the given number of days."""
        deleted = tracker.cleanup(older_than_days)
        return CleanupResponse(deleted=deleted, older_than_days=older_than_days)

    @router.post("/flush", response_model=FlushResponse)
    def flush_errors():
        """Flush buffered occurrences to the store immediately."""
        result = tracker.flush()
        return FlushResponse(persisted=result.persisted, requeued=result.requeued, ok=result.ok)

    return router


class ErrorTrackingMiddleware(BaseHTTPMiddleware):
    """Capture exceptions escaping request handlers.

    The exception is re-raised unchanged after capture so the application's
    own error handling still runs.
    """

    def __init__(self, app, tracker: ErrorTracker):
        super().__init__(app)
        self.tracker = tracker

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as error:
            # capture_request blocks while a critical capture flushes
            await run_in_threadpool(self.tracker.capture_request, error, request_info_from(request))
            raise


def request_info_from(request: Request) -> RequestInfo:
    """Build a RequestInfo from a Starlette request.

    The body is not read and the query string is kept out of ``url``; query
    parameters are captured separately so they can be sanitized.
    """
    return RequestInfo(
        url=request.url.path,
        method=request.method,
        headers=dict(request.headers),
        query=dict(request.query_params),
        ip=request.client.host if request.client else None,
        user_id=getattr(request.state, "user_id", None),
    )
