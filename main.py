# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Error tracker service: operator API plus a demo capture endpoint."""

import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from panel_error_tracker import ErrorTrackerConfig, __version__, create_error_tracker
from panel_error_tracker.api import ErrorTrackingMiddleware, create_api_router

config = ErrorTrackerConfig.from_yaml_file(
    os.getenv("ERROR_TRACKER_CONFIG_FILE", "error_tracker.yaml")
)
tracker = create_error_tracker(config)
logger = tracker.logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage tracker lifecycle."""
    # Startup
    logger.info("Starting error tracker service...", store_type=config.store_type)
    tracker.start()
    logger.info("Error tracker service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down error tracker service...")
    tracker.stop()


app = FastAPI(
    title="Error Tracker Service",
    version=__version__,
    description="Fingerprint-deduplicated error aggregation and reporting",
    lifespan=lifespan,
)
app.include_router(create_api_router(tracker, logger))
app.add_middleware(ErrorTrackingMiddleware, tracker=tracker)


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "error-tracker",
        "version": __version__,
        "buffered_entries": len(tracker.buffer),
        "flush_state": tracker.scheduler.state.value,
        "scheduler_running": tracker.scheduler.is_running(),
    }


if __name__ == "__main__":
    logger.info("Starting error tracker", port=config.http_port)
    uvicorn.run(app, host="0.0.0.0", port=config.http_port)
