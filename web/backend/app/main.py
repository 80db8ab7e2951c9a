"""FastAPI application for the modqueue moderation service.

Exposes the engine's action-dispatch surface:
- ``POST /api/moderation`` with ``{"action": ..., **params}`` and the
  ``X-Device-Id`` credential header
- ``GET /health`` for liveness checks
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modqueue import __version__
from modqueue.errors import ModerationError
from modqueue.logging_config import configure_logging

from web.backend.app.models.api import HealthResponse
from web.backend.app.routers import moderation

configure_logging(os.environ.get("MODQUEUE_LOG_LEVEL", "INFO"))
logger = logging.getLogger("modqueue.web")

app = FastAPI(
    title="modqueue API",
    description=(
        "Content-moderation workflow engine. "
        "Merges flags and reports into one review queue, enforces the reviewer "
        "workflow, and runs atomic bulk remediation."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


@app.exception_handler(ModerationError)
async def moderation_error_handler(request: Request, exc: ModerationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(moderation.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "modqueue API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"], response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)
