"""Moderation router -- the single action-dispatch endpoint."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from modqueue.auth.models import Session
from modqueue.config import load_settings
from modqueue.engine import ModerationEngine

from web.backend.app.middleware.auth import get_session
from web.backend.app.models.api import ErrorResponse, ModerationRequest, ModerationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["moderation"])

_engine: Optional[ModerationEngine] = None


def get_engine() -> ModerationEngine:
    """Return the singleton engine built from the environment settings."""
    global _engine
    if _engine is None:
        _engine = ModerationEngine(load_settings())
    return _engine


def set_engine(engine: Optional[ModerationEngine]) -> None:
    global _engine
    _engine = engine


@router.post(
    "/moderation",
    response_model=ModerationResponse,
    responses={code: {"model": ErrorResponse} for code in (400, 403, 404, 409, 502, 503)},
)
def moderation(
    request: ModerationRequest,
    session: Optional[Session] = Depends(get_session),
    engine: ModerationEngine = Depends(get_engine),
) -> ModerationResponse:
    """Run one moderation action.

    Errors are raised as ``ModerationError`` and rendered by the app's
    exception handler as ``{"error", "code"}`` with the mapped status.
    """
    data = engine.dispatch(request.action, request.params, session)
    logger.debug("Action %s by %s ok", request.action, session.actor if session else "-")
    return ModerationResponse(data=data)
