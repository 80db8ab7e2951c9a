"""Pydantic models for the moderation API.

The dispatch body is ``{"action": ..., **params}``; params are whatever the
action needs, so the request model keeps unknown fields.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModerationRequest(BaseModel):
    """Body of ``POST /api/moderation``."""

    model_config = ConfigDict(extra="allow")

    action: Optional[str] = None

    @property
    def params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class ModerationResponse(BaseModel):
    data: Any = None


class ErrorResponse(BaseModel):
    """Mirrors modqueue.errors.ModerationError.to_dict()."""

    error: str
    code: str
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = ""
