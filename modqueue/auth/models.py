"""Auth domain models: roles, reviewers, and the per-call session value."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    """Role hierarchy: admin > reviewer > viewer."""

    admin = "admin"
    reviewer = "reviewer"
    viewer = "viewer"

    @property
    def level(self) -> int:
        """Return numeric level for comparison (higher = more privileges)."""
        return {
            Role.admin: 30,
            Role.reviewer: 20,
            Role.viewer: 10,
        }[self]


@dataclass
class Reviewer:
    """A profile allowed to work the moderation queue."""

    id: str
    handle: str
    role: Role = Role.reviewer
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        if isinstance(self.role, str):
            self.role = Role(self.role)


@dataclass(frozen=True)
class Session:
    """Identity of the caller, passed explicitly into every engine call."""

    reviewer_id: str
    role: Role
    device_id: str = ""

    @property
    def actor(self) -> str:
        return self.reviewer_id
