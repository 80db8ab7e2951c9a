"""Auth middleware -- FastAPI dependencies for resolving the caller's session.

Reviewers authenticate with an opaque device credential in the
``X-Device-Id`` header.  An unknown or missing credential resolves to no
session; the engine then answers 403 before running any action.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header

from modqueue.auth.models import Session
from modqueue.auth.store import ReviewerStore
from modqueue.config import load_settings

# Shared store instance
_store: Optional[ReviewerStore] = None


def get_store() -> ReviewerStore:
    """Return the singleton ReviewerStore instance."""
    global _store
    if _store is None:
        _store = ReviewerStore(load_settings().data_path / "auth")
    return _store


def set_store(store: Optional[ReviewerStore]) -> None:
    global _store
    _store = store


async def get_session(
    x_device_id: Optional[str] = Header(None, alias="X-Device-Id"),
) -> Optional[Session]:
    """FastAPI dependency mapping the device credential to a session, or None."""
    if not x_device_id:
        return None
    return get_store().authenticate(x_device_id)
