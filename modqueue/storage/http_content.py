"""HTTP client for a remote content owner.

Talks to a content service that exposes::

    GET   /clips/{id}      -> clip record
    PATCH /clips/{id}      {"status": ...}
    GET   /profiles/{id}   -> profile record
    PATCH /profiles/{id}   {"status": ...}

404 becomes :class:`~modqueue.errors.NotFound`; any other HTTP error,
connection failure or timeout becomes :class:`~modqueue.errors.TransientError`.
Nothing is retried.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from modqueue.errors import NotFound, TransientError
from modqueue.models.item import ClipRecord, ClipStatus, ProfileRecord, ProfileStatus

logger = logging.getLogger(__name__)


class HttpContentStore:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._timeout = timeout
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, path: str, timeout: Optional[float], **kwargs: Any) -> dict[str, Any]:
        wait = self._timeout if timeout is None else timeout
        try:
            resp = self._client.request(method, path, timeout=wait, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                raise NotFound(f"{path.strip('/').replace('/', ' ')} not found") from exc
            raise TransientError(
                f"Content service error: {exc.response.status_code}",
                details={"path": path},
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransientError(f"Content service timed out after {wait}s", details={"path": path}) from exc
        except httpx.RequestError as exc:
            raise TransientError(f"Failed to reach content service: {exc}", details={"path": path}) from exc
        if not resp.content:
            return {}
        data = resp.json()
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # ContentStore
    # ------------------------------------------------------------------

    def get_clip(self, clip_id: str, timeout: Optional[float] = None) -> ClipRecord:
        d = self._call("GET", f"/clips/{clip_id}", timeout)
        return ClipRecord(
            id=str(d.get("id", clip_id)),
            status=d.get("status", "live"),
            title=d.get("title") or "",
            profile_id=d.get("profile_id"),
            reactions=d.get("reactions") or {},
            listens_count=int(d.get("listens_count") or 0),
        )

    def get_profile(self, profile_id: str, timeout: Optional[float] = None) -> ProfileRecord:
        d = self._call("GET", f"/profiles/{profile_id}", timeout)
        return ProfileRecord(
            id=str(d.get("id", profile_id)),
            status=d.get("status", "active"),
            handle=d.get("handle") or "",
        )

    def set_clip_status(
        self, clip_id: str, status: ClipStatus, timeout: Optional[float] = None
    ) -> ClipStatus:
        previous = self.get_clip(clip_id, timeout).status
        status = ClipStatus(status)
        self._call("PATCH", f"/clips/{clip_id}", timeout, json={"status": status.value})
        logger.info("Clip %s: %s -> %s (remote)", clip_id, previous.value, status.value)
        return previous

    def set_profile_status(
        self, profile_id: str, status: ProfileStatus, timeout: Optional[float] = None
    ) -> ProfileStatus:
        previous = self.get_profile(profile_id, timeout).status
        status = ProfileStatus(status)
        self._call("PATCH", f"/profiles/{profile_id}", timeout, json={"status": status.value})
        logger.info("Profile %s: %s -> %s (remote)", profile_id, previous.value, status.value)
        return previous
