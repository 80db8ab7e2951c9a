"""Content-subject store -- the clips and profiles moderation acts upon.

The engine only ever reads a subject's status and asks for it to change.
:class:`ContentStore` is that boundary; :class:`JsonContentStore` is the
file-backed implementation used by the CLI, the web app and the tests.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Protocol

from modqueue.errors import NotFound, TransientError
from modqueue.models.item import ClipRecord, ClipStatus, ProfileRecord, ProfileStatus
from modqueue.storage.filelock import file_lock

logger = logging.getLogger(__name__)


class ContentStore(Protocol):
    """What the engine needs from the content owner.  Every call takes a timeout."""

    def get_clip(self, clip_id: str, timeout: Optional[float] = None) -> ClipRecord: ...

    def get_profile(self, profile_id: str, timeout: Optional[float] = None) -> ProfileRecord: ...

    def set_clip_status(
        self, clip_id: str, status: ClipStatus, timeout: Optional[float] = None
    ) -> ClipStatus:
        """Apply ``status`` and return the status it replaced."""
        ...

    def set_profile_status(
        self, profile_id: str, status: ProfileStatus, timeout: Optional[float] = None
    ) -> ProfileStatus:
        """Apply ``status`` and return the status it replaced."""
        ...


class JsonContentStore:
    """File-based content store.

    Storage path: ``~/.modqueue/`` with:
    - ``content.json`` -- ``{"clips": {id: clip}, "profiles": {id: profile}}``
    - ``.content.lock`` -- cross-process write lock

    Every status change is a read-modify-write under the file lock, so two
    processes sharing the directory never lose each other's updates.
    """

    def __init__(self, base_dir: Optional[str | Path] = None, timeout: float = 5.0) -> None:
        if base_dir is None:
            self._base = Path.home() / ".modqueue"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = self._base / "content.json"
        self._lock_path = self._base / ".content.lock"
        self._timeout = timeout
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self, timeout: Optional[float]) -> Iterator[None]:
        wait = self._timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            raise TransientError(f"Timed out after {wait}s waiting for the content store")
        try:
            yield
        finally:
            self._lock.release()

    def _committing(self, timeout: Optional[float]):
        return file_lock(self._lock_path, self._timeout if timeout is None else timeout, "content store")

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {"clips": {}, "profiles": {}}
        try:
            data = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            raise TransientError(f"Content store unreadable: {exc}") from exc
        data.setdefault("clips", {})
        data.setdefault("profiles", {})
        return data

    def _write(self, doc: dict[str, Any]) -> None:
        try:
            fd, tmp = tempfile.mkstemp(dir=self._base, prefix=".content-", suffix=".json")
            with os.fdopen(fd, "w") as fh:
                json.dump(doc, fh, indent=2, default=str)
            os.replace(tmp, self._path)
        except OSError as exc:
            raise TransientError(f"Content store write failed: {exc}") from exc

    @staticmethod
    def _clip_to_dict(clip: ClipRecord) -> dict:
        d = asdict(clip)
        d["status"] = clip.status.value
        return d

    @staticmethod
    def _profile_to_dict(profile: ProfileRecord) -> dict:
        d = asdict(profile)
        d["status"] = profile.status.value
        return d

    # ------------------------------------------------------------------
    # Seeding (ingestion only registers subjects it has not seen before)
    # ------------------------------------------------------------------

    def register(
        self,
        clips: Iterable[ClipRecord] = (),
        profiles: Iterable[ProfileRecord] = (),
        timeout: Optional[float] = None,
    ) -> int:
        """Add unknown subjects; known subjects keep their current status."""
        added = 0
        with self._locked(timeout), self._committing(timeout):
            doc = self._read()
            for clip in clips:
                if clip.id not in doc["clips"]:
                    doc["clips"][clip.id] = self._clip_to_dict(clip)
                    added += 1
            for profile in profiles:
                if profile.id not in doc["profiles"]:
                    doc["profiles"][profile.id] = self._profile_to_dict(profile)
                    added += 1
            if added:
                self._write(doc)
        return added

    # ------------------------------------------------------------------
    # ContentStore
    # ------------------------------------------------------------------

    def get_clip(self, clip_id: str, timeout: Optional[float] = None) -> ClipRecord:
        with self._locked(timeout):
            raw = self._read()["clips"].get(clip_id)
        if raw is None:
            raise NotFound(f"Clip '{clip_id}' not found")
        return ClipRecord(**raw)

    def get_profile(self, profile_id: str, timeout: Optional[float] = None) -> ProfileRecord:
        with self._locked(timeout):
            raw = self._read()["profiles"].get(profile_id)
        if raw is None:
            raise NotFound(f"Profile '{profile_id}' not found")
        return ProfileRecord(**raw)

    def set_clip_status(
        self, clip_id: str, status: ClipStatus, timeout: Optional[float] = None
    ) -> ClipStatus:
        with self._locked(timeout), self._committing(timeout):
            doc = self._read()
            raw = doc["clips"].get(clip_id)
            if raw is None:
                raise NotFound(f"Clip '{clip_id}' not found")
            previous = ClipStatus(raw.get("status", "live"))
            raw["status"] = ClipStatus(status).value
            self._write(doc)
        logger.info("Clip %s: %s -> %s", clip_id, previous.value, ClipStatus(status).value)
        return previous

    def set_profile_status(
        self, profile_id: str, status: ProfileStatus, timeout: Optional[float] = None
    ) -> ProfileStatus:
        with self._locked(timeout), self._committing(timeout):
            doc = self._read()
            raw = doc["profiles"].get(profile_id)
            if raw is None:
                raise NotFound(f"Profile '{profile_id}' not found")
            previous = ProfileStatus(raw.get("status", "active"))
            raw["status"] = ProfileStatus(status).value
            self._write(doc)
        logger.info("Profile %s: %s -> %s", profile_id, previous.value, ProfileStatus(status).value)
        return previous
