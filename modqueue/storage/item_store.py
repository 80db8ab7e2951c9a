"""File-based JSON storage for moderation items, their history and notifications.

Everything lives in one document (``~/.modqueue/items.json``) so a workflow
mutation and its history entries commit together.  Writes are atomic
(temp file + rename).  A transaction works on a snapshot; at commit it takes
the cross-process file lock, re-reads the document and checks that every item
it changed still has the version it read.  A stale read-modify-write therefore
fails with :class:`~modqueue.errors.Conflict` even when the newer commit came
from another process.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from modqueue.errors import Conflict, NotFound, TransientError, ValidationError
from modqueue.models.item import (
    IMMUTABLE_FIELDS,
    HistoryEntry,
    ItemKind,
    ModerationItem,
    Notification,
    item_key,
    parse_timestamp,
)
from modqueue.storage.filelock import file_lock

logger = logging.getLogger(__name__)


def _empty_doc() -> dict[str, Any]:
    return {"items": {}, "history": [], "notifications": []}


class ItemTransaction:
    """Working copy of the store document, committed as a unit."""

    def __init__(self, doc: dict[str, Any], now: datetime) -> None:
        self._doc = doc
        self._now = now
        self._base_versions = {key: int(d.get("version", 0)) for key, d in doc["items"].items()}
        self.changed: list[ModerationItem] = []
        self._history: list[dict[str, Any]] = []
        self._notifications: list[dict[str, Any]] = []
        self._read_marks: list[tuple[str, str]] = []

    @property
    def now(self) -> datetime:
        return self._now

    @property
    def has_changes(self) -> bool:
        return bool(self.changed or self._history or self._notifications or self._read_marks)

    def find(self, kind: ItemKind | str, item_id: str) -> Optional[ModerationItem]:
        raw = self._doc["items"].get(item_key(kind, item_id))
        return ModerationItem.from_dict(raw) if raw is not None else None

    def get(self, kind: ItemKind | str, item_id: str) -> ModerationItem:
        item = self.find(kind, item_id)
        if item is None:
            raise NotFound(f"{ItemKind(kind).value.capitalize()} '{item_id}' not found")
        return item

    def items(self) -> list[ModerationItem]:
        return [ModerationItem.from_dict(d) for d in self._doc["items"].values()]

    def update(self, item: ModerationItem, expected_version: int) -> ModerationItem:
        """Write ``item`` back if the stored version still equals ``expected_version``."""
        current = self._doc["items"].get(item.key)
        if current is None:
            raise NotFound(f"{item.kind.value.capitalize()} '{item.id}' not found")
        if int(current.get("version", 0)) != expected_version:
            raise Conflict(
                f"{item.kind.value.capitalize()} '{item.id}' was modified by someone else",
                details={"expected_version": expected_version, "current_version": current.get("version", 0)},
            )
        new = item.to_dict()
        for name in IMMUTABLE_FIELDS:
            if new[name] != current.get(name):
                raise ValidationError(f"Field '{name}' cannot be changed after ingestion")
        new["version"] = expected_version + 1
        self._doc["items"][item.key] = new
        stored = ModerationItem.from_dict(new)
        self.changed.append(stored)
        return stored

    def record(
        self,
        item: ModerationItem,
        action: str,
        actor: str,
        previous_value: Optional[str] = None,
        new_value: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=self._now.isoformat(),
            item_type=item.kind.value,
            item_id=item.id,
            action=action,
            actor=actor,
            previous_value=previous_value,
            new_value=new_value,
            notes=notes,
        )
        self._doc["history"].append(asdict(entry))
        self._history.append(asdict(entry))
        return entry

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notifications(self) -> list[Notification]:
        return [Notification.from_dict(d) for d in self._doc["notifications"]]

    def notify(
        self, notification: Notification, within: Optional[timedelta] = None
    ) -> Optional[Notification]:
        """Queue ``notification`` unless an unread one for the same item exists.

        With ``within``, only unread notifications newer than that window count
        as duplicates.  Returns ``None`` when the notification was suppressed.
        """
        for existing in self.notifications():
            if (
                existing.type is notification.type
                and existing.item_key == notification.item_key
                and existing.recipient == notification.recipient
                and not existing.read_by
                and (within is None or parse_timestamp(existing.created_at) > self._now - within)
            ):
                return None
        data = notification.to_dict()
        self._doc["notifications"].append(data)
        self._notifications.append(data)
        return notification

    def mark_read(self, notification_ids: Iterable[str], reviewer_id: str) -> int:
        wanted = set(notification_ids)
        marked = 0
        for d in self._doc["notifications"]:
            if d["id"] in wanted and reviewer_id not in d.setdefault("read_by", []):
                d["read_by"].append(reviewer_id)
                self._read_marks.append((d["id"], reviewer_id))
                marked += 1
        return marked

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def merge_into(self, fresh: dict[str, Any]) -> None:
        """Apply this transaction's changes on top of the latest stored document."""
        for item in self.changed:
            current = fresh["items"].get(item.key)
            stored_version = None if current is None else int(current.get("version", 0))
            if stored_version != self._base_versions.get(item.key):
                raise Conflict(
                    f"{item.kind.value.capitalize()} '{item.id}' was modified by someone else",
                    details={
                        "expected_version": self._base_versions.get(item.key),
                        "current_version": stored_version,
                    },
                )
        for key in {item.key for item in self.changed}:
            fresh["items"][key] = self._doc["items"][key]
        fresh["history"].extend(self._history)
        fresh["notifications"].extend(self._notifications)
        if self._read_marks:
            by_id = {d["id"]: d for d in fresh["notifications"]}
            for notification_id, reviewer_id in self._read_marks:
                d = by_id.get(notification_id)
                if d is not None and reviewer_id not in d.setdefault("read_by", []):
                    d["read_by"].append(reviewer_id)


class ItemStore:
    """Moderation item store.

    Storage path: ``~/.modqueue/`` with:
    - ``items.json`` -- ``{"items": {"kind:id": item}, "history": [entry],
      "notifications": [notification]}``
    - ``.items.lock`` -- cross-process commit lock
    """

    def __init__(self, base_dir: Optional[str | Path] = None, timeout: float = 5.0) -> None:
        if base_dir is None:
            self._base = Path.home() / ".modqueue"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = self._base / "items.json"
        self._lock_path = self._base / ".items.lock"
        self._timeout = timeout
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wait(self, timeout: Optional[float]) -> float:
        return self._timeout if timeout is None else timeout

    @contextmanager
    def _locked(self, timeout: Optional[float]) -> Iterator[None]:
        wait = self._wait(timeout)
        if not self._lock.acquire(timeout=wait):
            raise TransientError(f"Timed out after {wait}s waiting for the item store")
        try:
            yield
        finally:
            self._lock.release()

    def _committing(self, timeout: Optional[float]):
        return file_lock(self._lock_path, self._wait(timeout), "item store")

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return _empty_doc()
        try:
            data = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            raise TransientError(f"Item store unreadable: {exc}") from exc
        for key, default in _empty_doc().items():
            data.setdefault(key, default)
        return data

    def _write(self, doc: dict[str, Any]) -> None:
        try:
            fd, tmp = tempfile.mkstemp(dir=self._base, prefix=".items-", suffix=".json")
            with os.fdopen(fd, "w") as fh:
                json.dump(doc, fh, indent=2, default=str)
            os.replace(tmp, self._path)
        except OSError as exc:
            raise TransientError(f"Item store write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(
        self, kind: ItemKind | str, item_id: str, timeout: Optional[float] = None
    ) -> Optional[ModerationItem]:
        with self._locked(timeout):
            raw = self._read()["items"].get(item_key(kind, item_id))
        return ModerationItem.from_dict(raw) if raw is not None else None

    def get(self, kind: ItemKind | str, item_id: str, timeout: Optional[float] = None) -> ModerationItem:
        item = self.find(kind, item_id, timeout)
        if item is None:
            raise NotFound(f"{ItemKind(kind).value.capitalize()} '{item_id}' not found")
        return item

    def list_items(self, timeout: Optional[float] = None) -> list[ModerationItem]:
        with self._locked(timeout):
            doc = self._read()
        return [ModerationItem.from_dict(d) for d in doc["items"].values()]

    def history(self, timeout: Optional[float] = None) -> list[HistoryEntry]:
        with self._locked(timeout):
            doc = self._read()
        return [HistoryEntry(**d) for d in doc["history"]]

    def notifications(self, timeout: Optional[float] = None) -> list[Notification]:
        with self._locked(timeout):
            doc = self._read()
        return [Notification.from_dict(d) for d in doc["notifications"]]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_items(
        self,
        items: list[ModerationItem],
        notifications: Iterable[Notification] = (),
        timeout: Optional[float] = None,
    ) -> int:
        """Insert newly ingested items. Existing keys are left untouched.

        ``notifications`` are stored only for items actually inserted.
        Returns the number of items inserted.
        """
        inserted: set[str] = set()
        with self._locked(timeout), self._committing(timeout):
            doc = self._read()
            for item in items:
                if item.key in doc["items"]:
                    continue
                doc["items"][item.key] = item.to_dict()
                inserted.add(item.key)
            if inserted:
                doc["notifications"].extend(
                    n.to_dict() for n in notifications if n.item_key in inserted
                )
                self._write(doc)
        return len(inserted)

    @contextmanager
    def transaction(
        self, timeout: Optional[float] = None, now: Optional[datetime] = None
    ) -> Iterator[ItemTransaction]:
        """Hold the store for one read-modify-write unit.

        Changes are written only if the block exits cleanly; on any exception
        the working copy is discarded.
        """
        with self._locked(timeout):
            txn = ItemTransaction(self._read(), now or datetime.now(timezone.utc))
            yield txn
            if txn.has_changes:
                with self._committing(timeout):
                    fresh = self._read()
                    txn.merge_into(fresh)
                    self._write(fresh)
                logger.debug("Committed %d item change(s)", len(txn.changed))
