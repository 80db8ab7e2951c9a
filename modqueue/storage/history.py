"""Moderation history queries.

Every workflow action is written to the item store's history alongside the
change it describes.  This module filters and exports those entries.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import asdict
from typing import Optional

from modqueue.models.item import HistoryEntry
from modqueue.storage.item_store import ItemStore


class ModerationHistory:
    """Read-only view over the audited workflow actions."""

    def __init__(self, store: ItemStore) -> None:
        self._store = store

    def get_events(
        self,
        *,
        item_type: Optional[str] = None,
        item_id: Optional[str] = None,
        actor: Optional[str] = None,
        action: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 200,
        timeout: Optional[float] = None,
    ) -> list[HistoryEntry]:
        """Return filtered history entries, newest first."""
        entries = self._store.history(timeout=timeout)

        if item_type:
            entries = [e for e in entries if e.item_type == item_type]
        if item_id:
            entries = [e for e in entries if e.item_id == item_id]
        if actor:
            entries = [e for e in entries if e.actor == actor]
        if action:
            entries = [e for e in entries if e.action == action]
        if start_date:
            entries = [e for e in entries if e.timestamp >= start_date]
        if end_date:
            entries = [e for e in entries if e.timestamp <= end_date]

        # Stable sort keeps insertion order for entries written in one commit.
        entries = list(reversed(entries))
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def for_item(self, item_type: str, item_id: str, timeout: Optional[float] = None) -> list[HistoryEntry]:
        return self.get_events(item_type=item_type, item_id=item_id, limit=10_000, timeout=timeout)

    def export_events(self, fmt: str = "json", **filters) -> str:
        """Export history entries as ``json`` or ``csv``."""
        filters.setdefault("limit", 10_000)
        entries = self.get_events(**filters)

        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(
                ["id", "timestamp", "item_type", "item_id", "action", "actor", "previous_value", "new_value"]
            )
            for e in entries:
                writer.writerow(
                    [e.id, e.timestamp, e.item_type, e.item_id, e.action, e.actor,
                     e.previous_value or "", e.new_value or ""]
                )
            return buf.getvalue()

        return json.dumps([asdict(e) for e in entries], indent=2)
