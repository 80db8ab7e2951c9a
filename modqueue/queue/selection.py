"""Reviewer selection value object.

A selection of flag and report ids lives with the caller (UI, CLI); the engine
never holds one.  Every operation returns a new ``Selection``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from modqueue.models.item import ItemKind


@dataclass(frozen=True)
class Selection:
    flag_ids: frozenset[str] = frozenset()
    report_ids: frozenset[str] = frozenset()

    def _ids(self, kind: ItemKind) -> frozenset[str]:
        return self.flag_ids if kind is ItemKind.flag else self.report_ids

    def _with(self, kind: ItemKind, ids: frozenset[str]) -> Selection:
        if kind is ItemKind.flag:
            return Selection(flag_ids=ids, report_ids=self.report_ids)
        return Selection(flag_ids=self.flag_ids, report_ids=ids)

    def add(self, kind: ItemKind | str, item_id: str) -> Selection:
        kind = ItemKind(kind)
        return self._with(kind, self._ids(kind) | {item_id})

    def remove(self, kind: ItemKind | str, item_id: str) -> Selection:
        kind = ItemKind(kind)
        return self._with(kind, self._ids(kind) - {item_id})

    def toggle(self, kind: ItemKind | str, item_id: str) -> Selection:
        kind = ItemKind(kind)
        if item_id in self._ids(kind):
            return self.remove(kind, item_id)
        return self.add(kind, item_id)

    def select_all(self, kind: ItemKind | str, item_ids: Iterable[str]) -> Selection:
        kind = ItemKind(kind)
        return self._with(kind, self._ids(kind) | frozenset(item_ids))

    def clear(self, kind: ItemKind | str | None = None) -> Selection:
        if kind is None:
            return Selection()
        return self._with(ItemKind(kind), frozenset())

    def contains(self, kind: ItemKind | str, item_id: str) -> bool:
        return item_id in self._ids(ItemKind(kind))

    @property
    def is_empty(self) -> bool:
        return not self.flag_ids and not self.report_ids

    def __len__(self) -> int:
        return len(self.flag_ids) + len(self.report_ids)
