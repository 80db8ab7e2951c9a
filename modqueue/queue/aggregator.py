"""Queue aggregator -- merges flags and reports into one ordered, filtered view.

The aggregator never deduplicates across kinds: a clip with one flag and one
report shows up once in each sequence, so reviewers see provenance
distinctly.  Subject-level deduplication belongs to the bulk coordinator.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from modqueue.models.item import (
    ItemKind,
    ModerationItem,
    RiskLevel,
    Source,
    SubjectKind,
    WorkflowState,
)
from modqueue.queue.scorer import Score, score_population, subject_signals


class SortKey(str, Enum):
    priority = "priority"
    newest = "newest"
    oldest = "oldest"


@dataclass
class QueueFilters:
    """Optional predicates; ``None`` means "don't filter on this"."""

    risk_level: Optional[RiskLevel] = None
    source: Optional[Source] = None
    subject_kind: Optional[SubjectKind] = None
    workflow_state: Optional[WorkflowState] = None
    search: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.risk_level, str):
            self.risk_level = RiskLevel(self.risk_level)
        if isinstance(self.source, str):
            self.source = Source(self.source)
        if isinstance(self.subject_kind, str):
            self.subject_kind = SubjectKind(self.subject_kind)
        if isinstance(self.workflow_state, str):
            self.workflow_state = WorkflowState(self.workflow_state)
        self.search = (self.search or "").strip()

    def matches(self, item: ModerationItem, score: Score) -> bool:
        if self.risk_level is not None and score.risk_level is not self.risk_level:
            return False
        if self.source is not None and item.source is not self.source:
            return False
        if self.subject_kind is not None and item.subject.kind is not self.subject_kind:
            return False
        if self.workflow_state is not None and item.workflow_state is not self.workflow_state:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [*item.reasons, item.details]
            if not any(needle in text.lower() for text in haystack if text):
                return False
        return True


@dataclass
class QueueEntry:
    item: ModerationItem
    risk: float
    risk_level: RiskLevel
    priority: int
    related_item_ids: list[str] = field(default_factory=list)  # "kind:id" of siblings


@dataclass
class QueueView:
    flags: list[QueueEntry] = field(default_factory=list)
    reports: list[QueueEntry] = field(default_factory=list)


def _sort_key(sort_by: SortKey):
    def key(entry: QueueEntry):
        created = entry.item.created().timestamp()
        if sort_by is SortKey.priority:
            return (-entry.priority, -created, entry.item.id)
        if sort_by is SortKey.newest:
            return (-created, entry.item.id)
        return (created, entry.item.id)

    return key


def build_queue(
    items: Iterable[ModerationItem],
    now: datetime,
    sort_by: SortKey | str = SortKey.priority,
    filters: Optional[QueueFilters] = None,
    backlog_age_hours: float = 24.0,
) -> QueueView:
    """Score, filter and sort the item population into flag and report queues.

    Scores are computed over the whole population before filtering so that a
    filter never changes another item's co-occurrence multiplier.
    """
    sort_by = SortKey(sort_by)
    filters = filters or QueueFilters()
    population = list(items)
    signals = subject_signals(population)
    scores = score_population(population, now, backlog_age_hours, signals=signals)

    by_subject: dict[str, list[str]] = defaultdict(list)
    for item in population:
        by_subject[item.subject.key].append(item.key)

    view = QueueView()
    for item in population:
        score = scores[item.key]
        if not filters.matches(item, score):
            continue
        entry = QueueEntry(
            item=item,
            risk=score.risk,
            risk_level=score.risk_level,
            priority=score.priority,
            related_item_ids=[k for k in by_subject[item.subject.key] if k != item.key],
        )
        if item.kind is ItemKind.flag:
            view.flags.append(entry)
        else:
            view.reports.append(entry)

    key = _sort_key(sort_by)
    view.flags.sort(key=key)
    view.reports.sort(key=key)
    return view
