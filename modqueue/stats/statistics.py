"""Statistics aggregator.

Stateless: every call recomputes from the item population it is handed.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from modqueue.models.item import (
    ItemKind,
    ModerationItem,
    RiskLevel,
    SubjectKind,
    WorkflowState,
    parse_timestamp,
)
from modqueue.queue.scorer import score_population

HIGH_RISK_LEVELS = frozenset({RiskLevel.high, RiskLevel.critical})


@dataclass
class ModerationStatistics:
    period_days: int
    reviewed_today: int = 0
    reviewed_in_period: int = 0
    avg_minutes_to_review: Optional[float] = None
    high_risk_pending: int = 0
    backlog_older_than_threshold: int = 0
    by_source: dict[str, int] = field(default_factory=dict)
    by_workflow_state: dict[str, int] = field(default_factory=dict)
    reports_by_subject_kind: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_statistics(
    items: Iterable[ModerationItem],
    now: datetime,
    period_days: int = 30,
    backlog_age_hours: float = 24.0,
) -> ModerationStatistics:
    """Counters for the moderation dashboard.

    "Today" is the UTC calendar day of ``now``.  Review time is measured from
    ``created_at`` to ``reviewed_at`` for items reviewed within the period.
    """
    population = list(items)
    scores = score_population(population, now, backlog_age_hours)
    stats = ModerationStatistics(period_days=period_days)

    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    period_start = now - timedelta(days=period_days)
    backlog_cutoff = now - timedelta(hours=backlog_age_hours)

    by_source: Counter[str] = Counter()
    by_state: Counter[str] = Counter({state.value: 0 for state in WorkflowState})
    by_subject: Counter[str] = Counter({kind.value: 0 for kind in SubjectKind})
    review_minutes: list[float] = []

    for item in population:
        by_source[item.source.value] += 1
        by_state[item.workflow_state.value] += 1
        if item.kind is ItemKind.report:
            by_subject[item.subject.kind.value] += 1

        if item.is_open and scores[item.key].risk_level in HIGH_RISK_LEVELS:
            stats.high_risk_pending += 1
        if item.is_open and item.created() < backlog_cutoff:
            stats.backlog_older_than_threshold += 1

        if item.workflow_state.is_terminal and item.reviewed_at:
            reviewed = parse_timestamp(item.reviewed_at)
            if reviewed >= day_start:
                stats.reviewed_today += 1
            if reviewed >= period_start:
                stats.reviewed_in_period += 1
                review_minutes.append(max(0.0, (reviewed - item.created()).total_seconds() / 60))

    if review_minutes:
        stats.avg_minutes_to_review = round(sum(review_minutes) / len(review_minutes), 1)
    stats.by_source = dict(by_source)
    stats.by_workflow_state = dict(by_state)
    stats.reports_by_subject_kind = dict(by_subject)
    return stats
