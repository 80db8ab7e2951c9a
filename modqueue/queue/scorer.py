"""Priority & risk scorer.

Derives a risk bucket and a sortable priority for every moderation item.  The
score is a pure function of the item's risk, its source, how long it has been
open, and how many other items point at the same subject, so it is recomputed
on every queue read instead of being trusted from storage.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

from modqueue.models.item import ItemKind, ModerationItem, RiskLevel, Source

# Risk thresholds: inclusive lower bound of each bucket above ``low``.
MEDIUM_THRESHOLD = 3.0
HIGH_THRESHOLD = 7.0
CRITICAL_THRESHOLD = 9.0

BUCKET_WEIGHTS: dict[RiskLevel, int] = {
    RiskLevel.low: 10,
    RiskLevel.medium: 30,
    RiskLevel.high: 60,
    RiskLevel.critical: 90,
}

SOURCE_WEIGHTS: dict[Source, int] = {
    Source.ai: 0,
    Source.community: 5,
}

# Reports carry no classifier score; each extra report on a subject adds risk.
REPORT_BASE_RISK = 4.0
REPORT_RISK_STEP = 1.0
MAX_RISK = 10.0

# Open items gain AGE_BOOST_STEP per elapsed backlog period, up to AGE_BOOST_CAP.
AGE_BOOST_STEP = 10
AGE_BOOST_CAP = 40

CROSS_KIND_MULTIPLIER = 1.5
SAME_KIND_MULTIPLIER = 1.25


@dataclass(frozen=True)
class SubjectSignals:
    """How many flags and reports reference one subject."""

    flag_count: int = 0
    report_count: int = 0

    @property
    def total(self) -> int:
        return self.flag_count + self.report_count

    @property
    def multiplier(self) -> float:
        if self.flag_count and self.report_count:
            return CROSS_KIND_MULTIPLIER
        if self.total > 1:
            return SAME_KIND_MULTIPLIER
        return 1.0


@dataclass(frozen=True)
class Score:
    risk: float
    risk_level: RiskLevel
    priority: int


def risk_level(risk: float) -> RiskLevel:
    """Bucket a risk value; lower bounds inclusive, top bucket closed above."""
    if risk >= CRITICAL_THRESHOLD:
        return RiskLevel.critical
    if risk >= HIGH_THRESHOLD:
        return RiskLevel.high
    if risk >= MEDIUM_THRESHOLD:
        return RiskLevel.medium
    return RiskLevel.low


def subject_signals(items: Iterable[ModerationItem]) -> dict[str, SubjectSignals]:
    """Count flags and reports per subject key across a population."""
    flags: Counter[str] = Counter()
    reports: Counter[str] = Counter()
    for item in items:
        if item.kind is ItemKind.flag:
            flags[item.subject.key] += 1
        else:
            reports[item.subject.key] += 1
    return {
        key: SubjectSignals(flag_count=flags[key], report_count=reports[key])
        for key in set(flags) | set(reports)
    }


def effective_risk(item: ModerationItem, signals: SubjectSignals) -> float:
    """Classifier risk for flags; derived from report volume for reports."""
    if item.kind is ItemKind.flag:
        return float(item.risk or 0.0)
    extra_reports = max(0, signals.report_count - 1)
    return min(MAX_RISK, REPORT_BASE_RISK + REPORT_RISK_STEP * extra_reports)


def age_boost(item: ModerationItem, now: datetime, backlog_age_hours: float) -> int:
    """Non-decreasing boost for items that have been open a long time."""
    if not item.is_open or backlog_age_hours <= 0:
        return 0
    age_hours = (now - item.created()).total_seconds() / 3600
    if age_hours <= 0:
        return 0
    periods = int(age_hours // backlog_age_hours)
    return min(AGE_BOOST_CAP, periods * AGE_BOOST_STEP)


def score_item(
    item: ModerationItem,
    signals: SubjectSignals,
    now: datetime,
    backlog_age_hours: float = 24.0,
) -> Score:
    risk = effective_risk(item, signals)
    level = risk_level(risk)
    base = BUCKET_WEIGHTS[level] + SOURCE_WEIGHTS[item.source] + age_boost(item, now, backlog_age_hours)
    return Score(risk=risk, risk_level=level, priority=int(round(base * signals.multiplier)))


def score_population(
    items: Iterable[ModerationItem],
    now: datetime,
    backlog_age_hours: float = 24.0,
    signals: Mapping[str, SubjectSignals] | None = None,
) -> dict[str, Score]:
    """Score every item of a population, keyed by item key."""
    items = list(items)
    if signals is None:
        signals = subject_signals(items)
    empty = SubjectSignals()
    return {
        item.key: score_item(item, signals.get(item.subject.key, empty), now, backlog_age_hours)
        for item in items
    }
