"""Tests for the priority and risk scorer."""

from datetime import datetime, timedelta, timezone

from modqueue.models.item import ClipRef, ItemKind, ModerationItem, ProfileRef, RiskLevel, Source, WorkflowState
from modqueue.queue.scorer import (
    AGE_BOOST_CAP,
    SubjectSignals,
    age_boost,
    risk_level,
    score_item,
    score_population,
    subject_signals,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _flag(item_id: str, clip_id: str = "c1", risk: float = 5.0, age_hours: float = 0, **kw) -> ModerationItem:
    return ModerationItem(
        id=item_id,
        kind=ItemKind.flag,
        subject=ClipRef(clip_id),
        source=kw.pop("source", Source.ai),
        created_at=(NOW - timedelta(hours=age_hours)).isoformat(),
        reasons=("spam",),
        risk=risk,
        **kw,
    )


def _report(item_id: str, subject=None, age_hours: float = 0) -> ModerationItem:
    return ModerationItem(
        id=item_id,
        kind=ItemKind.report,
        subject=subject or ClipRef("c1"),
        source=Source.community,
        created_at=(NOW - timedelta(hours=age_hours)).isoformat(),
        reasons=("harassment",),
    )


def test_risk_bucket_boundaries():
    assert risk_level(0) is RiskLevel.low
    assert risk_level(2.99) is RiskLevel.low
    assert risk_level(3.0) is RiskLevel.medium
    assert risk_level(6.99) is RiskLevel.medium
    assert risk_level(7.0) is RiskLevel.high
    assert risk_level(8.99) is RiskLevel.high
    assert risk_level(9.0) is RiskLevel.critical
    assert risk_level(10.0) is RiskLevel.critical


def test_lone_low_risk_flag():
    flag = _flag("f1", risk=2.0)
    score = score_item(flag, SubjectSignals(flag_count=1), NOW)

    assert score.risk_level is RiskLevel.low
    assert score.priority == 10


def test_flag_and_report_on_same_clip_boost_each_other():
    flag = _flag("f1", risk=8.5)
    report = _report("r1")
    scores = score_population([flag, report], NOW)

    assert scores["flag:f1"].risk_level is RiskLevel.high
    assert scores["flag:f1"].priority == 90
    assert scores["report:r1"].risk == 4.0
    assert scores["report:r1"].risk_level is RiskLevel.medium


def test_report_risk_grows_with_report_volume():
    subject = ProfileRef("p1")
    reports = [_report(f"r{i}", subject) for i in range(3)]
    scores = score_population(reports, NOW)

    assert scores["report:r0"].risk == 6.0
    assert scores["report:r0"].risk_level is RiskLevel.medium
    # (30 medium + 5 community) * 1.25 same-kind multiplier
    assert scores["report:r0"].priority == 44


def test_report_risk_is_capped():
    reports = [_report(f"r{i}") for i in range(12)]
    scores = score_population(reports, NOW)

    assert scores["report:r0"].risk == 10.0
    assert scores["report:r0"].risk_level is RiskLevel.critical


def test_subject_signals_counts_per_subject():
    signals = subject_signals([_flag("f1"), _flag("f2"), _report("r1"), _flag("f3", clip_id="c2")])

    assert signals["clip:c1"] == SubjectSignals(flag_count=2, report_count=1)
    assert signals["clip:c1"].multiplier == 1.5
    assert signals["clip:c2"].multiplier == 1.0


def test_age_boost_steps_and_cap():
    assert age_boost(_flag("f1", age_hours=23), NOW, 24) == 0
    assert age_boost(_flag("f1", age_hours=49), NOW, 24) == 20
    assert age_boost(_flag("f1", age_hours=24 * 30), NOW, 24) == AGE_BOOST_CAP


def test_age_boost_only_for_open_items():
    resolved = _flag("f1", age_hours=72, workflow_state=WorkflowState.resolved)
    assert age_boost(resolved, NOW, 24) == 0


def test_old_low_risk_flag_climbs():
    old = _flag("f1", risk=1.0, age_hours=49)
    score = score_item(old, SubjectSignals(flag_count=1), NOW, backlog_age_hours=24)

    assert score.priority == 30


def test_community_source_weight():
    flag = _flag("f1", risk=2.0, source=Source.community)
    assert score_item(flag, SubjectSignals(flag_count=1), NOW).priority == 15
