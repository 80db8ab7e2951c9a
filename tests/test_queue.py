"""Tests for queue aggregation and the selection value object."""

from datetime import datetime, timedelta, timezone

import pytest

from modqueue.models.item import ClipRef, ItemKind, ModerationItem, ProfileRef, RiskLevel, Source, SubjectKind
from modqueue.queue.aggregator import QueueFilters, SortKey, build_queue
from modqueue.queue.selection import Selection

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _item(kind: str, item_id: str, subject=None, risk=None, minutes_ago: int = 0, **kw) -> ModerationItem:
    return ModerationItem(
        id=item_id,
        kind=ItemKind(kind),
        subject=subject or ClipRef("c1"),
        source=kw.pop("source", Source.ai if kind == "flag" else Source.community),
        created_at=(NOW - timedelta(minutes=minutes_ago)).isoformat(),
        reasons=kw.pop("reasons", ("spam",)),
        risk=risk,
        **kw,
    )


def _population() -> list[ModerationItem]:
    return [
        _item("flag", "f1", ClipRef("c1"), risk=8.5, minutes_ago=30),
        _item("flag", "f2", ClipRef("c2"), risk=2.0, minutes_ago=10),
        _item("flag", "f3", ClipRef("c3"), risk=2.0, minutes_ago=20),
        _item("report", "r1", ClipRef("c1"), minutes_ago=5, details="Slurs at 0:42"),
        _item("report", "r2", ProfileRef("p1"), minutes_ago=15, reasons=("impersonation",)),
    ]


def test_no_cross_kind_deduplication():
    view = build_queue(_population(), NOW)

    assert [e.item.id for e in view.flags] == ["f1", "f2", "f3"]
    assert {e.item.id for e in view.reports} == {"r1", "r2"}


def test_priority_ties_break_on_newest_then_id():
    view = build_queue(_population(), NOW, sort_by=SortKey.priority)
    low = [e for e in view.flags if e.item.id in ("f2", "f3")]

    assert low[0].priority == low[1].priority
    assert [e.item.id for e in low] == ["f2", "f3"]


def test_identical_timestamps_sort_by_id():
    items = [_item("flag", fid, ClipRef(f"c-{fid}"), risk=5.0) for fid in ("fb", "fa", "fc")]
    view = build_queue(items, NOW)

    assert [e.item.id for e in view.flags] == ["fa", "fb", "fc"]


def test_newest_and_oldest_sorts():
    newest = build_queue(_population(), NOW, sort_by="newest")
    oldest = build_queue(_population(), NOW, sort_by="oldest")

    assert [e.item.id for e in newest.flags] == ["f2", "f3", "f1"]
    assert [e.item.id for e in oldest.flags] == ["f1", "f3", "f2"]


def test_related_items_point_at_same_subject():
    view = build_queue(_population(), NOW)
    f1 = next(e for e in view.flags if e.item.id == "f1")
    r1 = next(e for e in view.reports if e.item.id == "r1")

    assert f1.related_item_ids == ["report:r1"]
    assert r1.related_item_ids == ["flag:f1"]
    assert f1.priority == 90


def test_filters():
    items = _population()

    high = build_queue(items, NOW, filters=QueueFilters(risk_level=RiskLevel.high))
    assert [e.item.id for e in high.flags] == ["f1"]
    assert high.reports == []

    profiles = build_queue(items, NOW, filters=QueueFilters(subject_kind=SubjectKind.profile))
    assert profiles.flags == []
    assert [e.item.id for e in profiles.reports] == ["r2"]

    community = build_queue(items, NOW, filters=QueueFilters(source="community"))
    assert community.flags == []
    assert len(community.reports) == 2


def test_search_matches_reasons_and_details_case_insensitively():
    view = build_queue(_population(), NOW, filters=QueueFilters(search="SLURS"))
    assert [e.item.id for e in view.reports] == ["r1"]

    view = build_queue(_population(), NOW, filters=QueueFilters(search="imperson"))
    assert [e.item.id for e in view.reports] == ["r2"]


def test_filtering_does_not_change_cooccurrence_scores():
    view = build_queue(_population(), NOW, filters=QueueFilters(source=Source.ai))
    f1 = next(e for e in view.flags if e.item.id == "f1")

    assert f1.priority == 90


def test_invalid_filter_value_raises():
    with pytest.raises(ValueError):
        QueueFilters(risk_level="extreme")


# -- selection ---------------------------------------------------------------


def test_selection_add_remove_toggle():
    sel = Selection().add("flag", "f1").add(ItemKind.report, "r1")

    assert sel.contains("flag", "f1")
    assert len(sel) == 2

    sel = sel.toggle("flag", "f1").toggle("flag", "f2")
    assert not sel.contains("flag", "f1")
    assert sel.contains("flag", "f2")

    assert sel.remove("report", "r1").report_ids == frozenset()


def test_selection_is_immutable():
    original = Selection()
    updated = original.add("flag", "f1")

    assert original.is_empty
    assert not updated.is_empty


def test_selection_select_all_and_clear():
    sel = Selection().select_all("flag", ["f1", "f2"]).select_all("report", ["r1"])
    assert sel.flag_ids == frozenset({"f1", "f2"})

    assert sel.clear("flag").flag_ids == frozenset()
    assert sel.clear("flag").report_ids == frozenset({"r1"})
    assert sel.clear().is_empty
