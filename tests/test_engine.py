"""Tests for the engine facade and action dispatch."""

import tempfile
from datetime import datetime, timezone

import pytest

from modqueue.auth.models import Role, Session
from modqueue.config import Settings
from modqueue.engine import ACTIONS, ModerationEngine
from modqueue.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from modqueue.ingest.normalizer import RawBatch
from modqueue.models.item import ClipStatus, ProfileStatus

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
ADMIN = Session(reviewer_id="admin1", role=Role.admin)
REVIEWER = Session(reviewer_id="rev1", role=Role.reviewer)


def _batch() -> RawBatch:
    return RawBatch(
        clips=[{"id": "c1", "title": "Rant"}, {"id": "c2", "title": "Song"}],
        profiles=[{"id": "p1", "handle": "loudvoice"}],
        flags=[
            {"id": "f1", "clip_id": "c1", "reasons": ["hate"], "risk": 8.5, "created_at": "2026-03-10T11:00:00Z"},
            {"id": "f2", "clip_id": "c2", "reasons": ["spam"], "risk": 2.0, "created_at": "2026-03-10T11:30:00Z"},
        ],
        reports=[
            {"id": "r1", "clip_id": "c1", "reason": "harassment", "created_at": "2026-03-10T11:10:00Z"},
            {"id": "r2", "profile_id": "p1", "reason": "impersonation", "created_at": "2026-03-10T11:20:00Z"},
        ],
    )


def _engine(tmpdir: str, **settings) -> ModerationEngine:
    engine = ModerationEngine(Settings(data_dir=tmpdir, **settings), clock=lambda: NOW)
    engine.ingest(_batch())
    return engine


def test_ingest_stores_items_subjects_and_cached_priority():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = ModerationEngine(Settings(data_dir=tmpdir), clock=lambda: NOW)

        result = engine.ingest(_batch())
        assert (result.flags_added, result.reports_added, result.dropped) == (2, 2, 0)
        assert result.subjects_registered == 3
        assert engine.items.get("flag", "f1").priority == 90

        again = engine.ingest(_batch())
        assert (again.flags_added, again.reports_added) == (0, 0)


def test_list_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        data = engine.dispatch("list", {"sortBy": "priority", "filters": {"riskLevel": "all"}}, REVIEWER)

        assert [f["id"] for f in data["flags"]] == ["f1", "f2"]
        assert data["flags"][0]["risk_level"] == "high"
        assert data["flags"][0]["related_item_ids"] == ["report:r1"]
        assert {r["id"] for r in data["reports"]} == {"r1", "r2"}

        filtered = engine.dispatch("list", {"filters": {"subjectKind": "profile"}}, REVIEWER)
        assert filtered["flags"] == []
        assert [r["id"] for r in filtered["reports"]] == ["r2"]


def test_dispatch_checks_session_before_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        with pytest.raises(Forbidden):
            engine.dispatch("nonsense", {}, None)
        with pytest.raises(Forbidden):
            engine.dispatch("list", {}, Session(reviewer_id="v", role=Role.viewer))
        with pytest.raises(ValidationError):
            engine.dispatch("nonsense", {}, REVIEWER)
        with pytest.raises(ValidationError):
            engine.dispatch(None, {}, REVIEWER)


def test_missing_and_invalid_params():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        with pytest.raises(ValidationError):
            engine.dispatch("assignItem", {"itemId": "f1"}, REVIEWER)
        with pytest.raises(ValidationError):
            engine.dispatch("assignItem", {"itemType": "comment", "itemId": "f1"}, REVIEWER)
        with pytest.raises(ValidationError):
            engine.dispatch("updateWorkflowState", {"itemType": "flag", "itemId": "f1", "workflowState": "done"}, REVIEWER)
        with pytest.raises(ValidationError):
            engine.dispatch("list", {"sortBy": "loudest"}, REVIEWER)
        with pytest.raises(ValidationError):
            engine.dispatch("list", {"filters": {"riskLevel": "extreme"}}, REVIEWER)
        with pytest.raises(ValidationError):
            engine.dispatch("bulkUpdateClips", {"clipIds": ["c1"]}, REVIEWER)


def test_workflow_actions():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        ack = engine.dispatch("assignItem", {"itemType": "flag", "itemId": "f1", "assignedTo": "rev1"}, REVIEWER)
        assert ack["ok"] and ack["item"]["assigned_to"] == "rev1"

        engine.dispatch("updateNotes", {"itemType": "flag", "itemId": "f1", "notes": "Check 0:42"}, REVIEWER)
        ack = engine.dispatch(
            "updateWorkflowState",
            {"itemType": "flag", "itemId": "f1", "workflowState": "in_review", "expectedVersion": 2},
            REVIEWER,
        )
        assert ack["item"]["workflow_state"] == "in_review"
        assert ack["item"]["version"] == 3

        with pytest.raises(Conflict):
            engine.dispatch(
                "updateWorkflowState",
                {"itemType": "flag", "itemId": "f1", "workflowState": "resolved", "expectedVersion": 2},
                REVIEWER,
            )
        with pytest.raises(InvalidTransition):
            engine.dispatch("updateWorkflowState", {"itemType": "flag", "itemId": "f1", "workflowState": "pending"}, REVIEWER)

        resolved = engine.dispatch("resolveReport", {"reportId": "r2"}, REVIEWER)
        assert resolved["item"]["workflow_state"] == "resolved"
        with pytest.raises(NotFound):
            engine.dispatch("resolveReport", {"reportId": "r404"}, REVIEWER)

        history = engine.dispatch("getHistory", {"itemType": "flag", "itemId": "f1"}, REVIEWER)
        assert [h["action"] for h in history] == ["state_changed", "note_added", "assigned"]


def test_update_clip_and_bulk_actions():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        ack = engine.dispatch(
            "updateClip", {"clipId": "c1", "status": "removed", "flagId": "f1", "reportIds": ["r1"]}, REVIEWER
        )
        assert ack["ok"]
        assert ack["updatedCount"] == 1
        assert ack["transitionedCount"] == 2
        assert engine.content.get_clip("c1").status is ClipStatus.removed

        with pytest.raises(ValidationError):
            engine.dispatch("updateClip", {"clipId": "c1", "status": "hidden", "flagId": "f2"}, REVIEWER)

        data = engine.dispatch(
            "bulkUpdateClips", {"clipIds": [], "status": "hidden", "flagIds": ["f2"], "reportIds": ["r2"]}, REVIEWER
        )
        assert data == {"updatedCount": 1, "transitionedCount": 1, "clipIds": ["c2"], "profileReportIds": ["r2"]}


def test_moderate_profile_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        with pytest.raises(ValidationError):
            engine.dispatch("moderateProfile", {"reportIds": ["r2"], "profileAction": "ban"}, REVIEWER)

        ack = engine.dispatch(
            "moderateProfile", {"reportIds": ["r2"], "profileAction": "warn", "reason": "Impersonation"}, REVIEWER
        )
        assert ack["profileIds"] == ["p1"]
        assert engine.content.get_profile("p1").status is ProfileStatus.warned


def test_statistics_and_metrics():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        stats = engine.dispatch("getModerationStatistics", {"periodDays": 7}, REVIEWER)
        assert stats["period_days"] == 7
        assert stats["high_risk_pending"] == 1
        assert stats["reports_by_subject_kind"] == {"clip": 1, "profile": 1}

        with pytest.raises(ValidationError):
            engine.dispatch("getModerationStatistics", {"periodDays": "week"}, REVIEWER)

        assert engine.dispatch("getMetrics", {}, REVIEWER) == {"items_total": 4, "open_items": 4}


def test_metrics_passthrough():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = ModerationEngine(Settings(data_dir=tmpdir), metrics_provider=lambda: {"p95_ms": 41})

        assert engine.dispatch("getMetrics", {}, REVIEWER) == {"p95_ms": 41}


def test_job_actions():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir, scan_pause_seconds=0)

        assert engine.dispatch("getJobStatus", {"job": "escalate_backlog"}, REVIEWER) is None
        with pytest.raises(Forbidden):
            engine.dispatch("runJob", {"job": "escalate_backlog"}, REVIEWER)

        run = engine.dispatch("runJob", {"job": "escalate_backlog"}, ADMIN)
        assert run["status"] == "succeeded"
        assert run["summary"]["items_checked"] == 4

        scan = engine.dispatch("runJob", {"job": "scan_subjects"}, ADMIN)
        assert scan["summary"]["subjects_scanned"] == 3
        assert engine.dispatch("getJobStatus", {"job": "scan_subjects"}, REVIEWER)["run_id"] == scan["run_id"]


def test_every_action_is_dispatchable():
    assert set(ACTIONS) == {
        "list", "updateClip", "bulkUpdateClips", "assignItem", "updateNotes", "updateWorkflowState",
        "resolveReport", "getModerationStatistics", "getMetrics", "moderateProfile", "getHistory",
        "runJob", "getJobStatus", "getNotifications", "markNotificationsRead",
    }
