"""Tests for the operator CLI: reviewer management, history export and notifications."""

import csv
import json
import tempfile
from datetime import datetime, timezone

from click.testing import CliRunner

from modqueue.auth.models import Reviewer, Role, Session
from modqueue.auth.store import ReviewerStore
from modqueue.cli import main
from modqueue.config import Settings
from modqueue.engine import ModerationEngine
from modqueue.ingest.normalizer import RawBatch

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _run(tmpdir: str, *args: str):
    runner = CliRunner()
    env = {"MODQUEUE_DATA_DIR": tmpdir, "MODQUEUE_REVIEWER": None, "MODQUEUE_CONFIG": None}
    return runner.invoke(main, list(args), env=env)


def _reviewers(tmpdir: str) -> ReviewerStore:
    return ReviewerStore(f"{tmpdir}/auth")


def _seed(tmpdir: str) -> ReviewerStore:
    store = _reviewers(tmpdir)
    store.add_reviewer(Reviewer(id="admin1", handle="root", role=Role.admin))
    store.add_reviewer(Reviewer(id="rev1", handle="ana", role=Role.reviewer))
    return store


def _ingest(tmpdir: str) -> ModerationEngine:
    engine = ModerationEngine(Settings(data_dir=tmpdir), clock=lambda: NOW)
    engine.ingest(RawBatch(
        clips=[{"id": "c1"}],
        flags=[{"id": "f1", "clip_id": "c1", "reasons": ["hate"], "risk": 9.5, "created_at": "2026-03-10T11:00:00Z"}],
    ))
    return engine


# -- reviewer management -------------------------------------------------------


def test_first_reviewer_can_be_added_without_an_admin():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _run(tmpdir, "reviewer", "add", "admin1", "root", "--role", "admin")

        assert result.exit_code == 0, result.output
        assert _reviewers(tmpdir).get_reviewer("admin1").role is Role.admin


def test_adding_reviewers_later_requires_an_admin():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(tmpdir)

        anonymous = _run(tmpdir, "reviewer", "add", "rev2", "bea", "--role", "admin")
        by_reviewer = _run(tmpdir, "reviewer", "add", "-r", "rev1", "rev2", "bea", "--role", "admin")
        assert anonymous.exit_code == 1
        assert by_reviewer.exit_code == 1
        assert _reviewers(tmpdir).get_reviewer("rev2") is None

        by_admin = _run(tmpdir, "reviewer", "add", "-r", "admin1", "rev2", "bea")
        assert by_admin.exit_code == 0, by_admin.output
        assert _reviewers(tmpdir).get_reviewer("rev2").role is Role.reviewer


def test_role_change_and_device_revocation_are_admin_only():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _seed(tmpdir)
        raw = store.register_device("rev1")

        assert _run(tmpdir, "reviewer", "role", "-r", "rev1", "rev1", "admin").exit_code == 1
        assert store.get_reviewer("rev1").role is Role.reviewer
        assert _run(tmpdir, "reviewer", "revoke", "-r", "rev1", raw).exit_code == 1
        assert store.authenticate(raw) is not None

        assert _run(tmpdir, "reviewer", "role", "-r", "admin1", "rev1", "viewer").exit_code == 0
        assert store.get_reviewer("rev1").role is Role.viewer
        assert _run(tmpdir, "reviewer", "revoke", "-r", "admin1", raw).exit_code == 0
        assert store.authenticate(raw) is None
        assert _run(tmpdir, "reviewer", "revoke", "-r", "admin1", raw).exit_code == 1


def test_device_credentials_are_issued_by_admins():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(tmpdir)

        assert _run(tmpdir, "reviewer", "device", "-r", "rev1", "rev1").exit_code == 1
        result = _run(tmpdir, "reviewer", "device", "-r", "admin1", "rev1")

        assert result.exit_code == 0, result.output
        assert "dev_" in result.output


# -- history export ------------------------------------------------------------


def test_export_history_as_csv():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(tmpdir)
        engine = _ingest(tmpdir)
        engine.assign(Session(reviewer_id="rev1", role=Role.reviewer), "flag", "f1", "rev1")
        engine.set_state(Session(reviewer_id="rev1", role=Role.reviewer), "flag", "f1", "in_review")

        out = f"{tmpdir}/history.csv"
        result = _run(tmpdir, "export-history", "-r", "admin1", "--format", "csv", "--action", "assigned", "-o", out)

        assert result.exit_code == 0, result.output
        with open(out, newline="") as fh:
            rows = list(csv.DictReader(fh))
        assert [(r["item_id"], r["action"], r["actor"]) for r in rows] == [("f1", "assigned", "rev1")]


def test_export_history_to_file_and_admin_only():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(tmpdir)
        engine = _ingest(tmpdir)
        engine.assign(Session(reviewer_id="admin1", role=Role.admin), "flag", "f1", "rev1")
        out = f"{tmpdir}/history.json"

        assert _run(tmpdir, "export-history", "-r", "rev1").exit_code == 1
        result = _run(tmpdir, "export-history", "-r", "admin1", "-o", out)

        assert result.exit_code == 0, result.output
        with open(out) as fh:
            assert [e["new_value"] for e in json.load(fh)] == ["rev1"]


# -- notifications -------------------------------------------------------------


def test_notifications_command_lists_and_marks_read():
    with tempfile.TemporaryDirectory() as tmpdir:
        _seed(tmpdir)
        engine = _ingest(tmpdir)

        listed = _run(tmpdir, "notifications", "-r", "admin1", "--mark-read")
        assert listed.exit_code == 0, listed.output
        assert "Notifications (1)" in listed.output

        assert engine.unread_notifications(Session(reviewer_id="admin1", role=Role.admin)) == []
        empty = _run(tmpdir, "notifications", "-r", "admin1")
        assert "No unread notifications" in empty.output
