"""Tests for the item store, content store and moderation history."""

import json
import tempfile
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

from modqueue.errors import Conflict, NotFound, TransientError, ValidationError
from modqueue.models.item import (
    ClipRecord,
    ClipRef,
    ClipStatus,
    ItemKind,
    ModerationItem,
    ProfileRecord,
    ProfileStatus,
    Source,
)
from modqueue.storage.content_store import JsonContentStore
from modqueue.storage.filelock import file_lock
from modqueue.storage.history import ModerationHistory
from modqueue.storage.item_store import ItemStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _flag(item_id: str = "f1", clip_id: str = "c1") -> ModerationItem:
    return ModerationItem(
        id=item_id,
        kind=ItemKind.flag,
        subject=ClipRef(clip_id),
        source=Source.ai,
        created_at="2026-03-10T10:00:00+00:00",
        reasons=("spam",),
        risk=5.0,
    )


def test_add_items_skips_existing_keys():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)

        assert store.add_items([_flag("f1"), _flag("f2")]) == 2
        assert store.add_items([_flag("f1"), _flag("f3")]) == 1
        assert sorted(i.id for i in store.list_items()) == ["f1", "f2", "f3"]


def test_flag_and_report_ids_do_not_collide():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        report = ModerationItem(
            id="f1", kind=ItemKind.report, subject=ClipRef("c1"),
            source=Source.community, created_at="2026-03-10T10:00:00+00:00",
        )
        store.add_items([_flag("f1"), report])

        assert store.get("flag", "f1").kind is ItemKind.flag
        assert store.get("report", "f1").kind is ItemKind.report


def test_get_unknown_item_raises_not_found():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(NotFound):
            ItemStore(tmpdir).get("flag", "missing")


def test_transaction_bumps_version_and_commits():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        store.add_items([_flag()])

        with store.transaction(now=NOW) as txn:
            item = txn.get("flag", "f1")
            txn.update(item.with_changes(notes="checked"), item.version)

        stored = store.get("flag", "f1")
        assert stored.notes == "checked"
        assert stored.version == 1


def test_stale_version_raises_conflict():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        store.add_items([_flag()])
        stale = store.get("flag", "f1")

        with store.transaction(now=NOW) as txn:
            txn.update(stale.with_changes(notes="first"), stale.version)

        with pytest.raises(Conflict):
            with store.transaction(now=NOW) as txn:
                txn.update(stale.with_changes(notes="second"), stale.version)

        assert store.get("flag", "f1").notes == "first"


def test_commit_from_another_store_raises_conflict():
    with tempfile.TemporaryDirectory() as tmpdir:
        ours = ItemStore(tmpdir)
        theirs = ItemStore(tmpdir)
        ours.add_items([_flag()])

        with pytest.raises(Conflict):
            with ours.transaction(now=NOW) as txn:
                item = txn.get("flag", "f1")
                with theirs.transaction(now=NOW) as other:
                    fresh = other.get("flag", "f1")
                    other.update(fresh.with_changes(notes="theirs"), fresh.version)
                    other.record(fresh, "note_added", "rev2", new_value="theirs")
                txn.update(item.with_changes(notes="ours"), item.version)
                txn.record(item, "note_added", "rev1", new_value="ours")

        stored = ours.get("flag", "f1")
        assert stored.notes == "theirs"
        assert stored.version == 1
        assert [e.actor for e in ours.history()] == ["rev2"]


def test_commits_to_different_items_from_two_stores_both_survive():
    with tempfile.TemporaryDirectory() as tmpdir:
        ours = ItemStore(tmpdir)
        theirs = ItemStore(tmpdir)
        ours.add_items([_flag("f1"), _flag("f2")])

        with ours.transaction(now=NOW) as txn:
            item = txn.get("flag", "f1")
            with theirs.transaction(now=NOW) as other:
                fresh = other.get("flag", "f2")
                other.update(fresh.with_changes(notes="theirs"), fresh.version)
                other.record(fresh, "note_added", "rev2", new_value="theirs")
            txn.update(item.with_changes(notes="ours"), item.version)
            txn.record(item, "note_added", "rev1", new_value="ours")

        assert ours.get("flag", "f1").notes == "ours"
        assert ours.get("flag", "f2").notes == "theirs"
        assert sorted(e.actor for e in theirs.history()) == ["rev1", "rev2"]


def test_items_added_by_another_store_are_kept():
    with tempfile.TemporaryDirectory() as tmpdir:
        ours = ItemStore(tmpdir)
        theirs = ItemStore(tmpdir)
        ours.add_items([_flag("f1")])

        with ours.transaction(now=NOW) as txn:
            item = txn.get("flag", "f1")
            theirs.add_items([_flag("f2")])
            txn.update(item.with_changes(notes="ours"), item.version)

        assert sorted(i.id for i in ours.list_items()) == ["f1", "f2"]


def test_held_commit_lock_raises_transient_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir, timeout=0.05)
        store.add_items([_flag()])

        with file_lock(Path(tmpdir, ".items.lock"), 1.0, "test"):
            with pytest.raises(TransientError):
                with store.transaction(now=NOW) as txn:
                    item = txn.get("flag", "f1")
                    txn.update(item.with_changes(notes="blocked"), item.version)

        assert store.get("flag", "f1").notes is None


def test_failed_transaction_writes_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        store.add_items([_flag()])

        with pytest.raises(RuntimeError):
            with store.transaction(now=NOW) as txn:
                item = txn.get("flag", "f1")
                txn.update(item.with_changes(notes="lost"), item.version)
                raise RuntimeError("boom")

        assert store.get("flag", "f1").notes is None
        assert store.history() == []


def test_immutable_fields_cannot_change():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        store.add_items([_flag()])

        with pytest.raises(ValueError):
            store.get("flag", "f1").with_changes(risk=1.0)

        tampered = replace(store.get("flag", "f1"), reasons=("other",))
        with pytest.raises(ValidationError):
            with store.transaction(now=NOW) as txn:
                txn.update(tampered, 0)


def test_lock_timeout_raises_transient_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir, timeout=0.01)
        store._lock.acquire()
        try:
            with pytest.raises(TransientError):
                store.list_items()
        finally:
            store._lock.release()


def test_corrupt_file_raises_transient_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        Path(tmpdir, "items.json").write_text("{not json")
        with pytest.raises(TransientError):
            ItemStore(tmpdir).list_items()


def test_history_is_written_with_the_change():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        store.add_items([_flag()])

        with store.transaction(now=NOW) as txn:
            item = txn.get("flag", "f1")
            txn.update(item.with_changes(assigned_to="rev1"), item.version)
            txn.record(item, "assigned", "admin1", previous_value=None, new_value="rev1")

        doc = json.loads(Path(tmpdir, "items.json").read_text())
        assert doc["history"][0]["action"] == "assigned"
        assert doc["history"][0]["timestamp"] == NOW.isoformat()


def test_history_filters_and_export():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ItemStore(tmpdir)
        store.add_items([_flag("f1"), _flag("f2")])
        for item_id, actor in (("f1", "rev1"), ("f2", "rev2")):
            with store.transaction(now=NOW) as txn:
                item = txn.get("flag", item_id)
                txn.update(item.with_changes(notes="x"), item.version)
                txn.record(item, "note_added", actor, new_value="x")

        history = ModerationHistory(store)
        assert [e.item_id for e in history.get_events(actor="rev2")] == ["f2"]
        assert [e.item_id for e in history.for_item("flag", "f1")] == ["f1"]
        # Same timestamp: newest write first.
        assert [e.item_id for e in history.get_events()] == ["f2", "f1"]

        csv_text = history.export_events(fmt="csv")
        assert csv_text.splitlines()[0].startswith("id,timestamp,item_type")
        assert len(csv_text.splitlines()) == 3
        assert len(json.loads(history.export_events())) == 2


# -- content store -------------------------------------------------------------


def test_content_store_register_keeps_known_status():
    with tempfile.TemporaryDirectory() as tmpdir:
        content = JsonContentStore(tmpdir)
        assert content.register([ClipRecord(id="c1")], [ProfileRecord(id="p1")]) == 2

        content.set_clip_status("c1", ClipStatus.hidden)
        assert content.register([ClipRecord(id="c1", status=ClipStatus.live)]) == 0
        assert content.get_clip("c1").status is ClipStatus.hidden


def test_content_store_status_changes_return_previous():
    with tempfile.TemporaryDirectory() as tmpdir:
        content = JsonContentStore(tmpdir)
        content.register([ClipRecord(id="c1")], [ProfileRecord(id="p1")])

        assert content.set_clip_status("c1", ClipStatus.removed) is ClipStatus.live
        assert content.set_profile_status("p1", ProfileStatus.banned) is ProfileStatus.active
        assert content.get_profile("p1").status is ProfileStatus.banned

        with pytest.raises(NotFound):
            content.set_clip_status("nope", ClipStatus.hidden)


def test_content_stores_sharing_a_directory_see_each_others_writes():
    with tempfile.TemporaryDirectory() as tmpdir:
        ours = JsonContentStore(tmpdir)
        theirs = JsonContentStore(tmpdir)
        ours.register([ClipRecord(id="c1"), ClipRecord(id="c2")])

        theirs.set_clip_status("c1", ClipStatus.hidden)
        assert ours.set_clip_status("c2", ClipStatus.removed) is ClipStatus.live

        assert theirs.get_clip("c1").status is ClipStatus.hidden
        assert theirs.get_clip("c2").status is ClipStatus.removed


def test_content_store_held_lock_raises_transient_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        content = JsonContentStore(tmpdir, timeout=0.05)
        content.register([ClipRecord(id="c1")])

        with file_lock(Path(tmpdir, ".content.lock"), 1.0, "test"):
            with pytest.raises(TransientError):
                content.set_clip_status("c1", ClipStatus.hidden)

        assert content.get_clip("c1").status is ClipStatus.live
