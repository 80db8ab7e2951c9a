"""Maintenance jobs run through :class:`~modqueue.jobs.control.JobControl`."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from modqueue.errors import NotFound
from modqueue.jobs.batch import BatchScanner
from modqueue.models.item import (
    ClipRef,
    ClipStatus,
    ModerationItem,
    ProfileRef,
    ProfileStatus,
    Subject,
)
from modqueue.queue.scorer import score_population
from modqueue.storage.content_store import ContentStore
from modqueue.storage.item_store import ItemStore
from modqueue.workflow.notifications import ESCALATION_WINDOW, escalation_notification

logger = logging.getLogger(__name__)


def escalate_backlog(
    store: ItemStore,
    now: datetime,
    backlog_age_hours: float = 24.0,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    """Refresh the cached priority of every open item.

    Age boosts only ever grow while an item stays open, so long-waiting items
    climb the queue even if nobody touches them.
    """
    checked = 0
    escalated = 0
    notified = 0
    with store.transaction(timeout, now=now) as txn:
        population = txn.items()
        scores = score_population(population, now, backlog_age_hours)
        for item in population:
            if not item.is_open:
                continue
            checked += 1
            priority = scores[item.key].priority
            if priority == item.priority:
                continue
            stored = txn.update(item.with_changes(priority=priority), item.version)
            if priority > item.priority:
                escalated += 1
                notification = escalation_notification(stored, item.priority, now)
                if notification is not None and txn.notify(notification, within=ESCALATION_WINDOW):
                    notified += 1
    logger.info(
        "Backlog escalation: %d open item(s) checked, %d escalated, %d notification(s)",
        checked,
        escalated,
        notified,
    )
    return {
        "items_checked": checked,
        "items_escalated": escalated,
        "items_refreshed": len(txn.changed),
        "notifications_sent": notified,
    }


_ACTIONED_CLIP = frozenset({ClipStatus.hidden, ClipStatus.removed})
_ACTIONED_PROFILE = frozenset({ProfileStatus.banned, ProfileStatus.warned})


def scan_subjects(
    store: ItemStore,
    content: ContentStore,
    scanner: BatchScanner,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    """Check the subject behind every open item against the content store.

    Reports open items whose subject no longer exists, and open items whose
    subject has already been hidden, removed, banned or warned elsewhere.
    Read-only: nothing is transitioned.
    """
    open_items = [i for i in store.list_items(timeout=timeout) if i.is_open]
    subjects: dict[str, Subject] = {}
    by_subject: dict[str, list[ModerationItem]] = {}
    for item in open_items:
        subjects.setdefault(item.subject.key, item.subject)
        by_subject.setdefault(item.subject.key, []).append(item)

    def check(subject: Subject) -> Optional[bool]:
        """True when already actioned, None when missing."""
        try:
            if isinstance(subject, ClipRef):
                return content.get_clip(subject.clip_id, timeout=timeout).status in _ACTIONED_CLIP
            if isinstance(subject, ProfileRef):
                return content.get_profile(subject.profile_id, timeout=timeout).status in _ACTIONED_PROFILE
        except NotFound:
            return None
        raise TypeError(f"Unknown subject type: {subject!r}")

    report = scanner.scan(subjects.values(), check, key=lambda s: s.key)

    missing = sorted(k for k, v in report.results.items() if v is None)
    stale = sorted(
        item.key
        for subject_key, actioned in report.results.items()
        if actioned
        for item in by_subject[subject_key]
    )
    return {
        "subjects_scanned": report.processed,
        "groups": report.groups,
        "missing_subjects": missing,
        "open_items_on_actioned_subjects": stale,
        "failures": dict(report.failures),
    }
