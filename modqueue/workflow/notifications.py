"""Reviewer notifications.

Alerts are raised when a high or critical item arrives, when the backlog job
escalates an item's priority, and when an item is assigned to someone other
than the reviewer doing the assigning.  They are stored in the item document
and committed with the change that caused them.

Arrival and escalation alerts go to every admin; assignment alerts go to the
assignee.  A new alert is suppressed while an unread one for the same item
and recipient exists (escalations only look back one hour).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from modqueue.auth.models import Role, Session
from modqueue.auth.permissions import has_permission, require_role
from modqueue.models.item import (
    ItemKind,
    ModerationItem,
    Notification,
    NotificationType,
    RiskLevel,
    utc_now,
)
from modqueue.storage.item_store import ItemStore

logger = logging.getLogger(__name__)

ESCALATION_MIN_PRIORITY = 50
ESCALATION_WINDOW = timedelta(hours=1)

_HIGH_RISK_PRIORITY = {RiskLevel.critical: 100, RiskLevel.high: 75}


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def high_risk_notification(
    item: ModerationItem, level: RiskLevel, risk: float, now: datetime
) -> Optional[Notification]:
    """Admin alert for a newly ingested high or critical item, else ``None``."""
    if level not in _HIGH_RISK_PRIORITY or not item.is_open:
        return None
    kind = NotificationType.high_risk_flag if item.kind is ItemKind.flag else NotificationType.high_risk_report
    return Notification(
        id=_new_id(),
        type=kind,
        item_type=item.kind.value,
        item_id=item.id,
        severity=level,
        priority=_HIGH_RISK_PRIORITY[level],
        created_at=now.isoformat(),
        metadata={
            "subject": item.subject.key,
            "risk": risk,
            "reasons": list(item.reasons),
            "source": item.source.value,
        },
    )


def escalation_notification(
    item: ModerationItem, previous_priority: int, now: datetime
) -> Optional[Notification]:
    """Admin alert when a priority rise takes an item to the escalation band."""
    if item.priority <= previous_priority or item.priority < ESCALATION_MIN_PRIORITY:
        return None
    return Notification(
        id=_new_id(),
        type=NotificationType.escalated_item,
        item_type=item.kind.value,
        item_id=item.id,
        severity=RiskLevel.high,
        priority=item.priority,
        created_at=now.isoformat(),
        metadata={
            "previous_priority": previous_priority,
            "priority": item.priority,
            "escalated_at": now.isoformat(),
        },
    )


def assignment_notification(
    item: ModerationItem, assignee: Optional[str], assigned_by: str, now: datetime
) -> Optional[Notification]:
    """Alert for the assignee, unless they assigned the item to themselves."""
    if not assignee or assignee == assigned_by:
        return None
    return Notification(
        id=_new_id(),
        type=NotificationType.assigned_item,
        item_type=item.kind.value,
        item_id=item.id,
        severity=RiskLevel.medium,
        priority=50,
        created_at=now.isoformat(),
        recipient=assignee,
        metadata={"assigned_by": assigned_by, "assigned_at": now.isoformat()},
    )


def visible_to(session: Session, notification: Notification) -> bool:
    if notification.recipient is None:
        return has_permission(session, Role.admin)
    return notification.recipient == session.reviewer_id


class NotificationCenter:
    """Per-reviewer view over stored notifications."""

    def __init__(
        self,
        store: ItemStore,
        clock: Callable[[], datetime] = utc_now,
        timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._timeout = timeout

    def unread(self, session: Session, limit: int = 50) -> list[Notification]:
        """Unread notifications for ``session``, highest priority then newest first."""
        require_role(session, Role.reviewer)
        pending = [
            n
            for n in self._store.notifications(timeout=self._timeout)
            if visible_to(session, n) and not n.is_read_by(session.reviewer_id)
        ]
        pending.sort(key=lambda n: n.created_at, reverse=True)
        pending.sort(key=lambda n: n.priority, reverse=True)
        return pending[:limit]

    def mark_read(self, session: Session, notification_ids: Iterable[str]) -> int:
        """Mark notifications read for ``session``; ids it cannot see are ignored."""
        require_role(session, Role.reviewer)
        wanted = set(notification_ids)
        with self._store.transaction(self._timeout, now=self._clock()) as txn:
            ids = [n.id for n in txn.notifications() if n.id in wanted and visible_to(session, n)]
            marked = txn.mark_read(ids, session.reviewer_id)
        logger.info("%s marked %d notification(s) read", session.actor, marked)
        return marked
