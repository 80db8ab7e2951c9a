"""Workflow state machine for moderation items.

States::

    pending ──> in_review ──> resolved
       │                 └──> actioned
       └──> resolved | actioned          (direct decision from the queue)
    resolved | actioned ──> in_review    (explicit, audited re-open)

Every operation is a read-modify-write inside one item-store transaction and
is recorded in the moderation history.  Repeating an operation with the value
already stored is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from modqueue.auth.models import Role, Session
from modqueue.auth.permissions import has_permission, require_role
from modqueue.errors import Conflict, Forbidden, InvalidTransition
from modqueue.models.item import ItemKind, ModerationItem, WorkflowState, utc_now
from modqueue.queue.scorer import SubjectSignals, score_item, subject_signals
from modqueue.storage.item_store import ItemStore, ItemTransaction
from modqueue.workflow.notifications import assignment_notification

logger = logging.getLogger(__name__)

TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.pending: frozenset(
        {WorkflowState.in_review, WorkflowState.resolved, WorkflowState.actioned}
    ),
    WorkflowState.in_review: frozenset({WorkflowState.resolved, WorkflowState.actioned}),
    WorkflowState.resolved: frozenset({WorkflowState.in_review}),
    WorkflowState.actioned: frozenset({WorkflowState.in_review}),
}


def is_reopen(current: WorkflowState, new: WorkflowState) -> bool:
    return current.is_terminal and new is WorkflowState.in_review


def check_transition(item: ModerationItem, new_state: WorkflowState) -> None:
    """Raise :class:`InvalidTransition` unless ``item`` may move to ``new_state``."""
    current = item.workflow_state
    if new_state is current:
        return
    if new_state not in TRANSITIONS[current]:
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[current]))
        raise InvalidTransition(
            f"Cannot move {item.kind.value} '{item.id}' from {current.value} to {new_state.value}"
            f" (allowed: {allowed})",
            details={"from": current.value, "to": new_state.value},
        )


def check_version(item: ModerationItem, expected_version: Optional[int]) -> None:
    """Raise :class:`Conflict` when the caller read an older version of ``item``."""
    if expected_version is not None and expected_version != item.version:
        raise Conflict(
            f"{item.kind.value.capitalize()} '{item.id}' was modified by someone else",
            details={"expected_version": expected_version, "current_version": item.version},
        )


def cached_priority(
    txn: ItemTransaction, item: ModerationItem, now: datetime, backlog_age_hours: float
) -> int:
    """Priority to cache on ``item`` for sort performance, given the stored population."""
    population = [i for i in txn.items() if i.key != item.key] + [item]
    signals = subject_signals(population).get(item.subject.key, SubjectSignals())
    return score_item(item, signals, now, backlog_age_hours).priority


class WorkflowStateMachine:
    """Owns assignment, notes and lifecycle state of moderation items."""

    def __init__(
        self,
        store: ItemStore,
        clock: Callable[[], datetime] = utc_now,
        timeout: Optional[float] = None,
        reopen_requires_admin: bool = True,
        backlog_age_hours: float = 24.0,
    ) -> None:
        self._store = store
        self._clock = clock
        self._timeout = timeout
        self._reopen_requires_admin = reopen_requires_admin
        self._backlog_age_hours = backlog_age_hours

    # ------------------------------------------------------------------
    # Shared building blocks (also used by the bulk coordinators)
    # ------------------------------------------------------------------

    def check_reopen_allowed(self, session: Session, item: ModerationItem, new_state: WorkflowState) -> None:
        if (
            is_reopen(item.workflow_state, new_state)
            and self._reopen_requires_admin
            and not has_permission(session, Role.admin)
        ):
            raise Forbidden(f"Re-opening a {item.workflow_state.value} item requires the admin role")

    def apply_state(
        self,
        txn: ItemTransaction,
        session: Session,
        item: ModerationItem,
        new_state: WorkflowState,
        expected_version: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ModerationItem:
        """Transition ``item`` inside an open transaction and audit it."""
        check_version(item, expected_version)
        check_transition(item, new_state)
        if new_state is item.workflow_state:
            return item
        self.check_reopen_allowed(session, item, new_state)

        now = txn.now
        changes: dict = {"workflow_state": new_state}
        if new_state.is_terminal:
            changes["reviewed_at"] = now.isoformat()
            changes["reviewed_by"] = session.actor
        updated = item.with_changes(**changes)
        updated = updated.with_changes(
            priority=cached_priority(txn, updated, now, self._backlog_age_hours)
        )
        stored = txn.update(updated, item.version)

        if is_reopen(item.workflow_state, new_state):
            action = "reopened"
        elif new_state.is_terminal:
            action = new_state.value
        else:
            action = "state_changed"
        txn.record(
            item,
            action,
            session.actor,
            previous_value=item.workflow_state.value,
            new_value=new_state.value,
            notes=notes,
        )
        logger.info(
            "%s %s: %s -> %s by %s",
            item.kind.value,
            item.id,
            item.workflow_state.value,
            new_state.value,
            session.actor,
        )
        return stored

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def assign(
        self,
        session: Session,
        kind: ItemKind | str,
        item_id: str,
        reviewer_id: Optional[str],
        expected_version: Optional[int] = None,
    ) -> ModerationItem:
        """Set or clear ``assigned_to``; the workflow state is left alone."""
        require_role(session, Role.reviewer)
        with self._store.transaction(self._timeout, now=self._clock()) as txn:
            item = txn.get(kind, item_id)
            check_version(item, expected_version)
            if item.assigned_to == reviewer_id:
                return item
            stored = txn.update(item.with_changes(assigned_to=reviewer_id), item.version)
            txn.record(
                item,
                "assigned" if reviewer_id else "unassigned",
                session.actor,
                previous_value=item.assigned_to,
                new_value=reviewer_id,
            )
            notification = assignment_notification(stored, reviewer_id, session.actor, txn.now)
            if notification is not None:
                txn.notify(notification)
        logger.info("%s %s assigned to %s by %s", item.kind.value, item_id, reviewer_id, session.actor)
        return stored

    def set_notes(
        self,
        session: Session,
        kind: ItemKind | str,
        item_id: str,
        text: Optional[str],
        expected_version: Optional[int] = None,
    ) -> ModerationItem:
        """Replace the reviewer notes on an item."""
        require_role(session, Role.reviewer)
        text = text or None
        with self._store.transaction(self._timeout, now=self._clock()) as txn:
            item = txn.get(kind, item_id)
            check_version(item, expected_version)
            if item.notes == text:
                return item
            stored = txn.update(item.with_changes(notes=text), item.version)
            txn.record(
                item,
                "note_added" if text else "notes_cleared",
                session.actor,
                previous_value=item.notes,
                new_value=text,
            )
        return stored

    def set_state(
        self,
        session: Session,
        kind: ItemKind | str,
        item_id: str,
        new_state: WorkflowState | str,
        expected_version: Optional[int] = None,
    ) -> ModerationItem:
        """Move an item along a legal edge of the workflow graph."""
        require_role(session, Role.reviewer)
        new_state = WorkflowState(new_state)
        with self._store.transaction(self._timeout, now=self._clock()) as txn:
            item = txn.get(kind, item_id)
            return self.apply_state(txn, session, item, new_state, expected_version)

    def resolve(
        self,
        session: Session,
        kind: ItemKind | str,
        item_id: str,
        expected_version: Optional[int] = None,
    ) -> ModerationItem:
        """Mark an item as not actionable."""
        return self.set_state(session, kind, item_id, WorkflowState.resolved, expected_version)
