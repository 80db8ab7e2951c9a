"""Bulk action coordinator.

Turns a selection of flag and report ids into one remediation:

1. resolve every selected item to its subject;
2. deduplicate clip subjects, so a clip selected through a flag *and* a
   report is updated exactly once;
3. apply the target status to each clip through the content store;
4. transition every originating item to ``actioned`` (``resolved`` when the
   target is ``live``, i.e. an approval).

Profile-only reports are not touched here; they are returned to the caller for
the profile action path.  The whole run happens while the item store is held
in one transaction.  If any clip update fails, clips already touched are put
back and :class:`~modqueue.errors.PartialBulkFailure` is raised; if the item
commit fails, clips are put back and the original error propagates.  A clip
whose restore also fails is reported in ``unrestored_subjects``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from modqueue.auth.models import Role, Session
from modqueue.auth.permissions import require_role
from modqueue.errors import ModerationError, PartialBulkFailure, ValidationError
from modqueue.models.item import (
    ClipRef,
    ClipStatus,
    ItemKind,
    ModerationItem,
    ProfileRef,
    WorkflowState,
    utc_now,
)
from modqueue.storage.content_store import ContentStore
from modqueue.storage.item_store import ItemStore
from modqueue.workflow.state_machine import WorkflowStateMachine, check_transition

logger = logging.getLogger(__name__)


@dataclass
class BulkRequest:
    status: ClipStatus
    flag_ids: list[str] = field(default_factory=list)
    report_ids: list[str] = field(default_factory=list)
    clip_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        try:
            self.status = ClipStatus(self.status)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid clip status '{self.status}' (expected live, hidden or removed)"
            ) from exc
        self.flag_ids = [str(i) for i in self.flag_ids]
        self.report_ids = [str(i) for i in self.report_ids]
        self.clip_ids = [str(i) for i in self.clip_ids]

    @property
    def is_empty(self) -> bool:
        return not (self.flag_ids or self.report_ids or self.clip_ids)


@dataclass
class BulkResult:
    updated_count: int = 0  # distinct subjects updated
    transitioned_count: int = 0  # items whose workflow state changed
    subject_ids: list[str] = field(default_factory=list)
    item_keys: list[str] = field(default_factory=list)
    profile_report_ids: list[str] = field(default_factory=list)


class SubjectUpdates:
    """Subject changes in flight, remembered so they can be undone.

    An undo is registered before its change is attempted: a call that fails
    part-way (a timed-out PATCH, say) may still have landed.
    """

    def __init__(self, label: str) -> None:
        self._label = label
        self._applied: list[tuple[str, Callable[[], object]]] = []

    def applied(self, subject_id: str, undo: Callable[[], object]) -> None:
        self._applied.append((subject_id, undo))

    def rollback(self) -> list[str]:
        """Undo every registered change, newest first.

        Returns the subjects whose restore failed, in the order they were applied.
        """
        unrestored: list[str] = []
        for subject_id, undo in reversed(self._applied):
            try:
                undo()
            except Exception:
                logger.exception("Could not restore %s %s during rollback", self._label, subject_id)
                unrestored.append(subject_id)
            else:
                logger.warning("Restored %s %s after failed bulk action", self._label, subject_id)
        self._applied.clear()
        unrestored.reverse()
        return unrestored


def failure_message(label: str, subject_id: str, unrestored: list[str]) -> str:
    if unrestored:
        return (
            f"Could not update {label} '{subject_id}'; rolled back except "
            f"{', '.join(unrestored)}, which could not be restored"
        )
    return f"Could not update {label} '{subject_id}'; no changes were kept"


def rollback_after_error(updates: SubjectUpdates, exc: Exception) -> None:
    """Roll back after a failure outside the subject updates."""
    unrestored = updates.rollback()
    if unrestored:
        logger.error("Subjects left changed after failed bulk action: %s", ", ".join(unrestored))
        if isinstance(exc, ModerationError):
            exc.details["unrestored_subjects"] = unrestored


def target_state_for(status: ClipStatus) -> WorkflowState:
    """An approval leaves content live and resolves the signal."""
    return WorkflowState.resolved if status is ClipStatus.live else WorkflowState.actioned


class BulkActionCoordinator:
    """Applies one clip status to many selected items atomically."""

    def __init__(
        self,
        store: ItemStore,
        content: ContentStore,
        workflow: WorkflowStateMachine,
        clock: Callable[[], datetime] = utc_now,
        timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._content = content
        self._workflow = workflow
        self._clock = clock
        self._timeout = timeout

    def _resolve_items(self, txn, request: BulkRequest) -> list[ModerationItem]:
        items: list[ModerationItem] = []
        seen: set[str] = set()
        for kind, ids in ((ItemKind.flag, request.flag_ids), (ItemKind.report, request.report_ids)):
            for item_id in ids:
                item = txn.get(kind, item_id)
                if item.key not in seen:
                    seen.add(item.key)
                    items.append(item)
        return items

    def execute(
        self,
        session: Session,
        request: BulkRequest,
        only_clip: Optional[str] = None,
    ) -> BulkResult:
        """Run a bulk action.

        ``only_clip`` restricts the run to one clip (the single-clip action):
        every selected item must then reference that clip.
        """
        require_role(session, Role.reviewer)
        if request.is_empty:
            raise ValidationError("Select at least one flag, report or clip")

        target = target_state_for(request.status)
        result = BulkResult()
        updates = SubjectUpdates("clip")
        try:
            with self._store.transaction(self._timeout, now=self._clock()) as txn:
                items = self._resolve_items(txn, request)

                # Validate everything before touching any subject.
                clip_ids: dict[str, None] = dict.fromkeys(request.clip_ids)
                originating: list[ModerationItem] = []
                for item in items:
                    subject = item.subject
                    if isinstance(subject, ClipRef):
                        check_transition(item, target)
                        clip_ids.setdefault(subject.clip_id, None)
                        originating.append(item)
                    elif isinstance(subject, ProfileRef):
                        result.profile_report_ids.append(item.id)
                    else:
                        raise TypeError(f"Unknown subject type: {subject!r}")

                if only_clip is not None:
                    stray = [c for c in clip_ids if c != only_clip]
                    if stray or result.profile_report_ids:
                        raise ValidationError(
                            f"Selected items must all reference clip '{only_clip}'",
                            details={"other_clips": stray, "profile_reports": result.profile_report_ids},
                        )
                    clip_ids.setdefault(only_clip, None)

                previous = {
                    clip_id: self._content.get_clip(clip_id, timeout=self._timeout).status
                    for clip_id in clip_ids
                }

                for clip_id in clip_ids:
                    updates.applied(
                        clip_id,
                        lambda c=clip_id, p=previous[clip_id]: self._content.set_clip_status(
                            c, p, timeout=self._timeout
                        ),
                    )
                    try:
                        self._content.set_clip_status(clip_id, request.status, timeout=self._timeout)
                    except Exception as exc:
                        logger.error("Clip %s update failed during bulk action: %s", clip_id, exc)
                        unrestored = updates.rollback()
                        raise PartialBulkFailure(
                            failure_message("clip", clip_id, unrestored),
                            failed_subjects=[clip_id],
                            flag_ids=request.flag_ids,
                            report_ids=request.report_ids,
                            clip_ids=request.clip_ids,
                            unrestored_subjects=unrestored,
                        ) from exc

                for item in originating:
                    before = item.workflow_state
                    stored = self._workflow.apply_state(
                        txn,
                        session,
                        item,
                        target,
                        notes=f"clip {item.subject.clip_id} set to {request.status.value}",
                    )
                    result.item_keys.append(stored.key)
                    if stored.workflow_state is not before:
                        result.transitioned_count += 1
        except PartialBulkFailure:
            raise
        except Exception as exc:
            rollback_after_error(updates, exc)
            raise

        result.subject_ids = list(clip_ids)
        result.updated_count = len(result.subject_ids)
        logger.info(
            "Bulk %s by %s: %d clip(s) updated, %d item(s) transitioned, %d profile report(s) deferred",
            request.status.value,
            session.actor,
            result.updated_count,
            result.transitioned_count,
            len(result.profile_report_ids),
        )
        return result
