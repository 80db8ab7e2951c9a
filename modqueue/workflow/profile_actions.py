"""Profile action path: ban, warn or dismiss reports filed against a profile.

Bulk clip actions skip profile-only reports and hand them back; this is where
they are decided.  Like the clip path, the profile change and the report
transitions either all stick or none do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from modqueue.auth.models import Role, Session
from modqueue.auth.permissions import require_role
from modqueue.errors import PartialBulkFailure, ValidationError
from modqueue.models.item import ItemKind, ModerationItem, ProfileStatus, WorkflowState, utc_now
from modqueue.storage.content_store import ContentStore
from modqueue.storage.item_store import ItemStore
from modqueue.workflow.bulk import SubjectUpdates, failure_message, rollback_after_error
from modqueue.workflow.state_machine import WorkflowStateMachine, check_transition

logger = logging.getLogger(__name__)


class ProfileAction(str, Enum):
    ban = "ban"
    warn = "warn"
    dismiss = "dismiss"

    @property
    def profile_status(self) -> Optional[ProfileStatus]:
        return {
            ProfileAction.ban: ProfileStatus.banned,
            ProfileAction.warn: ProfileStatus.warned,
        }.get(self)

    @property
    def target_state(self) -> WorkflowState:
        return WorkflowState.resolved if self is ProfileAction.dismiss else WorkflowState.actioned


@dataclass
class ProfileActionResult:
    action: ProfileAction
    profile_ids: list[str] = field(default_factory=list)
    transitioned_count: int = 0


class ProfileActionCoordinator:
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

    def execute(
        self,
        session: Session,
        report_ids: list[str],
        action: ProfileAction | str,
        reason: Optional[str] = None,
    ) -> ProfileActionResult:
        """Apply ``action`` to the profiles behind ``report_ids``.

        ``ban`` and ``warn`` need a reason; it is kept in each report's history.
        """
        require_role(session, Role.reviewer)
        try:
            action = ProfileAction(action)
        except ValueError as exc:
            raise ValidationError(f"Unknown profile action '{action}' (expected ban, warn or dismiss)") from exc
        reason = (reason or "").strip()
        if action is not ProfileAction.dismiss and not reason:
            raise ValidationError(f"A reason is required to {action.value} a profile")
        if not report_ids:
            raise ValidationError("Select at least one profile report")

        result = ProfileActionResult(action=action)
        updates = SubjectUpdates("profile")
        try:
            with self._store.transaction(self._timeout, now=self._clock()) as txn:
                reports: list[ModerationItem] = []
                profile_ids: dict[str, None] = {}
                for report_id in dict.fromkeys(str(r) for r in report_ids):
                    item = txn.get(ItemKind.report, report_id)
                    if not item.is_profile_report:
                        raise ValidationError(f"Report '{report_id}' is not about a profile")
                    check_transition(item, action.target_state)
                    reports.append(item)
                    profile_ids.setdefault(item.subject.profile_id, None)

                status = action.profile_status
                if status is not None:
                    previous = {
                        profile_id: self._content.get_profile(profile_id, timeout=self._timeout).status
                        for profile_id in profile_ids
                    }
                    for profile_id in profile_ids:
                        updates.applied(
                            profile_id,
                            lambda p=profile_id, s=previous[profile_id]: self._content.set_profile_status(
                                p, s, timeout=self._timeout
                            ),
                        )
                        try:
                            self._content.set_profile_status(profile_id, status, timeout=self._timeout)
                        except Exception as exc:
                            logger.error("Profile %s update failed: %s", profile_id, exc)
                            unrestored = updates.rollback()
                            raise PartialBulkFailure(
                                failure_message("profile", profile_id, unrestored),
                                failed_subjects=[profile_id],
                                flag_ids=[],
                                report_ids=list(report_ids),
                                clip_ids=[],
                                unrestored_subjects=unrestored,
                            ) from exc

                for item in reports:
                    before = item.workflow_state
                    stored = self._workflow.apply_state(
                        txn, session, item, action.target_state, notes=reason or action.value
                    )
                    if stored.workflow_state is not before:
                        result.transitioned_count += 1
        except PartialBulkFailure:
            raise
        except Exception as exc:
            rollback_after_error(updates, exc)
            raise

        result.profile_ids = list(profile_ids)
        logger.info(
            "Profile %s by %s: %s (%d report(s) transitioned)",
            action.value,
            session.actor,
            ", ".join(result.profile_ids),
            result.transitioned_count,
        )
        return result
