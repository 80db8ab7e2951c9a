"""Moderation engine facade and action dispatch.

``ModerationEngine`` wires the stores and workflow components together and
exposes them two ways: typed methods (used by the CLI and the tests) and
:meth:`ModerationEngine.dispatch`, the ``{action, ...params}`` control
surface the web layer forwards to.  Dispatch checks the session before it
looks at the action.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from modqueue.auth.models import Role, Session
from modqueue.auth.permissions import require_role
from modqueue.config import Settings
from modqueue.errors import ValidationError
from modqueue.ingest.normalizer import RawBatch, normalize_batch
from modqueue.jobs.batch import BatchScanner
from modqueue.jobs.control import JobControl, JobRun
from modqueue.jobs.tasks import escalate_backlog, scan_subjects
from modqueue.models.item import (
    ClipStatus,
    HistoryEntry,
    ItemKind,
    ModerationItem,
    Notification,
    WorkflowState,
    utc_now,
)
from modqueue.queue.aggregator import QueueEntry, QueueFilters, QueueView, SortKey, build_queue
from modqueue.stats.statistics import ModerationStatistics, compute_statistics
from modqueue.storage.content_store import ContentStore, JsonContentStore
from modqueue.storage.history import ModerationHistory
from modqueue.storage.http_content import HttpContentStore
from modqueue.storage.item_store import ItemStore
from modqueue.workflow.notifications import NotificationCenter, high_risk_notification
from modqueue.workflow.bulk import BulkActionCoordinator, BulkRequest, BulkResult
from modqueue.workflow.profile_actions import ProfileActionCoordinator, ProfileActionResult
from modqueue.workflow.state_machine import WorkflowStateMachine

logger = logging.getLogger(__name__)

MetricsProvider = Callable[[], Mapping[str, Any]]


def _default_content_store(settings: Settings) -> ContentStore:
    if settings.content_api_url:
        return HttpContentStore(
            settings.content_api_url,
            token=settings.content_api_token,
            timeout=settings.store_timeout_seconds,
        )
    return JsonContentStore(settings.data_path, timeout=settings.store_timeout_seconds)


# Filter values the queue UI sends to mean "no filter".
_NO_FILTER = {"", "all", None}


@dataclass
class IngestResult:
    flags_added: int = 0
    reports_added: int = 0
    dropped: int = 0
    subjects_registered: int = 0


class ModerationEngine:
    """Entry point for every moderation operation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        item_store: Optional[ItemStore] = None,
        content_store: Optional[ContentStore] = None,
        metrics_provider: Optional[MetricsProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or Settings()
        timeout = self.settings.store_timeout_seconds
        self.items = item_store or ItemStore(self.settings.data_path, timeout=timeout)
        self.content = content_store or _default_content_store(self.settings)
        self._metrics_provider = metrics_provider
        self._clock = clock

        self.workflow = WorkflowStateMachine(
            self.items,
            clock=clock,
            reopen_requires_admin=self.settings.reopen_requires_admin,
            backlog_age_hours=self.settings.backlog_age_hours,
        )
        self.bulk = BulkActionCoordinator(self.items, self.content, self.workflow, clock=clock)
        self.profiles = ProfileActionCoordinator(self.items, self.content, self.workflow, clock=clock)
        self.history = ModerationHistory(self.items)
        self.notifications = NotificationCenter(self.items, clock=clock)
        self.scanner = BatchScanner(
            group_size=self.settings.scan_group_size,
            max_workers=self.settings.scan_max_workers,
            pause=self.settings.scan_pause_seconds,
        )
        self.jobs = JobControl(clock=clock)
        self.jobs.register(
            "escalate_backlog",
            lambda: escalate_backlog(self.items, self._clock(), self.settings.backlog_age_hours),
        )
        self.jobs.register("scan_subjects", lambda: scan_subjects(self.items, self.content, self.scanner))

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, batch: RawBatch) -> IngestResult:
        """Normalize a raw batch and store the new items and subjects."""
        now = self._clock()
        normalized = normalize_batch(batch, now=now)
        registered = 0
        if isinstance(self.content, JsonContentStore):
            registered = self.content.register(normalized.clips.values(), normalized.profiles.values())

        # Cache the priority each new item would have in the merged population.
        population = self.items.list_items() + normalized.items
        entries = build_queue(population, now, backlog_age_hours=self.settings.backlog_age_hours)
        scored = {e.item.key: e for e in [*entries.flags, *entries.reports]}
        fresh = [
            i.with_changes(priority=scored[i.key].priority) if i.key in scored else i
            for i in normalized.items
        ]
        alerts = [
            n
            for n in (
                high_risk_notification(i, scored[i.key].risk_level, scored[i.key].risk, now)
                for i in fresh
                if i.key in scored
            )
            if n is not None
        ]

        new_flags = self.items.add_items([i for i in fresh if i.kind is ItemKind.flag], alerts)
        new_reports = self.items.add_items([i for i in fresh if i.kind is ItemKind.report], alerts)
        result = IngestResult(
            flags_added=new_flags,
            reports_added=new_reports,
            dropped=normalized.dropped,
            subjects_registered=registered,
        )
        logger.info(
            "Ingested %d flag(s), %d report(s); %d dropped, %d new subject(s)",
            new_flags,
            new_reports,
            normalized.dropped,
            registered,
        )
        return result

    # ------------------------------------------------------------------
    # Queue and reads
    # ------------------------------------------------------------------

    def list_queue(
        self,
        session: Session,
        sort_by: SortKey | str = SortKey.priority,
        filters: Optional[QueueFilters] = None,
    ) -> QueueView:
        require_role(session, Role.reviewer)
        return build_queue(
            self.items.list_items(),
            self._clock(),
            sort_by=sort_by,
            filters=filters,
            backlog_age_hours=self.settings.backlog_age_hours,
        )

    def statistics(self, session: Session, period_days: Optional[int] = None) -> ModerationStatistics:
        require_role(session, Role.reviewer)
        period = self.settings.stats_period_days if period_days is None else period_days
        if period < 1:
            raise ValidationError("periodDays must be at least 1")
        return compute_statistics(
            self.items.list_items(),
            self._clock(),
            period_days=period,
            backlog_age_hours=self.settings.backlog_age_hours,
        )

    def metrics(self, session: Session) -> dict[str, Any]:
        """Pass through whatever the metrics collaborator reports."""
        require_role(session, Role.reviewer)
        if self._metrics_provider is not None:
            return dict(self._metrics_provider())
        items = self.items.list_items()
        return {
            "items_total": len(items),
            "open_items": sum(1 for i in items if i.is_open),
        }

    def item_history(self, session: Session, item_type: ItemKind | str, item_id: str) -> list[HistoryEntry]:
        require_role(session, Role.reviewer)
        kind = ItemKind(item_type)
        self.items.get(kind, item_id)
        return self.history.for_item(kind.value, item_id)

    def export_history(self, session: Session, fmt: str = "json", **filters: Any) -> str:
        require_role(session, Role.admin)
        if fmt not in ("json", "csv"):
            raise ValidationError(f"Unsupported export format '{fmt}' (expected json or csv)")
        return self.history.export_events(fmt, **filters)

    def unread_notifications(self, session: Session, limit: int = 50) -> list[Notification]:
        return self.notifications.unread(session, limit)

    def mark_notifications_read(self, session: Session, notification_ids: Iterable[str]) -> int:
        return self.notifications.mark_read(session, notification_ids)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def assign(self, session: Session, item_type: ItemKind | str, item_id: str,
               reviewer_id: Optional[str], expected_version: Optional[int] = None) -> ModerationItem:
        return self.workflow.assign(session, item_type, item_id, reviewer_id or None, expected_version)

    def set_notes(self, session: Session, item_type: ItemKind | str, item_id: str,
                  notes: Optional[str], expected_version: Optional[int] = None) -> ModerationItem:
        return self.workflow.set_notes(session, item_type, item_id, notes, expected_version)

    def set_state(self, session: Session, item_type: ItemKind | str, item_id: str,
                  state: WorkflowState | str, expected_version: Optional[int] = None) -> ModerationItem:
        return self.workflow.set_state(session, item_type, item_id, state, expected_version)

    def resolve_report(self, session: Session, report_id: str,
                       expected_version: Optional[int] = None) -> ModerationItem:
        return self.workflow.resolve(session, ItemKind.report, report_id, expected_version)

    def update_clip(self, session: Session, clip_id: str, status: ClipStatus | str,
                    flag_id: Optional[str] = None, report_ids: Iterable[str] = ()) -> BulkResult:
        """Set one clip's status and settle the flag/reports raised about it."""
        request = BulkRequest(
            status=status,
            flag_ids=[flag_id] if flag_id else [],
            report_ids=list(report_ids),
            clip_ids=[clip_id],
        )
        return self.bulk.execute(session, request, only_clip=clip_id)

    def bulk_update_clips(self, session: Session, clip_ids: Iterable[str], status: ClipStatus | str,
                          flag_ids: Iterable[str] = (), report_ids: Iterable[str] = ()) -> BulkResult:
        request = BulkRequest(
            status=status,
            flag_ids=list(flag_ids),
            report_ids=list(report_ids),
            clip_ids=list(clip_ids),
        )
        return self.bulk.execute(session, request)

    def moderate_profile(self, session: Session, report_ids: Iterable[str], action: str,
                         reason: Optional[str] = None) -> ProfileActionResult:
        return self.profiles.execute(session, list(report_ids), action, reason)

    def run_job(self, session: Session, name: str) -> JobRun:
        return self.jobs.trigger(session, name)

    def job_status(self, session: Session, name: str) -> Optional[JobRun]:
        return self.jobs.status(session, name)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, action: Optional[str], params: Mapping[str, Any], session: Optional[Session]) -> Any:
        """Run ``action`` with ``params`` and return a JSON-ready result."""
        session = require_role(session, Role.reviewer)
        if not action:
            raise ValidationError("Missing 'action'")
        handler = _ACTIONS.get(action)
        if handler is None:
            raise ValidationError(f"Unknown action '{action}'")
        try:
            return handler(self, session, params)
        except ValueError as exc:
            # Enum coercion of caller-supplied values.
            raise ValidationError(f"Invalid parameters for '{action}': {exc}") from exc


# ---------------------------------------------------------------------------
# Parameter helpers
# ---------------------------------------------------------------------------


def _required(params: Mapping[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise ValidationError(f"Missing required parameter '{name}'")
    return value


def _id_list(params: Mapping[str, Any], name: str) -> list[str]:
    value = params.get(name) or []
    if isinstance(value, (str, int)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"Parameter '{name}' must be a list of ids")
    return [str(v) for v in value]


def _item_kind(params: Mapping[str, Any], name: str = "itemType") -> ItemKind:
    value = _required(params, name)
    try:
        return ItemKind(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {name} '{value}' (expected flag or report)") from exc


def _version(params: Mapping[str, Any]) -> Optional[int]:
    value = params.get("expectedVersion")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("expectedVersion must be an integer") from exc


def _filters(raw: Any) -> Optional[QueueFilters]:
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        raise ValidationError("filters must be an object")

    def pick(*names: str) -> Any:
        for name in names:
            value = raw.get(name)
            if value not in _NO_FILTER:
                return value
        return None

    try:
        return QueueFilters(
            risk_level=pick("riskLevel", "risk_level"),
            source=pick("source"),
            subject_kind=pick("subjectKind", "subject_kind"),
            workflow_state=pick("workflowState", "workflow_state"),
            search=pick("search") or "",
        )
    except ValueError as exc:
        raise ValidationError(f"Invalid filter value: {exc}") from exc


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def entry_to_dict(entry: QueueEntry) -> dict[str, Any]:
    d = entry.item.to_dict()
    d.update(
        risk=entry.risk,
        risk_level=entry.risk_level.value,
        priority=entry.priority,
        related_item_ids=list(entry.related_item_ids),
    )
    return d


def _ack(item: ModerationItem) -> dict[str, Any]:
    return {"ok": True, "item": item.to_dict()}


def _bulk_payload(result: BulkResult) -> dict[str, Any]:
    return {
        "updatedCount": result.updated_count,
        "transitionedCount": result.transitioned_count,
        "clipIds": result.subject_ids,
        "profileReportIds": result.profile_report_ids,
    }


# ---------------------------------------------------------------------------
# Action table
# ---------------------------------------------------------------------------


def _list(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    sort_by = params.get("sortBy") or SortKey.priority.value
    try:
        sort_key = SortKey(sort_by)
    except ValueError as exc:
        raise ValidationError(f"Invalid sortBy '{sort_by}' (expected priority, newest or oldest)") from exc
    view = engine.list_queue(session, sort_key, _filters(params.get("filters")))
    return {
        "flags": [entry_to_dict(e) for e in view.flags],
        "reports": [entry_to_dict(e) for e in view.reports],
    }


def _update_clip(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    result = engine.update_clip(
        session,
        str(_required(params, "clipId")),
        _required(params, "status"),
        flag_id=params.get("flagId") or None,
        report_ids=_id_list(params, "reportIds"),
    )
    return {"ok": True, **_bulk_payload(result)}


def _bulk_update_clips(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    result = engine.bulk_update_clips(
        session,
        _id_list(params, "clipIds"),
        _required(params, "status"),
        flag_ids=_id_list(params, "flagIds"),
        report_ids=_id_list(params, "reportIds"),
    )
    return _bulk_payload(result)


def _assign_item(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    assigned = params.get("assignedTo")
    item = engine.assign(
        session,
        _item_kind(params),
        str(_required(params, "itemId")),
        str(assigned) if assigned else None,
        _version(params),
    )
    return _ack(item)


def _update_notes(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    notes = params.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    item = engine.set_notes(session, _item_kind(params), str(_required(params, "itemId")), notes, _version(params))
    return _ack(item)


def _update_workflow_state(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    raw_state = _required(params, "workflowState")
    try:
        state = WorkflowState(raw_state)
    except ValueError as exc:
        raise ValidationError(f"Invalid workflowState '{raw_state}'") from exc
    item = engine.set_state(session, _item_kind(params), str(_required(params, "itemId")), state, _version(params))
    return _ack(item)


def _resolve_report(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    item = engine.resolve_report(session, str(_required(params, "reportId")), _version(params))
    return _ack(item)


def _statistics(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    period = params.get("periodDays")
    if period is not None:
        try:
            period = int(period)
        except (TypeError, ValueError) as exc:
            raise ValidationError("periodDays must be an integer") from exc
    return engine.statistics(session, period).to_dict()


def _metrics(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    return engine.metrics(session)


def _moderate_profile(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    result = engine.moderate_profile(
        session,
        _id_list(params, "reportIds"),
        _required(params, "profileAction"),
        params.get("reason"),
    )
    return {
        "ok": True,
        "profileAction": result.action.value,
        "profileIds": result.profile_ids,
        "transitionedCount": result.transitioned_count,
    }


def _history(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> list[dict[str, Any]]:
    entries = engine.item_history(session, _item_kind(params), str(_required(params, "itemId")))
    return [asdict(e) for e in entries]


def _notifications(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> list[dict[str, Any]]:
    limit = params.get("limit", 50)
    try:
        limit = int(limit)
    except (TypeError, ValueError) as exc:
        raise ValidationError("limit must be an integer") from exc
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return [n.to_dict() for n in engine.unread_notifications(session, limit)]


def _mark_notifications_read(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    ids = _id_list(params, "notificationIds")
    if not ids:
        raise ValidationError("Missing required parameter 'notificationIds'")
    return {"ok": True, "marked": engine.mark_notifications_read(session, ids)}


def _run_job(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> dict[str, Any]:
    return engine.run_job(session, str(_required(params, "job"))).to_dict()


def _job_status(engine: ModerationEngine, session: Session, params: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    run = engine.job_status(session, str(_required(params, "job")))
    return run.to_dict() if run is not None else None


_ACTIONS: dict[str, Callable[[ModerationEngine, Session, Mapping[str, Any]], Any]] = {
    "list": _list,
    "updateClip": _update_clip,
    "bulkUpdateClips": _bulk_update_clips,
    "assignItem": _assign_item,
    "updateNotes": _update_notes,
    "updateWorkflowState": _update_workflow_state,
    "resolveReport": _resolve_report,
    "getModerationStatistics": _statistics,
    "getMetrics": _metrics,
    "moderateProfile": _moderate_profile,
    "getHistory": _history,
    "getNotifications": _notifications,
    "markNotificationsRead": _mark_notifications_read,
    "runJob": _run_job,
    "getJobStatus": _job_status,
}

ACTIONS = tuple(_ACTIONS)
