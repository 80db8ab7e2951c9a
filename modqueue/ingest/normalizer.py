"""Ingestion normalizer -- raw flag/report records to canonical moderation items.

Raw records arrive in the shape the upstream tables emit: flags carry a
``clip_id`` (or an embedded ``clip`` object), a ``reasons`` list and a numeric
``risk``; reports carry a single ``reason`` and either a ``clip_id`` or a
``profile_id``.  Records whose subject cannot be resolved against the batch's
clips/profiles are dropped -- the content was deleted elsewhere -- and never
fail the batch.

Normalization is pure: nothing here touches a store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from modqueue.models.item import (
    ClipRecord,
    ClipRef,
    ClipStatus,
    ItemKind,
    ModerationItem,
    ProfileRecord,
    ProfileRef,
    ProfileStatus,
    Source,
    Subject,
    WorkflowState,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

RISK_MIN = 0.0
RISK_MAX = 10.0


@dataclass
class RawBatch:
    """One ingestion batch as received from upstream."""

    flags: list[Any] = field(default_factory=list)
    reports: list[Any] = field(default_factory=list)
    clips: list[Any] = field(default_factory=list)
    profiles: list[Any] = field(default_factory=list)


@dataclass
class NormalizedBatch:
    flags: list[ModerationItem] = field(default_factory=list)
    reports: list[ModerationItem] = field(default_factory=list)
    clips: dict[str, ClipRecord] = field(default_factory=dict)
    profiles: dict[str, ProfileRecord] = field(default_factory=dict)
    dropped: int = 0

    @property
    def items(self) -> list[ModerationItem]:
        return [*self.flags, *self.reports]


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _embedded(raw: Mapping[str, Any], *names: str) -> Optional[Mapping[str, Any]]:
    for name in names:
        value = raw.get(name)
        if isinstance(value, Mapping):
            return value
    return None


def _clip_record(raw: Mapping[str, Any]) -> Optional[ClipRecord]:
    clip_id = _as_id(raw.get("id"))
    if clip_id is None:
        return None
    try:
        status = ClipStatus(raw.get("status") or "live")
    except ValueError:
        status = ClipStatus.live
    reactions = raw.get("reactions")
    return ClipRecord(
        id=clip_id,
        status=status,
        title=str(raw.get("title") or ""),
        profile_id=_as_id(raw.get("profile_id")),
        reactions=dict(reactions) if isinstance(reactions, Mapping) else {},
        listens_count=int(raw.get("listens_count") or 0),
    )


def _profile_record(raw: Mapping[str, Any]) -> Optional[ProfileRecord]:
    profile_id = _as_id(raw.get("id"))
    if profile_id is None:
        return None
    try:
        status = ProfileStatus(raw.get("status") or "active")
    except ValueError:
        status = ProfileStatus.active
    return ProfileRecord(id=profile_id, status=status, handle=str(raw.get("handle") or ""))


def _timestamp(raw: Mapping[str, Any], now: datetime) -> str:
    value = raw.get("created_at")
    if value:
        try:
            return parse_timestamp(str(value)).isoformat()
        except ValueError:
            logger.warning("Unparseable created_at %r on record %r", value, raw.get("id"))
    return now.isoformat()


def _risk(value: Any) -> float:
    try:
        risk = float(value)
    except (TypeError, ValueError):
        return RISK_MIN
    return max(RISK_MIN, min(RISK_MAX, risk))


def _source(value: Any, default: Source) -> Source:
    try:
        return Source(value)
    except ValueError:
        return default


def _workflow_state(value: Any) -> WorkflowState:
    try:
        return WorkflowState(value or "pending")
    except ValueError:
        return WorkflowState.pending


def _reasons(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    seen: dict[str, None] = {}
    for reason in value:
        if reason:
            seen.setdefault(str(reason), None)
    return tuple(seen)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _collect_subjects(
    batch: RawBatch,
) -> tuple[dict[str, ClipRecord], dict[str, ProfileRecord]]:
    clips: dict[str, ClipRecord] = {}
    profiles: dict[str, ProfileRecord] = {}

    def add_clip(raw: Any) -> None:
        if not isinstance(raw, Mapping):
            return
        try:
            record = _clip_record(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping malformed clip record %r: %s", raw.get("id"), exc)
            return
        if record is not None:
            clips.setdefault(record.id, record)

    def add_profile(raw: Any) -> None:
        if isinstance(raw, Mapping):
            record = _profile_record(raw)
            if record is not None:
                profiles.setdefault(record.id, record)

    for raw in batch.clips:
        add_clip(raw)
    for raw in batch.profiles:
        add_profile(raw)
    # Upstream queries embed the subject row in the signal row.
    for raw in [*batch.flags, *batch.reports]:
        if isinstance(raw, Mapping):
            add_clip(_embedded(raw, "clip", "clips"))
            add_profile(_embedded(raw, "profile"))
    return clips, profiles


def _clip_id_of(raw: Mapping[str, Any]) -> Optional[str]:
    embedded = _embedded(raw, "clip", "clips")
    if embedded is not None:
        return _as_id(embedded.get("id"))
    return _as_id(raw.get("clip_id"))


def _profile_id_of(raw: Mapping[str, Any]) -> Optional[str]:
    embedded = _embedded(raw, "profile")
    if embedded is not None:
        return _as_id(embedded.get("id"))
    return _as_id(raw.get("profile_id"))


def normalize_flag(
    raw: Mapping[str, Any], clips: Mapping[str, ClipRecord], now: datetime
) -> Optional[ModerationItem]:
    """Normalize one raw flag; ``None`` when its clip is not in the batch."""
    flag_id = _as_id(raw.get("id"))
    clip_id = _clip_id_of(raw)
    if flag_id is None or clip_id is None or clip_id not in clips:
        return None
    return ModerationItem(
        id=flag_id,
        kind=ItemKind.flag,
        subject=ClipRef(clip_id),
        source=_source(raw.get("source"), Source.ai),
        created_at=_timestamp(raw, now),
        reasons=_reasons(raw.get("reasons")),
        risk=_risk(raw.get("risk")),
        workflow_state=_workflow_state(raw.get("workflow_state")),
        assigned_to=_as_id(raw.get("assigned_to")),
        notes=raw.get("moderation_notes") or raw.get("notes"),
        priority=int(raw.get("priority") or 0),
    )


def normalize_report(
    raw: Mapping[str, Any],
    clips: Mapping[str, ClipRecord],
    profiles: Mapping[str, ProfileRecord],
    now: datetime,
) -> Optional[ModerationItem]:
    """Normalize one raw report; ``None`` when it resolves to no subject.

    A resolvable profile reference makes it a profile report; otherwise a
    resolvable clip reference makes it a clip report.
    """
    report_id = _as_id(raw.get("id"))
    if report_id is None:
        return None

    subject: Optional[Subject] = None
    profile_id = _profile_id_of(raw)
    clip_id = _clip_id_of(raw)
    if profile_id is not None and profile_id in profiles:
        subject = ProfileRef(profile_id)
    elif clip_id is not None and clip_id in clips:
        subject = ClipRef(clip_id)
    if subject is None:
        return None

    reporter = _embedded(raw, "reporter")
    reporter_id = _as_id(reporter.get("id")) if reporter else _as_id(raw.get("reporter_profile_id"))
    return ModerationItem(
        id=report_id,
        kind=ItemKind.report,
        subject=subject,
        source=_source(raw.get("source"), Source.community),
        created_at=_timestamp(raw, now),
        reasons=_reasons(raw.get("reason", raw.get("reasons"))),
        risk=None,
        details=str(raw.get("details") or ""),
        reporter_id=reporter_id,
        workflow_state=_workflow_state(raw.get("workflow_state")),
        assigned_to=_as_id(raw.get("assigned_to")),
        notes=raw.get("moderation_notes") or raw.get("notes"),
        priority=int(raw.get("priority") or 0),
    )


def _records(values: Iterable[Any], label: str, result: NormalizedBatch) -> Iterable[Mapping[str, Any]]:
    for raw in values:
        if isinstance(raw, Mapping):
            yield raw
        else:
            result.dropped += 1
            logger.warning("Dropped non-mapping %s record: %r", label, raw)


def normalize_batch(batch: RawBatch, now: Optional[datetime] = None) -> NormalizedBatch:
    """Normalize a raw batch into ordered flag and report sequences."""
    now = now or utc_now()
    clips, profiles = _collect_subjects(batch)
    result = NormalizedBatch(clips=clips, profiles=profiles)

    for raw in _records(batch.flags, "flag", result):
        try:
            item = normalize_flag(raw, clips, now)
        except (TypeError, ValueError) as exc:
            result.dropped += 1
            logger.warning("Dropped malformed flag %r: %s", raw.get("id"), exc)
            continue
        if item is None:
            result.dropped += 1
            logger.warning("Dropped flag %r: clip not resolvable", raw.get("id"))
            continue
        result.flags.append(item)

    for raw in _records(batch.reports, "report", result):
        try:
            item = normalize_report(raw, clips, profiles, now)
        except (TypeError, ValueError) as exc:
            result.dropped += 1
            logger.warning("Dropped malformed report %r: %s", raw.get("id"), exc)
            continue
        if item is None:
            result.dropped += 1
            logger.warning("Dropped report %r: no clip or profile subject", raw.get("id"))
            continue
        result.reports.append(item)

    logger.debug(
        "Normalized %d flags, %d reports (%d dropped)",
        len(result.flags),
        len(result.reports),
        result.dropped,
    )
    return result
