"""Moderation item domain models: subjects, workflow states, and the item itself."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class ItemKind(str, Enum):
    flag = "flag"  # automated classifier finding
    report = "report"  # human-submitted complaint


class Source(str, Enum):
    ai = "ai"
    community = "community"


class WorkflowState(str, Enum):
    """Review lifecycle: pending -> in_review -> resolved | actioned."""

    pending = "pending"
    in_review = "in_review"
    resolved = "resolved"
    actioned = "actioned"

    @property
    def is_terminal(self) -> bool:
        """Terminal for backlog purposes only; reopening is always possible."""
        return self in (WorkflowState.resolved, WorkflowState.actioned)


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class SubjectKind(str, Enum):
    clip = "clip"
    profile = "profile"


class ClipStatus(str, Enum):
    live = "live"
    hidden = "hidden"
    removed = "removed"


class ProfileStatus(str, Enum):
    active = "active"
    banned = "banned"
    warned = "warned"


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClipRef:
    """Reference to a clip under review."""

    clip_id: str

    @property
    def kind(self) -> SubjectKind:
        return SubjectKind.clip

    @property
    def key(self) -> str:
        return f"clip:{self.clip_id}"


@dataclass(frozen=True)
class ProfileRef:
    """Reference to a profile under review."""

    profile_id: str

    @property
    def kind(self) -> SubjectKind:
        return SubjectKind.profile

    @property
    def key(self) -> str:
        return f"profile:{self.profile_id}"


Subject = Union[ClipRef, ProfileRef]


def subject_to_dict(subject: Subject) -> dict[str, str]:
    if isinstance(subject, ClipRef):
        return {"kind": "clip", "id": subject.clip_id}
    if isinstance(subject, ProfileRef):
        return {"kind": "profile", "id": subject.profile_id}
    raise TypeError(f"Unknown subject type: {subject!r}")


def subject_from_dict(d: dict[str, Any]) -> Subject:
    kind = SubjectKind(d["kind"])
    if kind is SubjectKind.clip:
        return ClipRef(clip_id=str(d["id"]))
    if kind is SubjectKind.profile:
        return ProfileRef(profile_id=str(d["id"]))
    raise TypeError(f"Unknown subject kind: {kind!r}")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 string into an aware UTC datetime.

    Naive values are assumed to be UTC.
    """
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Moderation item
# ---------------------------------------------------------------------------

# Fields written once at ingestion and never again.
IMMUTABLE_FIELDS = frozenset(
    {"id", "kind", "subject", "reasons", "risk", "source", "created_at", "details", "reporter_id"}
)

# Fields the workflow is allowed to change.
WORKFLOW_FIELDS = frozenset(
    {"workflow_state", "assigned_to", "notes", "priority", "reviewed_at", "reviewed_by"}
)


@dataclass
class ModerationItem:
    """A single safety signal (flag or report) about a clip or profile."""

    id: str
    kind: ItemKind
    subject: Subject
    source: Source
    created_at: str  # ISO 8601, UTC
    reasons: tuple[str, ...] = ()
    risk: Optional[float] = None  # classifier score for flags, derived for reports
    details: str = ""
    reporter_id: Optional[str] = None

    # Workflow
    workflow_state: WorkflowState = WorkflowState.pending
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    priority: int = 0
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    version: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.kind, str):
            self.kind = ItemKind(self.kind)
        if isinstance(self.source, str):
            self.source = Source(self.source)
        if isinstance(self.workflow_state, str):
            self.workflow_state = WorkflowState(self.workflow_state)
        self.reasons = tuple(self.reasons)

    @property
    def key(self) -> str:
        """Store key; ids are only unique within a kind."""
        return item_key(self.kind, self.id)

    @property
    def is_profile_report(self) -> bool:
        return self.kind is ItemKind.report and isinstance(self.subject, ProfileRef)

    @property
    def is_open(self) -> bool:
        return not self.workflow_state.is_terminal

    def created(self) -> datetime:
        return parse_timestamp(self.created_at)

    def with_changes(self, **changes: Any) -> ModerationItem:
        """Return a copy with workflow fields changed.

        Raises ``ValueError`` when asked to touch an ingestion-time field.
        """
        illegal = set(changes) - WORKFLOW_FIELDS
        if illegal:
            raise ValueError(f"Fields are immutable after ingestion: {sorted(illegal)}")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "subject": subject_to_dict(self.subject),
            "source": self.source.value,
            "created_at": self.created_at,
            "reasons": list(self.reasons),
            "risk": self.risk,
            "details": self.details,
            "reporter_id": self.reporter_id,
            "workflow_state": self.workflow_state.value,
            "assigned_to": self.assigned_to,
            "notes": self.notes,
            "priority": self.priority,
            "reviewed_at": self.reviewed_at,
            "reviewed_by": self.reviewed_by,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ModerationItem:
        return cls(
            id=str(d["id"]),
            kind=ItemKind(d["kind"]),
            subject=subject_from_dict(d["subject"]),
            source=Source(d.get("source", "ai")),
            created_at=d["created_at"],
            reasons=tuple(d.get("reasons", ())),
            risk=d.get("risk"),
            details=d.get("details", ""),
            reporter_id=d.get("reporter_id"),
            workflow_state=WorkflowState(d.get("workflow_state", "pending")),
            assigned_to=d.get("assigned_to"),
            notes=d.get("notes"),
            priority=int(d.get("priority", 0)),
            reviewed_at=d.get("reviewed_at"),
            reviewed_by=d.get("reviewed_by"),
            version=int(d.get("version", 0)),
        )


def item_key(kind: ItemKind | str, item_id: str) -> str:
    kind_value = kind.value if isinstance(kind, ItemKind) else ItemKind(kind).value
    return f"{kind_value}:{item_id}"


# ---------------------------------------------------------------------------
# Content subjects (owned by the content store)
# ---------------------------------------------------------------------------


@dataclass
class ClipRecord:
    id: str
    status: ClipStatus = ClipStatus.live
    title: str = ""
    profile_id: Optional[str] = None
    reactions: dict[str, int] = field(default_factory=dict)
    listens_count: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = ClipStatus(self.status)


@dataclass
class ProfileRecord:
    id: str
    status: ProfileStatus = ProfileStatus.active
    handle: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = ProfileStatus(self.status)


@dataclass
class HistoryEntry:
    """One audited workflow action on a moderation item."""

    id: str
    timestamp: str
    item_type: str
    item_id: str
    action: str  # assigned | unassigned | state_changed | reopened | note_added | ...
    actor: str
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationType(str, Enum):
    high_risk_flag = "high_risk_flag"
    high_risk_report = "high_risk_report"
    escalated_item = "escalated_item"
    assigned_item = "assigned_item"


@dataclass
class Notification:
    """An alert about a moderation item.

    ``recipient`` is a reviewer id, or ``None`` for an alert addressed to every
    admin.  Broadcast alerts are read per reviewer, so ``read_by`` lists who
    has seen it.
    """

    id: str
    type: NotificationType
    item_type: str
    item_id: str
    severity: RiskLevel
    priority: int
    created_at: str
    recipient: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    read_by: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.type = NotificationType(self.type)
        self.severity = RiskLevel(self.severity)

    @property
    def item_key(self) -> str:
        return item_key(self.item_type, self.item_id)

    def is_read_by(self, reviewer_id: str) -> bool:
        return reviewer_id in self.read_by

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "severity": self.severity.value,
            "priority": self.priority,
            "created_at": self.created_at,
            "recipient": self.recipient,
            "metadata": dict(self.metadata),
            "read_by": list(self.read_by),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Notification:
        return cls(
            id=d["id"],
            type=d["type"],
            item_type=d["item_type"],
            item_id=d["item_id"],
            severity=d.get("severity", "high"),
            priority=int(d.get("priority", 0)),
            created_at=d.get("created_at", ""),
            recipient=d.get("recipient"),
            metadata=d.get("metadata") or {},
            read_by=list(d.get("read_by") or []),
        )
