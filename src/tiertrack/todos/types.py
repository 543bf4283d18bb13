"""Todo subsystem record types.

All records are plain dataclasses that serialize to JSON-safe dicts with
``to_dict``/``from_dict``; timestamps are timezone-aware datetimes in memory
and ISO-8601 strings on disk. The string enums here are closed: citation,
trigger and change-log code all switch over them, so a new value has to be
handled in each of those places.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


# =============================================================================
# Enumerations
# =============================================================================


class TodoTier(StrEnum):
    FEATURE = "feature"
    PHASE = "phase"
    SESSION = "session"
    TASK = "task"


TIER_ORDER: tuple[TodoTier, ...] = (
    TodoTier.FEATURE,
    TodoTier.PHASE,
    TodoTier.SESSION,
    TodoTier.TASK,
)


def tier_depth(tier: TodoTier | str) -> int:
    return TIER_ORDER.index(TodoTier(tier))


def parent_tier(tier: TodoTier | str) -> TodoTier | None:
    depth = tier_depth(tier)
    return TIER_ORDER[depth - 1] if depth > 0 else None


class TodoStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


class Severity(StrEnum):
    """Shared ordering for citation priorities and conflict severities."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Citation priorities use the same four levels.
CitationPriority = Severity

_SEVERITY_RANK = {s: i for i, s in enumerate(Severity)}


def severity_rank(value: Severity | str) -> int:
    return _SEVERITY_RANK[Severity(value)]


def at_least(value: Severity | str, minimum: Severity | str) -> bool:
    return severity_rank(value) >= severity_rank(minimum)


class ChangeType(StrEnum):
    TODO_CREATED = "todo_created"
    TODO_UPDATED = "todo_updated"
    TODO_DELETED = "todo_deleted"
    TODO_MOVED = "todo_moved"
    TODO_STATUS_CHANGED = "todo_status_changed"
    PROPAGATION_TRIGGERED = "propagation_triggered"
    PROPAGATION_COMPLETED = "propagation_completed"
    PROPAGATION_CONFLICT = "propagation_conflict"
    PROPAGATION_PRESERVED = "propagation_preserved"
    CHANGE_REQUEST_CREATED = "change_request_created"
    CHANGE_REQUEST_RESOLVED = "change_request_resolved"
    CHANGE_REQUEST_DISMISSED = "change_request_dismissed"
    PLANNING_DOC_UPDATED = "planning_doc_updated"
    PLANNING_DOC_SYNCED = "planning_doc_synced"
    BULK_UPDATE = "bulk_update"
    BULK_CREATE = "bulk_create"
    BULK_DELETE = "bulk_delete"
    ROLLBACK_APPLIED = "rollback_applied"

    @property
    def is_propagation(self) -> bool:
        return self.value.startswith("propagation_")

    @property
    def is_planning_doc(self) -> bool:
        return self.value.startswith("planning_doc_")


class CitationType(StrEnum):
    STATUS_CHANGE = "status_change"
    DESCRIPTION_CHANGE = "description_change"
    PARENT_CHANGE = "parent_change"
    PLANNING_DOC_CHANGE = "planning_doc_change"
    PROPAGATION_CHANGE = "propagation_change"
    CONFLICT_DETECTED = "conflict_detected"
    ROLLBACK_APPLIED = "rollback_applied"


class CitationContext(StrEnum):
    """Workflow junctions at which citations may be surfaced."""

    SESSION_START = "session-start"
    SESSION_CHECKPOINT = "session-checkpoint"
    SESSION_END = "session-end"
    PHASE_START = "phase-start"
    PHASE_CHECKPOINT = "phase-checkpoint"
    PHASE_END = "phase-end"
    TASK_START = "task-start"
    TASK_CHECKPOINT = "task-checkpoint"
    CONFLICT_DETECTION = "conflict-detection"
    PLANNING_DOC_UPDATE = "planning-doc-update"


class AbstractionLevel(StrEnum):
    HIGH = "high"
    MEDIUM_HIGH = "medium-high"
    MEDIUM = "medium"
    LOW = "low"


class DetailLevel(StrEnum):
    HIGH_LEVEL = "high-level"
    FOCUSED = "focused"
    GRANULAR = "granular"


# Coarseness ranks: larger means coarser.
ABSTRACTION_COARSENESS: dict[AbstractionLevel, int] = {
    AbstractionLevel.LOW: 0,
    AbstractionLevel.MEDIUM: 1,
    AbstractionLevel.MEDIUM_HIGH: 2,
    AbstractionLevel.HIGH: 3,
}
DETAIL_COARSENESS: dict[DetailLevel, int] = {
    DetailLevel.GRANULAR: 0,
    DetailLevel.FOCUSED: 1,
    DetailLevel.HIGH_LEVEL: 2,
}


# =============================================================================
# Helpers
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _dt_str(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _str_list(value: Any) -> list[str]:
    if not value:
        return []
    return [str(v) for v in value]


# =============================================================================
# Scope
# =============================================================================


@dataclass
class Scope:
    """Abstraction/detail policy attached to a todo."""

    level: TodoTier
    abstraction: AbstractionLevel
    detail_level: DetailLevel
    allowed_details: list[str] = field(default_factory=list)
    forbidden_details: list[str] = field(default_factory=list)
    inherited_from: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "abstraction": self.abstraction.value,
            "detail_level": self.detail_level.value,
            "allowed_details": list(self.allowed_details),
            "forbidden_details": list(self.forbidden_details),
            "inherited_from": self.inherited_from,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scope:
        return cls(
            level=TodoTier(data["level"]),
            abstraction=AbstractionLevel(data["abstraction"]),
            detail_level=DetailLevel(data["detail_level"]),
            allowed_details=_str_list(data.get("allowed_details")),
            forbidden_details=_str_list(data.get("forbidden_details")),
            inherited_from=data.get("inherited_from"),
        )


# =============================================================================
# Citation
# =============================================================================


@dataclass
class CitationMetadata:
    reason: str | None = None
    impact: str | None = None
    affected_todos: list[str] = field(default_factory=list)
    requires_review: bool = False
    review_deadline: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "impact": self.impact,
            "affected_todos": list(self.affected_todos),
            "requires_review": self.requires_review,
            "review_deadline": _dt_str(self.review_deadline),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CitationMetadata:
        data = data or {}
        return cls(
            reason=data.get("reason"),
            impact=data.get("impact"),
            affected_todos=_str_list(data.get("affected_todos")),
            requires_review=bool(data.get("requires_review", False)),
            review_deadline=_parse_dt(data.get("review_deadline")),
        )


@dataclass
class Citation:
    """A directed edge from a todo to a change-log entry it should know about."""

    id: str
    change_log_id: str
    type: CitationType
    priority: CitationPriority
    context: list[CitationContext]
    created_at: datetime
    reviewed_at: datetime | None = None
    dismissed_at: datetime | None = None
    metadata: CitationMetadata = field(default_factory=CitationMetadata)
    related_citations: list[str] = field(default_factory=list)

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None

    def is_deferred(self, now: datetime | None = None) -> bool:
        deadline = self.metadata.review_deadline
        return deadline is not None and deadline > (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "change_log_id": self.change_log_id,
            "type": self.type.value,
            "priority": self.priority.value,
            "context": [c.value for c in self.context],
            "created_at": self.created_at.isoformat(),
            "reviewed_at": _dt_str(self.reviewed_at),
            "dismissed_at": _dt_str(self.dismissed_at),
            "metadata": self.metadata.to_dict(),
            "related_citations": list(self.related_citations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Citation:
        return cls(
            id=str(data["id"]),
            change_log_id=str(data["change_log_id"]),
            type=CitationType(data["type"]),
            priority=CitationPriority(data.get("priority", "medium")),
            context=[CitationContext(c) for c in data.get("context", [])],
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            reviewed_at=_parse_dt(data.get("reviewed_at")),
            dismissed_at=_parse_dt(data.get("dismissed_at")),
            metadata=CitationMetadata.from_dict(data.get("metadata")),
            related_citations=_str_list(data.get("related_citations")),
        )


# =============================================================================
# Todo
# =============================================================================

# Content fields a rollback may restore. Identity, timestamps of the record
# itself and citation bookkeeping are never rolled back.
RESTORABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "parent_id",
    "completed_at",
    "blocked_by",
    "blocks",
    "tags",
    "metadata",
    "scope",
)


@dataclass
class Todo:
    """A tracked unit of work in the feature/phase/session/task hierarchy."""

    id: str
    title: str
    description: str
    status: TodoStatus
    tier: TodoTier
    parent_id: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    citations: list[Citation] = field(default_factory=list)
    scope: Scope | None = None

    def citation(self, citation_id: str) -> Citation | None:
        for citation in self.citations:
            if citation.id == citation_id:
                return citation
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "tier": self.tier.value,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": _dt_str(self.completed_at),
            "blocked_by": list(self.blocked_by),
            "blocks": list(self.blocks),
            "tags": list(self.tags),
            "metadata": json.loads(json.dumps(self.metadata, default=str)),
            "citations": [c.to_dict() for c in self.citations],
            "scope": self.scope.to_dict() if self.scope else None,
        }

    def fields(self, names: list[str] | tuple[str, ...]) -> dict[str, Any]:
        """Serialized values for a subset of fields (change-log snapshots)."""
        data = self.to_dict()
        return {name: data[name] for name in names if name in data}

    def copy(self) -> Todo:
        return Todo.from_dict(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Todo:
        scope = data.get("scope")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            status=TodoStatus(data.get("status", TodoStatus.PENDING.value)),
            tier=TodoTier(data["tier"]),
            parent_id=data.get("parent_id"),
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            updated_at=_parse_dt(data.get("updated_at")) or utc_now(),
            completed_at=_parse_dt(data.get("completed_at")),
            blocked_by=_str_list(data.get("blocked_by")),
            blocks=_str_list(data.get("blocks")),
            tags=_str_list(data.get("tags")),
            metadata=dict(data.get("metadata") or {}),
            citations=[Citation.from_dict(c) for c in data.get("citations") or []],
            scope=Scope.from_dict(scope) if scope else None,
        )


# =============================================================================
# Change log
# =============================================================================


@dataclass(frozen=True)
class ChangeLogEntry:
    """Immutable record of one mutation.

    ``id``, ``timestamp`` and ``sequence`` are assigned by ChangeLog.append;
    build entries with the defaults and let the log fill them in.
    """

    change_type: ChangeType
    tier: TodoTier
    todo_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    reason: str | None = None
    propagation_triggered: bool = False
    related_changes: tuple[str, ...] = ()
    conflicts: tuple[dict[str, Any], ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    author: str = "system"
    id: str = ""
    timestamp: datetime | None = None
    sequence: int = 0

    def changed_fields(self) -> list[str]:
        """Fields whose value differs between ``before`` and ``after``."""
        before = self.before or {}
        after = self.after or {}
        return [k for k in after if before.get(k) != after[k]]

    def max_conflict_severity(self) -> Severity | None:
        levels = [
            Severity(c.get("severity", Severity.MEDIUM)) for c in self.conflicts
        ]
        if not levels:
            return None
        return max(levels, key=severity_rank)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "timestamp": _dt_str(self.timestamp),
            "author": self.author,
            "change_type": self.change_type.value,
            "tier": self.tier.value,
            "todo_id": self.todo_id,
            "before": self.before,
            "after": self.after,
            "reason": self.reason,
            "propagation_triggered": self.propagation_triggered,
            "related_changes": list(self.related_changes),
            "conflicts": [dict(c) for c in self.conflicts],
            "metadata": json.loads(json.dumps(self.metadata, default=str)),
        }

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeLogEntry:
        return cls(
            id=str(data["id"]),
            sequence=int(data.get("sequence", 0)),
            timestamp=_parse_dt(data.get("timestamp")),
            author=str(data.get("author", "system")),
            change_type=ChangeType(data["change_type"]),
            tier=TodoTier(data["tier"]),
            todo_id=data.get("todo_id"),
            before=data.get("before"),
            after=data.get("after"),
            reason=data.get("reason"),
            propagation_triggered=bool(data.get("propagation_triggered", False)),
            related_changes=tuple(_str_list(data.get("related_changes"))),
            conflicts=tuple(dict(c) for c in data.get("conflicts") or []),
            metadata=dict(data.get("metadata") or {}),
        )


# =============================================================================
# Snapshots and rollbacks
# =============================================================================


@dataclass(frozen=True)
class PreviousState:
    """Immutable snapshot of a todo captured before a mutation."""

    id: str
    todo_id: str
    timestamp: datetime
    state: Todo
    change_log_id: str
    log_sequence: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "todo_id": self.todo_id,
            "timestamp": self.timestamp.isoformat(),
            "state": self.state.to_dict(),
            "change_log_id": self.change_log_id,
            "log_sequence": self.log_sequence,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PreviousState:
        return cls(
            id=str(data["id"]),
            todo_id=str(data["todo_id"]),
            timestamp=_parse_dt(data.get("timestamp")) or utc_now(),
            state=Todo.from_dict(data["state"]),
            change_log_id=str(data.get("change_log_id", "")),
            log_sequence=int(data.get("log_sequence", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


class RollbackType(StrEnum):
    FULL = "full"
    SELECTIVE = "selective"
    PARTIAL = "partial"


class RollbackStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CONFLICT = "conflict"


class ConflictType(StrEnum):
    STATE_CONFLICT = "state_conflict"
    RELATIONSHIP_CONFLICT = "relationship_conflict"
    PLANNING_DOC_CONFLICT = "planning_doc_conflict"
    PROPAGATION_CONFLICT = "propagation_conflict"


@dataclass
class RollbackConflict:
    type: ConflictType
    description: str
    severity: Severity
    field: str | None = None
    change_log_id: str | None = None
    resolution: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolution is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "field": self.field,
            "description": self.description,
            "severity": self.severity.value,
            "change_log_id": self.change_log_id,
            "resolution": self.resolution,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackConflict:
        return cls(
            type=ConflictType(data["type"]),
            field=data.get("field"),
            description=str(data.get("description", "")),
            severity=Severity(data.get("severity", Severity.MEDIUM)),
            change_log_id=data.get("change_log_id"),
            resolution=data.get("resolution"),
        )


@dataclass
class Rollback:
    """An attempted or completed restoration of a snapshot."""

    id: str
    timestamp: datetime
    todo_id: str
    rolled_back_to: str
    type: RollbackType
    status: RollbackStatus
    author: str = "system"
    rolled_back_from: str | None = None
    fields: list[str] = field(default_factory=list)
    reason: str | None = None
    conflicts: list[RollbackConflict] = field(default_factory=list)
    related_rollbacks: list[str] = field(default_factory=list)
    change_log_id: str | None = None

    def blocking_conflicts(
        self, threshold: Severity | str = Severity.HIGH
    ) -> list[RollbackConflict]:
        return [
            c
            for c in self.conflicts
            if not c.is_resolved and at_least(c.severity, threshold)
        ]

    def raise_for_conflicts(self) -> None:
        """Raise ConflictError when the rollback was held back by conflicts."""
        from tiertrack.todos.errors import ConflictError, ErrorDetail

        if self.status != RollbackStatus.CONFLICT:
            return
        raise ConflictError(
            f"rollback {self.id} of {self.todo_id} blocked by conflicts",
            [
                ErrorDetail(
                    field=c.field,
                    reason=c.description,
                    suggestion="resolve the newer change or roll back with force",
                )
                for c in self.conflicts
            ],
            conflicts=self.conflicts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "todo_id": self.todo_id,
            "rolled_back_to": self.rolled_back_to,
            "rolled_back_from": self.rolled_back_from,
            "type": self.type.value,
            "fields": list(self.fields),
            "reason": self.reason,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "status": self.status.value,
            "related_rollbacks": list(self.related_rollbacks),
            "change_log_id": self.change_log_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rollback:
        return cls(
            id=str(data["id"]),
            timestamp=_parse_dt(data.get("timestamp")) or utc_now(),
            author=str(data.get("author", "system")),
            todo_id=str(data["todo_id"]),
            rolled_back_to=str(data["rolled_back_to"]),
            rolled_back_from=data.get("rolled_back_from"),
            type=RollbackType(data.get("type", RollbackType.FULL)),
            fields=_str_list(data.get("fields")),
            reason=data.get("reason"),
            conflicts=[RollbackConflict.from_dict(c) for c in data.get("conflicts") or []],
            status=RollbackStatus(data.get("status", RollbackStatus.PENDING)),
            related_rollbacks=_str_list(data.get("related_rollbacks")),
            change_log_id=data.get("change_log_id"),
        )


# =============================================================================
# Triggers
# =============================================================================


class TriggerConditionType(StrEnum):
    HAS_UNREVIEWED_CITATIONS = "has_unreviewed_citations"
    HAS_HIGH_PRIORITY_CITATIONS = "has_high_priority_citations"
    HAS_CITATIONS_IN_CONTEXT = "has_citations_in_context"
    HAS_CONFLICTS = "has_conflicts"
    HAS_HIGH_SEVERITY_CONFLICTS = "has_high_severity_conflicts"
    HAS_CONFLICTS_AFFECTING_TODO = "has_conflicts_affecting_todo"
    HAS_RECENT_CHANGES = "has_recent_changes"
    HAS_PROPAGATION_CHANGES = "has_propagation_changes"
    HAS_PLANNING_DOC_CHANGES = "has_planning_doc_changes"
    TODO_STATUS_CHANGED = "todo_status_changed"
    PARENT_STATUS_CHANGED = "parent_status_changed"
    CHILD_STATUS_CHANGED = "child_status_changed"


class TriggerAction(StrEnum):
    SHOW_CITATIONS = "show_citations"
    BLOCK_UNTIL_REVIEW = "block_until_review"


@dataclass(frozen=True)
class TriggerCondition:
    """Tagged condition: ``type`` selects the evaluator, the rest is payload."""

    type: TriggerConditionType
    priority: CitationPriority | None = None
    severity: Severity | None = None
    hours: float | None = None
    context: CitationContext | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.priority is not None:
            data["priority"] = self.priority.value
        if self.severity is not None:
            data["severity"] = self.severity.value
        if self.hours is not None:
            data["hours"] = self.hours
        if self.context is not None:
            data["context"] = self.context.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerCondition:
        return cls(
            type=TriggerConditionType(data["type"]),
            priority=CitationPriority(data["priority"]) if data.get("priority") else None,
            severity=Severity(data["severity"]) if data.get("severity") else None,
            hours=float(data["hours"]) if data.get("hours") is not None else None,
            context=CitationContext(data["context"]) if data.get("context") else None,
        )


@dataclass(frozen=True)
class TriggerDefinition:
    id: str
    name: str
    junction: CitationContext
    conditions: tuple[TriggerCondition, ...]
    priority: CitationPriority = CitationPriority.MEDIUM
    suppressible: bool = True
    action: TriggerAction = TriggerAction.SHOW_CITATIONS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "junction": self.junction.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "priority": self.priority.value,
            "suppressible": self.suppressible,
            "action": self.action.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerDefinition:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            junction=CitationContext(data["junction"]),
            conditions=tuple(
                TriggerCondition.from_dict(c) for c in data.get("conditions", [])
            ),
            priority=CitationPriority(data.get("priority", "medium")),
            suppressible=bool(data.get("suppressible", True)),
            action=TriggerAction(data.get("action", TriggerAction.SHOW_CITATIONS)),
        )


@dataclass
class Suppression:
    trigger_id: str
    suppressed_until: datetime

    def is_active(self, now: datetime | None = None) -> bool:
        return self.suppressed_until > (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "suppressed_until": self.suppressed_until.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Suppression | None:
        until = _parse_dt(data.get("suppressed_until"))
        if until is None or not data.get("trigger_id"):
            logger.warning("suppression_parse_failed", extra={"record": data})
            return None
        return cls(trigger_id=str(data["trigger_id"]), suppressed_until=until)
