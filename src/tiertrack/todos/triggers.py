"""Lookup triggers evaluated at workflow junctions.

A trigger fires when its junction matches, every condition holds and it is
not suppressed. Conditions are tagged records; each ``TriggerConditionType``
has exactly one evaluator in ``_EVALUATORS``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from tiertrack.config.models import TriggerConfig
from tiertrack.todos.changelog import ChangeLog
from tiertrack.todos.citations import CitationEngine
from tiertrack.todos.errors import ErrorDetail, NotFoundError, NotSuppressibleError
from tiertrack.todos.persistence import TRIGGERS_FILE
from tiertrack.todos.store import TodoStore
from tiertrack.todos.types import (
    ChangeLogEntry,
    ChangeType,
    Citation,
    CitationContext,
    CitationPriority,
    CitationType,
    Severity,
    Suppression,
    TriggerAction,
    TriggerCondition,
    TriggerConditionType,
    TriggerDefinition,
    at_least,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class TriggerContext:
    """What the caller is doing at the junction."""

    todo_id: str | None = None
    now: datetime = field(default_factory=utc_now)


def default_triggers() -> list[TriggerDefinition]:
    return [
        TriggerDefinition(
            id="trigger-session-start",
            name="session-start-lookup",
            junction=CitationContext.SESSION_START,
            conditions=(
                TriggerCondition(
                    TriggerConditionType.HAS_UNREVIEWED_CITATIONS,
                    priority=CitationPriority.HIGH,
                ),
                TriggerCondition(TriggerConditionType.HAS_CONFLICTS, severity=Severity.HIGH),
            ),
            priority=CitationPriority.HIGH,
        ),
        TriggerDefinition(
            id="trigger-session-checkpoint",
            name="session-checkpoint-lookup",
            junction=CitationContext.SESSION_CHECKPOINT,
            conditions=(TriggerCondition(TriggerConditionType.HAS_RECENT_CHANGES, hours=24),),
            priority=CitationPriority.MEDIUM,
        ),
        TriggerDefinition(
            id="trigger-conflict-detection",
            name="conflict-detection-lookup",
            junction=CitationContext.CONFLICT_DETECTION,
            conditions=(
                TriggerCondition(TriggerConditionType.HAS_CONFLICTS, severity=Severity.HIGH),
            ),
            priority=CitationPriority.CRITICAL,
            suppressible=False,
            action=TriggerAction.BLOCK_UNTIL_REVIEW,
        ),
        TriggerDefinition(
            id="trigger-phase-start",
            name="phase-start-lookup",
            junction=CitationContext.PHASE_START,
            conditions=(
                TriggerCondition(
                    TriggerConditionType.HAS_UNREVIEWED_CITATIONS,
                    priority=CitationPriority.HIGH,
                ),
            ),
            priority=CitationPriority.HIGH,
        ),
        TriggerDefinition(
            id="trigger-task-start",
            name="task-start-lookup",
            junction=CitationContext.TASK_START,
            conditions=(TriggerCondition(TriggerConditionType.HAS_CONFLICTS_AFFECTING_TODO),),
            priority=CitationPriority.HIGH,
        ),
    ]


class TriggerEngine:
    def __init__(
        self,
        citations: CitationEngine,
        changelog: ChangeLog,
        store: TodoStore,
        config: TriggerConfig | None = None,
    ) -> None:
        self._citations = citations
        self._changelog = changelog
        self._store = store
        self._config = config or TriggerConfig()

    # -- configuration -------------------------------------------------------

    def _read(self, feature: str) -> tuple[list[TriggerDefinition] | None, list[Suppression]]:
        data = self._store.workspace.feature(feature).read_document(TRIGGERS_FILE) or {}
        raw_triggers = data.get("triggers")
        triggers = (
            [TriggerDefinition.from_dict(t) for t in raw_triggers]
            if raw_triggers is not None
            else None
        )
        suppressions = [
            s
            for s in (Suppression.from_dict(d) for d in data.get("suppressions", []))
            if s is not None
        ]
        return triggers, suppressions

    def _write(
        self,
        feature: str,
        triggers: list[TriggerDefinition] | None,
        suppressions: list[Suppression],
    ) -> None:
        self._store.workspace.feature(feature).write_document(
            TRIGGERS_FILE,
            {
                "triggers": [t.to_dict() for t in triggers] if triggers is not None else None,
                "suppressions": [s.to_dict() for s in suppressions],
            },
        )

    def definitions(self, feature: str) -> list[TriggerDefinition]:
        triggers, _ = self._read(feature)
        return triggers if triggers is not None else default_triggers()

    def configure(self, feature: str, triggers: Iterable[TriggerDefinition]) -> None:
        with self._store.workspace.feature(feature).locked():
            _, suppressions = self._read(feature)
            self._write(feature, list(triggers), suppressions)

    def _definition(self, feature: str, trigger_id: str) -> TriggerDefinition:
        for trigger in self.definitions(feature):
            if trigger.id == trigger_id:
                return trigger
        raise NotFoundError(
            f"trigger not found: {trigger_id}",
            [ErrorDetail(field="trigger_id", reason=f"no trigger {trigger_id} in {feature}")],
        )

    # -- suppression ---------------------------------------------------------

    def suppress(
        self, feature: str, trigger_id: str, duration_hours: float | None = None
    ) -> Suppression:
        trigger = self._definition(feature, trigger_id)
        if not trigger.suppressible:
            raise NotSuppressibleError(
                f"trigger {trigger_id} cannot be suppressed",
                [
                    ErrorDetail(
                        field="trigger_id",
                        reason="trigger is declared non-suppressible",
                        suggestion="review the citations it surfaces instead",
                    )
                ],
            )
        hours = (
            duration_hours
            if duration_hours is not None
            else self._config.default_suppress_hours
        )
        suppression = Suppression(trigger_id, utc_now() + timedelta(hours=hours))
        with self._store.workspace.feature(feature).locked():
            triggers, suppressions = self._read(feature)
            suppressions = [s for s in suppressions if s.trigger_id != trigger_id]
            suppressions.append(suppression)
            self._write(feature, triggers, suppressions)
        logger.info(
            "trigger_suppressed",
            extra={"feature": feature, "trigger.id": trigger_id, "hours": hours},
        )
        return suppression

    def unsuppress(self, feature: str, trigger_id: str) -> bool:
        with self._store.workspace.feature(feature).locked():
            triggers, suppressions = self._read(feature)
            remaining = [s for s in suppressions if s.trigger_id != trigger_id]
            if len(remaining) == len(suppressions):
                return False
            self._write(feature, triggers, remaining)
        return True

    def is_suppressed(
        self, feature: str, trigger_id: str, now: datetime | None = None
    ) -> bool:
        _, suppressions = self._read(feature)
        return any(
            s.trigger_id == trigger_id and s.is_active(now) for s in suppressions
        )

    # -- evaluation ----------------------------------------------------------

    def detect(
        self,
        feature: str,
        junction: CitationContext,
        context: TriggerContext | None = None,
    ) -> list[TriggerDefinition]:
        context = context or TriggerContext()
        fired: list[TriggerDefinition] = []
        for trigger in self.definitions(feature):
            if trigger.junction != junction:
                continue
            if not all(self.evaluate(feature, c, context) for c in trigger.conditions):
                continue
            if trigger.suppressible and self.is_suppressed(feature, trigger.id, context.now):
                logger.debug("trigger_suppressed_skip", extra={"trigger.id": trigger.id})
                continue
            fired.append(trigger)
        return fired

    def evaluate(
        self, feature: str, condition: TriggerCondition, context: TriggerContext
    ) -> bool:
        if context.todo_id is None:
            return False
        result = _EVALUATORS[condition.type](self, feature, condition, context)
        logger.debug(
            "trigger_condition_evaluated",
            extra={
                "condition.type": condition.type.value,
                "todo.id": context.todo_id,
                "result": result,
            },
        )
        return result

    def activate(
        self,
        feature: str,
        trigger: TriggerDefinition,
        context: TriggerContext,
    ) -> list[Citation]:
        """Citations that justify the trigger: active ones for its junction."""
        if context.todo_id is None:
            return []
        return [
            c
            for c in self._citations.lookup(
                feature, context.todo_id, trigger.junction, include_reviewed=False
            )
            if not c.is_deferred(context.now)
        ]

    # -- helpers used by the evaluators -------------------------------------

    def _active(self, feature: str, context: TriggerContext) -> list[Citation]:
        return [
            c
            for c in self._citations.lookup(feature, context.todo_id, include_reviewed=False)
            if not c.is_deferred(context.now)
        ]

    def _window(self, condition: TriggerCondition, context: TriggerContext) -> datetime:
        hours = condition.hours if condition.hours is not None else self._config.recent_hours
        return context.now - timedelta(hours=hours)

    def _recent(
        self, feature: str, condition: TriggerCondition, context: TriggerContext
    ) -> tuple[ChangeLogEntry, ...]:
        return self._changelog.read_since(feature, self._window(condition, context))

    def _neighbourhood(self, feature: str, todo_id: str) -> set[str]:
        ids = {todo_id}
        todo = self._store.get(feature, todo_id)
        if todo is not None and todo.parent_id:
            ids.add(todo.parent_id)
        ids.update(c.id for c in self._store.children(feature, todo_id))
        return ids

    def _relevant(
        self, feature: str, entries: Iterable[ChangeLogEntry], context: TriggerContext
    ) -> list[ChangeLogEntry]:
        assert context.todo_id is not None
        ids = self._neighbourhood(feature, context.todo_id)
        cited = {c.change_log_id for c in self._active(feature, context)}
        return [e for e in entries if e.todo_id in ids or e.id in cited]

    def _conflict_severity(self, feature: str, citation: Citation) -> Severity | None:
        entry = self._changelog.get(feature, citation.change_log_id)
        if entry is not None and entry.conflicts:
            return entry.max_conflict_severity()
        if citation.type == CitationType.CONFLICT_DETECTED:
            return Severity(citation.priority)
        return None


Evaluator = Callable[[TriggerEngine, str, TriggerCondition, TriggerContext], bool]


def _has_unreviewed_citations(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    return any(
        condition.priority is None or at_least(c.priority, condition.priority)
        for c in engine._active(feature, context)
    )


def _has_high_priority_citations(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    threshold = condition.priority or CitationPriority.HIGH
    return any(at_least(c.priority, threshold) for c in engine._active(feature, context))


def _has_citations_in_context(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    if condition.context is None:
        return False
    return any(condition.context in c.context for c in engine._active(feature, context))


def _conflicts_at_least(
    engine: TriggerEngine, feature: str, context: TriggerContext, threshold: Severity
) -> bool:
    for citation in engine._active(feature, context):
        severity = engine._conflict_severity(feature, citation)
        if severity is not None and at_least(severity, threshold):
            return True
    return False


def _has_conflicts(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    return _conflicts_at_least(engine, feature, context, condition.severity or Severity.LOW)


def _has_high_severity_conflicts(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    return _conflicts_at_least(engine, feature, context, condition.severity or Severity.HIGH)


def _has_conflicts_affecting_todo(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    """Conflicting entries on the todo itself that nobody has acknowledged."""
    assert context.todo_id is not None
    todo = engine._store.get(feature, context.todo_id)
    acknowledged = {
        c.change_log_id
        for c in (todo.citations if todo else [])
        if c.is_reviewed or c.is_dismissed
    }
    threshold = condition.severity or Severity.LOW
    for entry in engine._changelog.for_todo(feature, context.todo_id):
        if not entry.conflicts or entry.id in acknowledged:
            continue
        severity = entry.max_conflict_severity()
        if severity is not None and at_least(severity, threshold):
            return True
    return False


def _has_recent_changes(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    return bool(engine._relevant(feature, engine._recent(feature, condition, context), context))


def _has_propagation_changes(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    recent = [
        e for e in engine._recent(feature, condition, context) if e.change_type.is_propagation
    ]
    return bool(engine._relevant(feature, recent, context))


def _has_planning_doc_changes(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    recent = [
        e for e in engine._recent(feature, condition, context) if e.change_type.is_planning_doc
    ]
    # planning doc entries without a todo apply to the whole feature
    return any(e.todo_id is None for e in recent) or bool(
        engine._relevant(feature, recent, context)
    )


def _status_changed(
    engine: TriggerEngine,
    feature: str,
    condition: TriggerCondition,
    context: TriggerContext,
    todo_ids: set[str],
) -> bool:
    return any(
        e.change_type == ChangeType.TODO_STATUS_CHANGED and e.todo_id in todo_ids
        for e in engine._recent(feature, condition, context)
    )


def _todo_status_changed(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    assert context.todo_id is not None
    return _status_changed(engine, feature, condition, context, {context.todo_id})


def _parent_status_changed(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    assert context.todo_id is not None
    todo = engine._store.get(feature, context.todo_id)
    if todo is None or not todo.parent_id:
        return False
    return _status_changed(engine, feature, condition, context, {todo.parent_id})


def _child_status_changed(
    engine: TriggerEngine, feature: str, condition: TriggerCondition, context: TriggerContext
) -> bool:
    assert context.todo_id is not None
    children = {c.id for c in engine._store.children(feature, context.todo_id)}
    if not children:
        return False
    return _status_changed(engine, feature, condition, context, children)


_EVALUATORS: dict[TriggerConditionType, Evaluator] = {
    TriggerConditionType.HAS_UNREVIEWED_CITATIONS: _has_unreviewed_citations,
    TriggerConditionType.HAS_HIGH_PRIORITY_CITATIONS: _has_high_priority_citations,
    TriggerConditionType.HAS_CITATIONS_IN_CONTEXT: _has_citations_in_context,
    TriggerConditionType.HAS_CONFLICTS: _has_conflicts,
    TriggerConditionType.HAS_HIGH_SEVERITY_CONFLICTS: _has_high_severity_conflicts,
    TriggerConditionType.HAS_CONFLICTS_AFFECTING_TODO: _has_conflicts_affecting_todo,
    TriggerConditionType.HAS_RECENT_CHANGES: _has_recent_changes,
    TriggerConditionType.HAS_PROPAGATION_CHANGES: _has_propagation_changes,
    TriggerConditionType.HAS_PLANNING_DOC_CHANGES: _has_planning_doc_changes,
    TriggerConditionType.TODO_STATUS_CHANGED: _todo_status_changed,
    TriggerConditionType.PARENT_STATUS_CHANGED: _parent_status_changed,
    TriggerConditionType.CHILD_STATUS_CHANGED: _child_status_changed,
}

_missing_evaluators = set(TriggerConditionType) - set(_EVALUATORS)
if _missing_evaluators:
    raise RuntimeError(f"no evaluator for trigger conditions: {sorted(_missing_evaluators)}")
