"""Citations: links from a todo to change-log entries it should know about.

Citations are stored on the owning todo. A citation is active until it is
dismissed; dismissal is terminal and dismissed citations are never returned
by lookups or used by triggers again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from tiertrack.todos.changelog import ChangeLog
from tiertrack.todos.errors import ErrorDetail, NotFoundError
from tiertrack.todos.ids import new_record_id
from tiertrack.todos.store import TodoStore
from tiertrack.todos.types import (
    ChangeLogEntry,
    ChangeType,
    Citation,
    CitationContext,
    CitationMetadata,
    CitationPriority,
    CitationType,
    Todo,
    at_least,
    severity_rank,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Which change types are worth citing, and at what base priority.
# None means the change is not citation-worthy.
CITATION_RULES: dict[ChangeType, tuple[CitationType, CitationPriority] | None] = {
    ChangeType.TODO_CREATED: None,
    ChangeType.TODO_UPDATED: (CitationType.DESCRIPTION_CHANGE, CitationPriority.MEDIUM),
    ChangeType.TODO_DELETED: None,
    ChangeType.TODO_MOVED: (CitationType.PARENT_CHANGE, CitationPriority.MEDIUM),
    ChangeType.TODO_STATUS_CHANGED: (CitationType.STATUS_CHANGE, CitationPriority.HIGH),
    ChangeType.PROPAGATION_TRIGGERED: (CitationType.PROPAGATION_CHANGE, CitationPriority.HIGH),
    ChangeType.PROPAGATION_COMPLETED: (CitationType.PROPAGATION_CHANGE, CitationPriority.HIGH),
    ChangeType.PROPAGATION_CONFLICT: (CitationType.CONFLICT_DETECTED, CitationPriority.CRITICAL),
    ChangeType.PROPAGATION_PRESERVED: None,
    ChangeType.CHANGE_REQUEST_CREATED: None,
    ChangeType.CHANGE_REQUEST_RESOLVED: None,
    ChangeType.CHANGE_REQUEST_DISMISSED: None,
    ChangeType.PLANNING_DOC_UPDATED: (CitationType.PLANNING_DOC_CHANGE, CitationPriority.MEDIUM),
    ChangeType.PLANNING_DOC_SYNCED: (CitationType.PLANNING_DOC_CHANGE, CitationPriority.MEDIUM),
    ChangeType.BULK_UPDATE: None,
    ChangeType.BULK_CREATE: None,
    ChangeType.BULK_DELETE: None,
    ChangeType.ROLLBACK_APPLIED: (CitationType.ROLLBACK_APPLIED, CitationPriority.MEDIUM),
}

_missing_rules = set(ChangeType) - set(CITATION_RULES)
if _missing_rules:
    raise RuntimeError(f"CITATION_RULES missing change types: {sorted(_missing_rules)}")

_PRIORITY_SCORE = {
    CitationPriority.LOW: 1,
    CitationPriority.MEDIUM: 2,
    CitationPriority.HIGH: 3,
    CitationPriority.CRITICAL: 4,
}


def citation_priority_for(
    entry: ChangeLogEntry, context: Iterable[CitationContext]
) -> CitationPriority | None:
    rule = CITATION_RULES[entry.change_type]
    if rule is None:
        return None
    if CitationContext.CONFLICT_DETECTION in context or entry.conflicts:
        return CitationPriority.CRITICAL
    return rule[1]


def _impact(entry: ChangeLogEntry) -> str:
    if entry.conflicts:
        return "has_conflicts"
    if entry.change_type == ChangeType.TODO_STATUS_CHANGED:
        return "affects_todo_status"
    if entry.change_type.is_propagation:
        return "affects_multiple_todos"
    return "affects_todo"


def score_citation(
    citation: Citation,
    context: CitationContext | None = None,
    now: datetime | None = None,
) -> int:
    """Relevance score: priority, unreviewed, recency, context match."""
    score = _PRIORITY_SCORE[citation.priority]
    if not citation.is_reviewed:
        score += 2

    hours = ((now or utc_now()) - citation.created_at).total_seconds() / 3600
    if hours < 24:
        score += 2
    elif hours < 7 * 24:
        score += 1

    if context is not None:
        if context in citation.context:
            score += 2
        else:
            # same tier family, e.g. session-end for session-start
            family = context.value.split("-")[0]
            if any(c.value.startswith(family) for c in citation.context):
                score += 1
    return score


def prioritize(
    citations: Iterable[Citation], context: CitationContext | None = None
) -> list[Citation]:
    now = utc_now()
    return sorted(
        citations,
        key=lambda c: (score_citation(c, context, now), c.created_at),
        reverse=True,
    )


@dataclass
class CitationQuery:
    """Filters for reporting across every todo in a feature."""

    todo_id: str | None = None
    change_log_id: str | None = None
    type: CitationType | None = None
    priority: CitationPriority | None = None
    min_priority: CitationPriority | None = None
    context: CitationContext | None = None
    # None: either; True: reviewed only; False: unreviewed only
    reviewed: bool | None = None
    include_dismissed: bool = False

    def matches(self, todo: Todo, citation: Citation) -> bool:
        if self.todo_id is not None and todo.id != self.todo_id:
            return False
        if citation.is_dismissed and not self.include_dismissed:
            return False
        if self.change_log_id is not None and citation.change_log_id != self.change_log_id:
            return False
        if self.type is not None and citation.type != self.type:
            return False
        if self.priority is not None and citation.priority != self.priority:
            return False
        if self.min_priority is not None and not at_least(citation.priority, self.min_priority):
            return False
        if self.context is not None and self.context not in citation.context:
            return False
        if self.reviewed is not None and citation.is_reviewed != self.reviewed:
            return False
        return True


class CitationEngine:
    def __init__(self, store: TodoStore, changelog: ChangeLog) -> None:
        self._store = store
        self._changelog = changelog

    def create(
        self,
        feature: str,
        todo_id: str,
        change_log_id: str,
        type: CitationType,
        context: Iterable[CitationContext],
        priority: CitationPriority,
        metadata: CitationMetadata | None = None,
    ) -> Citation:
        citation = Citation(
            id=new_record_id("citation"),
            change_log_id=change_log_id,
            type=CitationType(type),
            priority=CitationPriority(priority),
            context=[CitationContext(c) for c in context],
            created_at=utc_now(),
            metadata=metadata or CitationMetadata(),
        )
        self._mutate(feature, todo_id, lambda todo: todo.citations.append(citation))
        logger.info(
            "citation_created",
            extra={
                "feature": feature,
                "todo.id": todo_id,
                "citation.id": citation.id,
                "citation.type": citation.type.value,
                "citation.priority": citation.priority.value,
            },
        )
        return citation

    def create_from_change(
        self,
        feature: str,
        todo_id: str,
        change_log_id: str,
        context: Iterable[CitationContext],
    ) -> Citation | None:
        """Cite an existing entry, inferring type and priority from its change type.

        Returns None when the entry is unknown or not citation-worthy.
        """
        entry = self._changelog.get(feature, change_log_id)
        if entry is None:
            logger.debug(
                "citation_skipped_unknown_change",
                extra={"feature": feature, "change.id": change_log_id},
            )
            return None
        contexts = [CitationContext(c) for c in context]
        rule = CITATION_RULES[entry.change_type]
        priority = citation_priority_for(entry, contexts)
        if rule is None or priority is None:
            logger.debug(
                "citation_skipped_not_citable",
                extra={"change.id": change_log_id, "change.type": entry.change_type.value},
            )
            return None

        metadata = CitationMetadata(
            reason=entry.reason,
            impact=_impact(entry),
            affected_todos=list(entry.related_changes),
            requires_review=any(c.get("requires_review") for c in entry.conflicts),
        )
        return self.create(
            feature, todo_id, change_log_id, rule[0], contexts, priority, metadata
        )

    def create_for_change(
        self,
        feature: str,
        change_log_id: str,
        todo_ids: Iterable[str],
        context: Iterable[CitationContext],
    ) -> list[Citation]:
        contexts = list(context)
        citations: list[Citation] = []
        for todo_id in todo_ids:
            citation = self.create_from_change(feature, todo_id, change_log_id, contexts)
            if citation is not None:
                citations.append(citation)
        return citations

    def lookup(
        self,
        feature: str,
        todo_id: str,
        context: CitationContext | None = None,
        include_reviewed: bool = True,
    ) -> list[Citation]:
        """Citations for a todo, most relevant first; never dismissed ones."""
        todo = self._store.get(feature, todo_id)
        if todo is None:
            return []
        matches = [
            c
            for c in todo.citations
            if not c.is_dismissed
            and (context is None or context in c.context)
            and (include_reviewed or not c.is_reviewed)
        ]
        return prioritize(matches, context)

    def unreviewed(
        self,
        feature: str,
        todo_id: str,
        context: CitationContext | None = None,
        include_deferred: bool = False,
    ) -> list[Citation]:
        now = utc_now()
        return [
            c
            for c in self.lookup(feature, todo_id, context, include_reviewed=False)
            if include_deferred or not c.is_deferred(now)
        ]

    def review(self, feature: str, todo_id: str, citation_id: str) -> Citation:
        def apply(todo: Todo) -> Citation:
            citation = self._require(todo, citation_id)
            if citation.reviewed_at is None:
                citation.reviewed_at = utc_now()
            return citation

        citation = self._mutate(feature, todo_id, apply)
        logger.info(
            "citation_reviewed",
            extra={"feature": feature, "todo.id": todo_id, "citation.id": citation_id},
        )
        return citation

    def dismiss(self, feature: str, todo_id: str, citation_id: str) -> Citation:
        def apply(todo: Todo) -> Citation:
            citation = self._require(todo, citation_id)
            if citation.dismissed_at is None:
                citation.dismissed_at = utc_now()
            return citation

        citation = self._mutate(feature, todo_id, apply)
        logger.info(
            "citation_dismissed",
            extra={"feature": feature, "todo.id": todo_id, "citation.id": citation_id},
        )
        return citation

    def defer(
        self, feature: str, todo_id: str, citation_id: str, until: datetime
    ) -> Citation:
        """Hide a citation from trigger activation until ``until``."""

        def apply(todo: Todo) -> Citation:
            citation = self._require(todo, citation_id)
            citation.metadata.review_deadline = until
            return citation

        return self._mutate(feature, todo_id, apply)

    def query(self, feature: str, filters: CitationQuery | None = None) -> list[Citation]:
        filters = filters or CitationQuery()
        if filters.todo_id is not None:
            todo = self._store.get(feature, filters.todo_id)
            todos = [todo] if todo else []
        else:
            todos = self._store.list_all(feature)
        results = [c for t in todos for c in t.citations if filters.matches(t, c)]
        results.sort(
            key=lambda c: (severity_rank(c.priority), c.created_at), reverse=True
        )
        return results

    def _mutate(self, feature: str, todo_id: str, apply: Callable[[Todo], T]) -> T:
        with self._store.workspace.feature(feature).locked():
            todo = self._store.get(feature, todo_id)
            if todo is None:
                raise NotFoundError(
                    f"todo not found: {todo_id}",
                    [ErrorDetail(field="todo_id", reason=f"no todo {todo_id} in {feature}")],
                )
            result = apply(todo)
            self._store.save(feature, todo)
        return result

    @staticmethod
    def _require(todo: Todo, citation_id: str) -> Citation:
        citation = todo.citation(citation_id)
        if citation is None:
            raise NotFoundError(
                f"citation not found: {citation_id}",
                [ErrorDetail(field="citation_id", reason=f"{todo.id} has no citation {citation_id}")],
            )
        return citation
