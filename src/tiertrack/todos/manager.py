"""Todo manager facade.

Wires the store, change log and engines for one data directory and
provides the audited mutations: each one validates, snapshots the current
state, saves through the store and appends exactly one change-log entry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from tiertrack.config.models import TiertrackConfig
from tiertrack.todos.changelog import ChangeLog
from tiertrack.todos.citations import CitationEngine
from tiertrack.todos.errors import ErrorDetail, NotFoundError, ValidationError
from tiertrack.todos.ids import default_parent_id, feature_todo_id, require_todo_id
from tiertrack.todos.persistence import Workspace
from tiertrack.todos.rollback import RollbackEngine
from tiertrack.todos.scope import ScopeEngine
from tiertrack.todos.store import TodoStore
from tiertrack.todos.triggers import TriggerEngine
from tiertrack.todos.types import (
    RESTORABLE_FIELDS,
    ChangeLogEntry,
    ChangeType,
    Citation,
    CitationContext,
    Todo,
    TodoStatus,
    TodoTier,
    utc_now,
)

logger = logging.getLogger(__name__)

_START_JUNCTION = {
    TodoTier.FEATURE: CitationContext.PHASE_START,
    TodoTier.PHASE: CitationContext.PHASE_START,
    TodoTier.SESSION: CitationContext.SESSION_START,
    TodoTier.TASK: CitationContext.TASK_START,
}
_CHECKPOINT_JUNCTION = {
    TodoTier.FEATURE: CitationContext.PHASE_CHECKPOINT,
    TodoTier.PHASE: CitationContext.PHASE_CHECKPOINT,
    TodoTier.SESSION: CitationContext.SESSION_CHECKPOINT,
    TodoTier.TASK: CitationContext.TASK_CHECKPOINT,
}


class TodoManager:
    """Synchronous facade for audited todo operations."""

    def __init__(self, config: TiertrackConfig) -> None:
        self._config = config
        self.workspace = Workspace(config.data_dir)
        self.store = TodoStore(self.workspace)
        self.changelog = ChangeLog(self.workspace, author=config.author)
        self.scope = ScopeEngine()
        self.citations = CitationEngine(self.store, self.changelog)
        self.triggers = TriggerEngine(
            self.citations, self.changelog, self.store, config.triggers
        )
        self.rollback = RollbackEngine(
            self.store, self.changelog, config.rollback, author=config.author
        )

    @property
    def config(self) -> TiertrackConfig:
        return self._config

    # -- creation ------------------------------------------------------------

    def create_todo(
        self,
        feature: str,
        todo_id: str,
        title: str,
        description: str = "",
        *,
        parent_id: str | None = None,
        derive_parent: bool = True,
        status: TodoStatus = TodoStatus.PENDING,
        blocked_by: Iterable[str] = (),
        blocks: Iterable[str] = (),
        tags: Iterable[str] = (),
        metadata: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> Todo:
        """Create a todo; the parent defaults to the one encoded in the id."""
        parsed = require_todo_id(todo_id)
        text = title.strip()
        if not text:
            raise ValidationError(
                "title is required", [ErrorDetail(field="title", reason="empty title")]
            )
        if parent_id is None and derive_parent:
            parent_id = default_parent_id(todo_id, feature)

        storage = self.workspace.feature(feature)
        with storage.locked():
            if self.store.get(feature, todo_id) is not None:
                raise ValidationError(
                    f"todo already exists: {todo_id}",
                    [
                        ErrorDetail(
                            field="id",
                            reason="ids are unique per feature",
                            suggestion="update the existing todo instead",
                        )
                    ],
                )
            now = utc_now()
            todo = Todo(
                id=todo_id,
                title=text,
                description=description,
                status=TodoStatus(status),
                tier=parsed.tier,
                parent_id=parent_id,
                created_at=now,
                updated_at=now,
                completed_at=now if status == TodoStatus.COMPLETED else None,
                blocked_by=list(blocked_by),
                blocks=list(blocks),
                tags=list(tags),
                metadata=dict(metadata or {}),
            )
            parent = self.store.get(feature, parent_id) if parent_id else None
            self.scope.enforce_scope(todo, parent, self._config.scope.mode)
            self.store.save(feature, todo)
            self.changelog.append(
                feature,
                ChangeLogEntry(
                    change_type=ChangeType.TODO_CREATED,
                    tier=todo.tier,
                    todo_id=todo.id,
                    after=todo.fields(RESTORABLE_FIELDS),
                    reason=reason,
                ),
            )
        logger.info("todo_created", extra={"feature": feature, "todo.id": todo_id})
        return todo

    def create_feature(self, feature: str, title: str, description: str = "") -> Todo:
        return self.create_todo(feature, feature_todo_id(feature), title, description)

    # -- audited mutations ---------------------------------------------------

    def _mutate(
        self,
        feature: str,
        todo_id: str,
        change_type: ChangeType,
        apply: Callable[[Todo], None],
        reason: str | None,
    ) -> tuple[Todo, ChangeLogEntry | None]:
        storage = self.workspace.feature(feature)
        with storage.locked():
            current = self.store.require(feature, todo_id)
            updated = current.copy()
            apply(updated)

            parent = (
                self.store.get(feature, updated.parent_id) if updated.parent_id else None
            )
            self.scope.enforce_scope(updated, parent, self._config.scope.mode)

            before_all = current.fields(RESTORABLE_FIELDS)
            after_all = updated.fields(RESTORABLE_FIELDS)
            changed = [f for f in RESTORABLE_FIELDS if before_all[f] != after_all[f]]
            if not changed:
                logger.debug("todo_unchanged", extra={"todo.id": todo_id})
                return current, None

            # snapshot only once the save has passed validation
            self.store.save(feature, updated)
            entry_id = self.changelog.new_entry_id()
            self.rollback.store_state(feature, current, entry_id, reason=reason)
            entry = self.changelog.append(
                feature,
                ChangeLogEntry(
                    id=entry_id,
                    change_type=change_type,
                    tier=updated.tier,
                    todo_id=todo_id,
                    before={f: before_all[f] for f in changed},
                    after={f: after_all[f] for f in changed},
                    reason=reason,
                ),
            )
        return updated, entry

    def update_todo(
        self,
        feature: str,
        todo_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        blocked_by: Iterable[str] | None = None,
        blocks: Iterable[str] | None = None,
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> Todo:
        if title is not None and not title.strip():
            raise ValidationError(
                "title cannot be empty", [ErrorDetail(field="title", reason="empty title")]
            )

        def apply(todo: Todo) -> None:
            if title is not None:
                todo.title = title.strip()
            if description is not None:
                todo.description = description
            if blocked_by is not None:
                todo.blocked_by = list(blocked_by)
            if blocks is not None:
                todo.blocks = list(blocks)
            if tags is not None:
                todo.tags = list(tags)
            if metadata is not None:
                todo.metadata.update(metadata)

        todo, _ = self._mutate(feature, todo_id, ChangeType.TODO_UPDATED, apply, reason)
        return todo

    def set_status(
        self,
        feature: str,
        todo_id: str,
        status: TodoStatus,
        reason: str | None = None,
    ) -> Todo:
        status = TodoStatus(status)

        def apply(todo: Todo) -> None:
            todo.status = status
            if status == TodoStatus.COMPLETED:
                todo.completed_at = todo.completed_at or utc_now()
            else:
                todo.completed_at = None

        todo, _ = self._mutate(
            feature, todo_id, ChangeType.TODO_STATUS_CHANGED, apply, reason
        )
        return todo

    def move_todo(
        self,
        feature: str,
        todo_id: str,
        new_parent_id: str,
        reason: str | None = None,
    ) -> Todo:
        """Re-parent a todo; its scope is re-derived from the new parent."""

        def apply(todo: Todo) -> None:
            todo.parent_id = new_parent_id
            todo.scope = None

        todo, _ = self._mutate(feature, todo_id, ChangeType.TODO_MOVED, apply, reason)
        return todo

    def delete_todo(
        self, feature: str, todo_id: str, reason: str | None = None
    ) -> ChangeLogEntry:
        """Remove a leaf todo; ``todo_deleted`` is logged before removal."""
        storage = self.workspace.feature(feature)
        with storage.locked():
            todo = self.store.require(feature, todo_id)
            children = self.store.children(feature, todo_id)
            if children:
                raise ValidationError(
                    f"{todo_id} has {len(children)} children",
                    [
                        ErrorDetail(
                            field="id",
                            reason="only leaf todos can be deleted",
                            suggestion="cancel the todo or delete its children first",
                        )
                    ],
                )
            entry_id = self.changelog.new_entry_id()
            self.rollback.store_state(feature, todo, entry_id, reason=reason)
            entry = self.changelog.append(
                feature,
                ChangeLogEntry(
                    id=entry_id,
                    change_type=ChangeType.TODO_DELETED,
                    tier=todo.tier,
                    todo_id=todo_id,
                    before=todo.fields(RESTORABLE_FIELDS),
                    reason=reason,
                ),
            )
            self.store.remove(feature, todo_id)
        return entry

    def record_change(
        self,
        feature: str,
        change_type: ChangeType,
        *,
        todo_id: str | None = None,
        tier: TodoTier | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
        related_changes: Iterable[str] = (),
        conflicts: Iterable[dict[str, Any]] = (),
        metadata: dict[str, Any] | None = None,
    ) -> ChangeLogEntry:
        """Log a change made outside the store (planning docs, change requests)."""
        if tier is None:
            if todo_id is not None:
                tier = require_todo_id(todo_id).tier
            else:
                tier = TodoTier.FEATURE
        return self.changelog.append(
            feature,
            ChangeLogEntry(
                change_type=ChangeType(change_type),
                tier=TodoTier(tier),
                todo_id=todo_id,
                before=before,
                after=after,
                reason=reason,
                related_changes=tuple(related_changes),
                conflicts=tuple(dict(c) for c in conflicts),
                metadata=dict(metadata or {}),
            ),
        )

    # -- propagation ---------------------------------------------------------

    def dependents(self, feature: str, todo_id: str) -> list[Todo]:
        """Children, ``blocks`` targets and todos blocked by ``todo_id``."""
        todos = {t.id: t for t in self.store.list_all(feature)}
        source = todos.get(todo_id)
        found: dict[str, Todo] = {}
        for todo in todos.values():
            if todo.parent_id == todo_id or todo_id in todo.blocked_by:
                found[todo.id] = todo
        if source is not None:
            for target in source.blocks:
                if target in todos:
                    found[target] = todos[target]
        found.pop(todo_id, None)
        return list(found.values())

    def propagate(
        self,
        feature: str,
        entry: ChangeLogEntry | str,
        context: Iterable[CitationContext] | None = None,
    ) -> list[Citation]:
        """Cite a change on every dependent of the changed todo."""
        if isinstance(entry, str):
            found = self.changelog.get(feature, entry)
            if found is None:
                raise NotFoundError(f"change entry not found: {entry}")
            entry = found
        if entry.todo_id is None:
            return []

        contexts = list(context) if context is not None else None
        citations: list[Citation] = []
        cited_todos: list[str] = []
        with self.workspace.feature(feature).locked():
            for dependent in self.dependents(feature, entry.todo_id):
                junctions = contexts or self._default_contexts(dependent, entry)
                citation = self.citations.create_from_change(
                    feature, dependent.id, entry.id, junctions
                )
                if citation is not None:
                    citations.append(citation)
                    cited_todos.append(dependent.id)

            if citations:
                self.changelog.append(
                    feature,
                    ChangeLogEntry(
                        change_type=ChangeType.PROPAGATION_COMPLETED,
                        tier=entry.tier,
                        todo_id=entry.todo_id,
                        reason=f"propagated {entry.change_type} to dependents",
                        propagation_triggered=True,
                        related_changes=(entry.id,),
                        metadata={
                            "cited_todos": cited_todos,
                            "citation_ids": [c.id for c in citations],
                        },
                    ),
                )
        logger.info(
            "change_propagated",
            extra={
                "feature": feature,
                "change.id": entry.id,
                "citation.count": len(citations),
            },
        )
        return citations

    @staticmethod
    def _default_contexts(todo: Todo, entry: ChangeLogEntry) -> list[CitationContext]:
        contexts = [_START_JUNCTION[todo.tier], _CHECKPOINT_JUNCTION[todo.tier]]
        if entry.conflicts:
            contexts.append(CitationContext.CONFLICT_DETECTION)
        return contexts


def create_todo_manager(
    data_dir: Path | None = None,
    config: TiertrackConfig | None = None,
) -> TodoManager:
    """Build a manager from config, optionally overriding the data dir."""
    from tiertrack.config.loader import load_config_or_default

    config = config or load_config_or_default()
    if data_dir is not None:
        config = config.model_copy(update={"data_dir": Path(data_dir).expanduser()})
    return TodoManager(config)
