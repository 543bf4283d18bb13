"""Durable keyed storage of todos, one collection per feature."""

from __future__ import annotations

import logging

from tiertrack.todos.errors import (
    ErrorDetail,
    InvalidHierarchyError,
    NotFoundError,
    ValidationError,
)
from tiertrack.todos.ids import require_todo_id, sort_key
from tiertrack.todos.persistence import TODOS_FILE, Workspace
from tiertrack.todos.types import Todo, TodoTier, parent_tier, utc_now

logger = logging.getLogger(__name__)


class TodoStore:
    """Raw todo persistence. Never writes to the change log."""

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    def _load(self, feature: str) -> dict[str, Todo]:
        records = self._workspace.feature(feature).read_records(TODOS_FILE)
        todos: dict[str, Todo] = {}
        for record in records:
            try:
                todo = Todo.from_dict(record)
            except (KeyError, ValueError):
                logger.warning(
                    "todo_parse_failed",
                    extra={"feature": feature, "todo.id": record.get("id")},
                )
                continue
            todos[todo.id] = todo
        return todos

    def _write(self, feature: str, todos: dict[str, Todo]) -> None:
        ordered = sorted(todos.values(), key=lambda t: sort_key(t.id))
        self._workspace.feature(feature).write_records(
            TODOS_FILE, [t.to_dict() for t in ordered]
        )

    def get(self, feature: str, todo_id: str) -> Todo | None:
        return self._load(feature).get(todo_id)

    def require(self, feature: str, todo_id: str) -> Todo:
        todo = self.get(feature, todo_id)
        if todo is None:
            raise NotFoundError(
                f"todo not found: {todo_id}",
                [ErrorDetail(field="id", reason=f"no todo {todo_id} in {feature}")],
            )
        return todo

    def list_all(self, feature: str) -> list[Todo]:
        return sorted(self._load(feature).values(), key=lambda t: sort_key(t.id))

    def children(self, feature: str, parent_id: str) -> list[Todo]:
        return [t for t in self.list_all(feature) if t.parent_id == parent_id]

    def save(self, feature: str, todo: Todo) -> Todo:
        """Validate hierarchy and persist; sets ``updated_at``."""
        storage = self._workspace.feature(feature)
        with storage.locked():
            todos = self._load(feature)
            self._validate(todo, todos)
            todo.updated_at = utc_now()
            todos[todo.id] = todo
            self._write(feature, todos)
        logger.debug("todo_saved", extra={"feature": feature, "todo.id": todo.id})
        return todo

    def remove(self, feature: str, todo_id: str) -> Todo:
        storage = self._workspace.feature(feature)
        with storage.locked():
            todos = self._load(feature)
            todo = todos.pop(todo_id, None)
            if todo is None:
                raise NotFoundError(f"todo not found: {todo_id}")
            self._write(feature, todos)
        logger.info("todo_removed", extra={"feature": feature, "todo.id": todo_id})
        return todo

    def _validate(self, todo: Todo, todos: dict[str, Todo]) -> None:
        parsed = require_todo_id(todo.id)
        if parsed.tier != todo.tier:
            raise ValidationError(
                f"tier {todo.tier} does not match id {todo.id}",
                [
                    ErrorDetail(
                        field="tier",
                        reason=f"id encodes tier {parsed.tier}",
                        suggestion=f"use tier {parsed.tier} or a {todo.tier}-* id",
                    )
                ],
            )

        if todo.tier == TodoTier.FEATURE:
            if todo.parent_id is not None:
                raise InvalidHierarchyError(
                    f"feature todo {todo.id} cannot have a parent",
                    [ErrorDetail(field="parent_id", reason="features are roots")],
                )
            return

        if todo.parent_id is None:
            return

        expected = parent_tier(todo.tier)
        parent = todos.get(todo.parent_id)
        if parent is None:
            raise InvalidHierarchyError(
                f"parent {todo.parent_id} of {todo.id} does not exist",
                [
                    ErrorDetail(
                        field="parent_id",
                        reason="parent not found",
                        suggestion=f"create the {expected} first",
                    )
                ],
            )
        if parent.tier != expected:
            raise InvalidHierarchyError(
                f"{todo.tier} {todo.id} cannot be a child of {parent.tier} {parent.id}",
                [
                    ErrorDetail(
                        field="parent_id",
                        reason=f"parent must be a {expected}",
                    )
                ],
            )
