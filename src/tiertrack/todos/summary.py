"""Progress roll-up of a todo's children."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from tiertrack.todos.store import TodoStore
from tiertrack.todos.types import Todo, TodoStatus, TodoTier

_SENTENCE_END = re.compile(r"[.!?]")
MAX_NEXT_STEPS = 5


@dataclass
class Progress:
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "completed": self.completed,
            "in_progress": self.in_progress,
            "pending": self.pending,
            "total": self.total,
        }


@dataclass
class AggregatedDetails:
    objectives: list[str] = field(default_factory=list)
    tasks: list[dict[str, str]] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    status: TodoStatus = TodoStatus.PENDING
    progress: Progress = field(default_factory=Progress)


@dataclass
class TodoSummary:
    title: str
    status: TodoStatus
    objectives: list[str]
    progress: Progress
    key_dependencies: list[str]
    next_steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "status": self.status.value,
            "objectives": list(self.objectives),
            "progress": self.progress.to_dict(),
            "key_dependencies": list(self.key_dependencies),
            "next_steps": list(self.next_steps),
        }


def summarize_objective(todo: Todo) -> str:
    if todo.description:
        first = _SENTENCE_END.split(todo.description, maxsplit=1)[0].strip()
        return first or todo.description[:100]
    return todo.title


def aggregate_details(store: TodoStore, feature: str, parent_id: str) -> AggregatedDetails:
    children = store.children(feature, parent_id)
    details = AggregatedDetails(progress=Progress(total=len(children)))

    for child in children:
        if child.tier in (TodoTier.PHASE, TodoTier.SESSION):
            details.objectives.append(summarize_objective(child))
        if child.tier == TodoTier.TASK:
            details.tasks.append(
                {"id": child.id, "title": child.title, "status": child.status.value}
            )
        details.dependencies.extend(child.blocked_by)

        if child.status == TodoStatus.COMPLETED:
            details.progress.completed += 1
        elif child.status == TodoStatus.IN_PROGRESS:
            details.progress.in_progress += 1
        else:
            details.progress.pending += 1

    progress = details.progress
    if progress.total and progress.completed == progress.total:
        details.status = TodoStatus.COMPLETED
    elif progress.in_progress or progress.completed:
        details.status = TodoStatus.IN_PROGRESS
    return details


def generate_summary(store: TodoStore, feature: str, todo: Todo) -> TodoSummary:
    details = aggregate_details(store, feature, todo.id)
    next_steps = [
        t["title"]
        for t in details.tasks
        if t["status"] in (TodoStatus.PENDING.value, TodoStatus.IN_PROGRESS.value)
    ][:MAX_NEXT_STEPS]
    return TodoSummary(
        title=todo.title,
        status=details.status,
        objectives=details.objectives,
        progress=details.progress,
        key_dependencies=list(dict.fromkeys(details.dependencies)),
        next_steps=next_steps,
    )
