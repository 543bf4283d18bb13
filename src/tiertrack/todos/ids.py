"""Hierarchical todo identifiers.

Storage ids are ``{tier}-{identifier}``:

- feature: ``feature-<feature name>``
- phase:   ``phase-P``
- session: ``session-P.S``
- task:    ``task-P.S.T``

The numeric part of a child id extends its parent's, so the default parent
of any todo can be derived from its id alone.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from tiertrack.todos.errors import ErrorDetail, ValidationError
from tiertrack.todos.types import TIER_ORDER, TodoTier

FEATURE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_NUMERIC_PARTS: dict[TodoTier, int] = {
    TodoTier.PHASE: 1,
    TodoTier.SESSION: 2,
    TodoTier.TASK: 3,
}


@dataclass(frozen=True)
class ParsedId:
    tier: TodoTier
    identifier: str

    @property
    def numbers(self) -> tuple[int, ...]:
        if self.tier == TodoTier.FEATURE:
            return ()
        return tuple(int(p) for p in self.identifier.split("."))


def validate_feature_name(feature: str) -> str:
    """Feature names double as directory names."""
    if not FEATURE_NAME_RE.match(feature or ""):
        raise ValidationError(
            f"invalid feature name: {feature!r}",
            [
                ErrorDetail(
                    field="feature",
                    reason="must start with a letter or digit and contain only letters, digits, '.', '_' or '-'",
                    suggestion="use a slug such as 'vue-migration'",
                )
            ],
        )
    return feature


def parse_todo_id(todo_id: str) -> ParsedId | None:
    """Parse a storage id; returns None for malformed ids."""
    prefix, sep, identifier = (todo_id or "").partition("-")
    if not sep or not identifier:
        return None
    try:
        tier = TodoTier(prefix)
    except ValueError:
        return None

    if tier == TodoTier.FEATURE:
        if not FEATURE_NAME_RE.match(identifier):
            return None
        return ParsedId(tier, identifier)

    parts = identifier.split(".")
    if len(parts) != _NUMERIC_PARTS[tier] or not all(p.isdigit() for p in parts):
        return None
    return ParsedId(tier, identifier)


def require_todo_id(todo_id: str) -> ParsedId:
    parsed = parse_todo_id(todo_id)
    if parsed is None:
        raise ValidationError(
            f"malformed todo id: {todo_id!r}",
            [
                ErrorDetail(
                    field="id",
                    reason="expected feature-<name>, phase-P, session-P.S or task-P.S.T",
                    suggestion="e.g. 'phase-2', 'session-2.1', 'task-2.1.3'",
                )
            ],
        )
    return parsed


def tier_from_id(todo_id: str) -> TodoTier | None:
    parsed = parse_todo_id(todo_id)
    return parsed.tier if parsed else None


def make_todo_id(tier: TodoTier | str, identifier: str) -> str:
    todo_id = f"{TodoTier(tier).value}-{identifier}"
    require_todo_id(todo_id)
    return todo_id


def feature_todo_id(feature: str) -> str:
    return f"{TodoTier.FEATURE.value}-{feature}"


def default_parent_id(todo_id: str, feature: str) -> str | None:
    """Derive the structural parent of ``todo_id`` (None for feature todos)."""
    parsed = require_todo_id(todo_id)
    if parsed.tier == TodoTier.FEATURE:
        return None
    if parsed.tier == TodoTier.PHASE:
        return feature_todo_id(feature)
    parent_tier = TIER_ORDER[TIER_ORDER.index(parsed.tier) - 1]
    parent_identifier = parsed.identifier.rsplit(".", 1)[0]
    return f"{parent_tier.value}-{parent_identifier}"


def sort_key(todo_id: str) -> tuple:
    """Order ids by tier, then numerically (phase-10 after phase-9)."""
    parsed = parse_todo_id(todo_id)
    if parsed is None:
        return (len(TIER_ORDER), (), todo_id)
    return (TIER_ORDER.index(parsed.tier), parsed.numbers, todo_id)


def new_record_id(prefix: str) -> str:
    """Opaque ids for citations, change entries, states and rollbacks."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
