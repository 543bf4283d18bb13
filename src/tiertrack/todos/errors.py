"""Error taxonomy for todo operations.

Every error subclasses ``ValueError`` so callers that only care about
"the request was rejected" can catch one type, and carries structured
``details`` (field, reason, suggested fix) for actionable feedback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorDetail:
    """One actionable reason a mutation was rejected."""

    reason: str
    field: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }


class TodoError(ValueError):
    """Base class for rejected todo operations."""

    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        super().__init__(message)
        self.message = message
        self.details: list[ErrorDetail] = list(details or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": [d.to_dict() for d in self.details],
        }


class NotFoundError(TodoError):
    """A todo, state, citation, rollback or trigger id does not exist."""


class InvalidHierarchyError(TodoError):
    """Tier/parent mismatch."""


class ValidationError(TodoError):
    """Malformed field or scope violation in block mode."""


class ConflictError(TodoError):
    """Rollback conflicts of blocking severity."""

    def __init__(
        self,
        message: str,
        details: list[ErrorDetail] | None = None,
        conflicts: list[Any] | None = None,
    ):
        super().__init__(message, details)
        self.conflicts = list(conflicts or [])


class NotSuppressibleError(TodoError):
    """Attempt to suppress a trigger declared non-suppressible."""
