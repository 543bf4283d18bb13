"""CLI command modules."""

from tiertrack.cli.commands import (
    changes,
    citation,
    config,
    rollback,
    scope,
    todo,
    trigger,
)

__all__ = [
    "changes",
    "citation",
    "config",
    "rollback",
    "scope",
    "todo",
    "trigger",
]
