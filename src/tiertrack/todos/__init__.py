"""Todo subsystem public API.

Public API:
- TodoManager: Main entry point (audited mutations)
- create_todo_manager: Factory function

Engines:
- TodoStore, ChangeLog, ScopeEngine, CitationEngine, TriggerEngine,
  RollbackEngine
"""

from tiertrack.todos.changelog import ChangeLog
from tiertrack.todos.citations import CITATION_RULES, CitationEngine, CitationQuery
from tiertrack.todos.errors import (
    ConflictError,
    ErrorDetail,
    InvalidHierarchyError,
    NotFoundError,
    NotSuppressibleError,
    TodoError,
    ValidationError,
)
from tiertrack.todos.manager import TodoManager, create_todo_manager
from tiertrack.todos.persistence import FeatureStorage, Workspace
from tiertrack.todos.rollback import RollbackEngine
from tiertrack.todos.scope import ScopeEngine, ScopeValidation, ScopeViolation
from tiertrack.todos.store import TodoStore
from tiertrack.todos.triggers import TriggerContext, TriggerEngine, default_triggers
from tiertrack.todos.types import (
    ChangeLogEntry,
    ChangeType,
    Citation,
    CitationContext,
    CitationPriority,
    CitationType,
    PreviousState,
    Rollback,
    RollbackConflict,
    RollbackStatus,
    RollbackType,
    Scope,
    Severity,
    Todo,
    TodoStatus,
    TodoTier,
    TriggerCondition,
    TriggerConditionType,
    TriggerDefinition,
)

__all__ = [
    "CITATION_RULES",
    "ChangeLog",
    "ChangeLogEntry",
    "ChangeType",
    "Citation",
    "CitationContext",
    "CitationEngine",
    "CitationPriority",
    "CitationQuery",
    "CitationType",
    "ConflictError",
    "ErrorDetail",
    "FeatureStorage",
    "InvalidHierarchyError",
    "NotFoundError",
    "NotSuppressibleError",
    "PreviousState",
    "Rollback",
    "RollbackConflict",
    "RollbackEngine",
    "RollbackStatus",
    "RollbackType",
    "Scope",
    "ScopeEngine",
    "ScopeValidation",
    "ScopeViolation",
    "Severity",
    "Todo",
    "TodoError",
    "TodoManager",
    "TodoStatus",
    "TodoStore",
    "TodoTier",
    "TriggerCondition",
    "TriggerConditionType",
    "TriggerContext",
    "TriggerDefinition",
    "TriggerEngine",
    "ValidationError",
    "Workspace",
    "create_todo_manager",
    "default_triggers",
]
