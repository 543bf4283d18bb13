"""Snapshots and conflict-checked rollback.

A snapshot records the change-log position it was taken at. Rolling back
to it restores the snapshot's content fields; change-log entries for the
todo after that position, other than the change being undone, are newer
work the rollback would overwrite. Each overwritten field becomes a
conflict ranked by the configured field severity table, and conflicts at
or above the blocking severity stop the rollback before anything is
written.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from tiertrack.config.models import RollbackConfig
from tiertrack.todos.changelog import ChangeLog
from tiertrack.todos.errors import ErrorDetail, NotFoundError, ValidationError
from tiertrack.todos.ids import new_record_id
from tiertrack.todos.persistence import PREVIOUS_STATES_FILE, ROLLBACKS_FILE
from tiertrack.todos.store import TodoStore
from tiertrack.todos.types import (
    RESTORABLE_FIELDS,
    ChangeLogEntry,
    ChangeType,
    ConflictType,
    PreviousState,
    Rollback,
    RollbackConflict,
    RollbackStatus,
    RollbackType,
    Severity,
    Todo,
    at_least,
    utc_now,
)

logger = logging.getLogger(__name__)

OVERRIDDEN = "overridden"
SKIPPED = "skipped"
DISCARDED = "discarded"
KEPT_CURRENT = "kept_current"


class RollbackEngine:
    def __init__(
        self,
        store: TodoStore,
        changelog: ChangeLog,
        config: RollbackConfig | None = None,
        author: str = "system",
    ) -> None:
        self._store = store
        self._changelog = changelog
        self._config = config or RollbackConfig()
        self._author = author

    # -- snapshots -----------------------------------------------------------

    def store_state(
        self,
        feature: str,
        todo: Todo,
        change_log_id: str,
        reason: str | None = None,
    ) -> PreviousState:
        storage = self._store.workspace.feature(feature)
        with storage.locked():
            state = PreviousState(
                id=new_record_id("state"),
                todo_id=todo.id,
                timestamp=utc_now(),
                state=todo.copy(),
                change_log_id=change_log_id,
                log_sequence=self._changelog.last_sequence(feature),
                metadata={"reason": reason} if reason else {},
            )
            storage.append_line(
                PREVIOUS_STATES_FILE,
                json.dumps(state.to_dict(), separators=(",", ":")),
            )
        logger.debug(
            "state_stored",
            extra={"feature": feature, "todo.id": todo.id, "state.id": state.id},
        )
        return state

    def _states(self, feature: str) -> list[PreviousState]:
        records = self._store.workspace.feature(feature).read_records(PREVIOUS_STATES_FILE)
        states: list[PreviousState] = []
        for record in records:
            try:
                states.append(PreviousState.from_dict(record))
            except (KeyError, ValueError):
                logger.warning("state_parse_failed", extra={"state.id": record.get("id")})
        return states

    def get_states(self, feature: str, todo_id: str) -> list[PreviousState]:
        """Snapshots for a todo, newest first."""
        states = [s for s in self._states(feature) if s.todo_id == todo_id]
        return sorted(states, key=lambda s: (s.log_sequence, s.timestamp), reverse=True)

    def get_state(self, feature: str, state_id: str) -> PreviousState | None:
        for state in self._states(feature):
            if state.id == state_id:
                return state
        return None

    # -- rollback ------------------------------------------------------------

    def rollback(
        self,
        feature: str,
        todo_id: str,
        state_id: str,
        reason: str | None = None,
        *,
        force: bool = False,
        skip_conflicts: bool = False,
    ) -> Rollback:
        """Restore every content field of a snapshot."""
        return self._run(
            feature,
            todo_id,
            state_id,
            list(RESTORABLE_FIELDS),
            RollbackType.FULL,
            reason,
            force=force,
            skip_conflicts=skip_conflicts,
        )

    def rollback_fields(
        self,
        feature: str,
        todo_id: str,
        state_id: str,
        fields: Iterable[str],
        reason: str | None = None,
        *,
        force: bool = False,
    ) -> Rollback:
        """Restore only ``fields``; everything else keeps its current value."""
        names = list(dict.fromkeys(fields))
        invalid = [f for f in names if f not in RESTORABLE_FIELDS]
        if invalid or not names:
            raise ValidationError(
                f"cannot roll back fields: {', '.join(invalid) or '(none given)'}",
                [
                    ErrorDetail(
                        field=f,
                        reason="not a restorable todo field",
                        suggestion=f"choose from: {', '.join(RESTORABLE_FIELDS)}",
                    )
                    for f in invalid or ["fields"]
                ],
            )
        return self._run(
            feature, todo_id, state_id, names, RollbackType.SELECTIVE, reason, force=force
        )

    def detect_conflicts(
        self, feature: str, state: PreviousState, fields: Iterable[str]
    ) -> tuple[list[RollbackConflict], list[ChangeLogEntry], ChangeLogEntry | None]:
        """Conflicts for restoring ``fields`` of ``state``.

        Returns the conflicts, the newer entries whose values would be
        discarded, and the entry being undone.
        """
        restore = set(fields)
        later = [
            e
            for e in self._changelog.read_after(feature, state.log_sequence)
            if e.todo_id == state.todo_id
        ]
        # a snapshot whose entry never reached the log undoes nothing
        undone = next((e for e in later if e.id == state.change_log_id), None)
        discarded = [e for e in later if e is not undone]

        snapshot = state.state.to_dict()
        conflicts: list[RollbackConflict] = []
        for entry in discarded:
            for name, value in (entry.after or {}).items():
                if name not in restore or value == snapshot.get(name):
                    continue
                conflicts.append(
                    RollbackConflict(
                        type=ConflictType.STATE_CONFLICT,
                        field=name,
                        description=(
                            f"{entry.change_type} {entry.id} set {name} after the "
                            "snapshot; rolling back would discard it"
                        ),
                        severity=Severity(self._config.severity_for(name)),
                        change_log_id=entry.id,
                    )
                )

        parent_id = state.state.parent_id
        if (
            "parent_id" in restore
            and parent_id is not None
            and self._store.get(feature, parent_id) is None
        ):
            conflicts.append(
                RollbackConflict(
                    type=ConflictType.RELATIONSHIP_CONFLICT,
                    field="parent_id",
                    description=f"snapshot parent {parent_id} no longer exists",
                    severity=Severity.HIGH,
                )
            )
        return conflicts, discarded, undone

    def _run(
        self,
        feature: str,
        todo_id: str,
        state_id: str,
        fields: list[str],
        kind: RollbackType,
        reason: str | None,
        *,
        force: bool = False,
        skip_conflicts: bool = False,
    ) -> Rollback:
        storage = self._store.workspace.feature(feature)
        with storage.locked():
            current = self._store.require(feature, todo_id)
            state = self.get_state(feature, state_id)
            if state is None:
                raise NotFoundError(
                    f"state not found: {state_id}",
                    [ErrorDetail(field="state_id", reason=f"no snapshot {state_id} in {feature}")],
                )
            if state.todo_id != todo_id:
                raise ValidationError(
                    f"state {state_id} belongs to {state.todo_id}, not {todo_id}",
                    [ErrorDetail(field="state_id", reason="snapshot is for another todo")],
                )

            conflicts, discarded, undone = self.detect_conflicts(feature, state, fields)
            rollback = Rollback(
                id=new_record_id("rollback"),
                timestamp=utc_now(),
                author=self._author,
                todo_id=todo_id,
                rolled_back_to=state_id,
                type=kind,
                status=RollbackStatus.PENDING,
                fields=list(fields) if kind == RollbackType.SELECTIVE else [],
                reason=reason,
                conflicts=conflicts,
            )

            apply = self._resolve(rollback, fields, force=force, skip_conflicts=skip_conflicts)
            if rollback.blocking_conflicts(self._config.blocking_severity) or not apply:
                rollback.status = RollbackStatus.CONFLICT
                self._record(feature, rollback)
                logger.warning(
                    "rollback_conflict",
                    extra={
                        "feature": feature,
                        "todo.id": todo_id,
                        "rollback.id": rollback.id,
                        "conflict.fields": sorted({c.field or "" for c in conflicts}),
                    },
                )
                return rollback

            if apply != fields:
                rollback.fields = apply
                if kind == RollbackType.FULL:
                    rollback.type = RollbackType.PARTIAL

            restored = current.copy()
            snapshot = state.state.copy()
            for name in apply:
                setattr(restored, name, getattr(snapshot, name))
            self._store.save(feature, restored)

            entry_id = self._changelog.new_entry_id()
            pre = self.store_state(feature, current, entry_id, reason="before rollback")
            related = ([undone.id] if undone else []) + [e.id for e in discarded]
            entry = self._changelog.append(
                feature,
                ChangeLogEntry(
                    id=entry_id,
                    change_type=ChangeType.ROLLBACK_APPLIED,
                    tier=current.tier,
                    todo_id=todo_id,
                    before=current.fields(apply),
                    after=restored.fields(apply),
                    reason=reason or f"rollback to {state_id}",
                    related_changes=tuple(related),
                    metadata={
                        "rollback_id": rollback.id,
                        "rolled_back_to": state_id,
                        "rolled_back_from": pre.id,
                        "rollback_type": rollback.type.value,
                    },
                    author=self._author,
                ),
            )
            rollback.rolled_back_from = pre.id
            rollback.change_log_id = entry.id
            rollback.status = RollbackStatus.COMPLETED
            self._record(feature, rollback)

        logger.info(
            "rollback_applied",
            extra={
                "feature": feature,
                "todo.id": todo_id,
                "rollback.id": rollback.id,
                "rollback.type": rollback.type.value,
                "fields": apply,
            },
        )
        return rollback

    def _resolve(
        self,
        rollback: Rollback,
        fields: list[str],
        *,
        force: bool,
        skip_conflicts: bool,
    ) -> list[str]:
        """Mark conflict resolutions and return the fields to restore."""
        blocking = self._config.blocking_severity
        skip: set[str] = set()
        for conflict in rollback.conflicts:
            if conflict.type == ConflictType.RELATIONSHIP_CONFLICT:
                # a missing parent cannot be restored even when forced
                if force or skip_conflicts:
                    conflict.resolution = KEPT_CURRENT
                    skip.add("parent_id")
            elif force:
                conflict.resolution = OVERRIDDEN
            elif skip_conflicts:
                conflict.resolution = SKIPPED
                if conflict.field:
                    skip.add(conflict.field)
            elif not at_least(conflict.severity, blocking):
                conflict.resolution = DISCARDED
        return [f for f in fields if f not in skip]

    # -- history -------------------------------------------------------------

    def _rollbacks(self, feature: str) -> list[Rollback]:
        records = self._store.workspace.feature(feature).read_records(ROLLBACKS_FILE)
        rollbacks: list[Rollback] = []
        for record in records:
            try:
                rollbacks.append(Rollback.from_dict(record))
            except (KeyError, ValueError):
                logger.warning("rollback_parse_failed", extra={"rollback.id": record.get("id")})
        return rollbacks

    def _record(self, feature: str, rollback: Rollback) -> None:
        storage = self._store.workspace.feature(feature)
        with storage.locked():
            rollbacks = [r for r in self._rollbacks(feature) if r.id != rollback.id]
            rollbacks.append(rollback)
            storage.write_records(ROLLBACKS_FILE, [r.to_dict() for r in rollbacks])

    def get_rollback_history(
        self, feature: str, todo_id: str | None = None
    ) -> list[Rollback]:
        return [
            r for r in self._rollbacks(feature) if todo_id is None or r.todo_id == todo_id
        ]

    def get_rollback(self, feature: str, rollback_id: str) -> Rollback | None:
        for rollback in self._rollbacks(feature):
            if rollback.id == rollback_id:
                return rollback
        return None

    def cancel(self, feature: str, rollback_id: str) -> Rollback:
        """Close a rollback that was held back by conflicts."""
        with self._store.workspace.feature(feature).locked():
            rollback = self.get_rollback(feature, rollback_id)
            if rollback is None:
                raise NotFoundError(f"rollback not found: {rollback_id}")
            if rollback.status == RollbackStatus.COMPLETED:
                raise ValidationError(
                    f"rollback {rollback_id} is already applied",
                    [
                        ErrorDetail(
                            field="status",
                            reason="completed rollbacks cannot be cancelled",
                            suggestion=(
                                f"roll back to {rollback.rolled_back_from} to undo it"
                                if rollback.rolled_back_from
                                else None
                            ),
                        )
                    ],
                )
            rollback.status = RollbackStatus.CANCELLED
            self._record(feature, rollback)
        logger.info("rollback_cancelled", extra={"feature": feature, "rollback.id": rollback_id})
        return rollback
