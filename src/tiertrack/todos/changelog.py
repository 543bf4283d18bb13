"""Append-only per-feature change log.

Entries are immutable once appended. Timestamps are strictly increasing
within a feature: an append that lands on (or before) the previous entry's
instant is bumped one microsecond past it.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timedelta

from tiertrack.todos.errors import ErrorDetail, ValidationError
from tiertrack.todos.ids import new_record_id
from tiertrack.todos.persistence import CHANGE_LOG_FILE, Workspace
from tiertrack.todos.types import ChangeLogEntry, ChangeType, utc_now

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class ChangeLog:
    def __init__(self, workspace: Workspace, author: str = "system") -> None:
        self._workspace = workspace
        self._author = author

    @staticmethod
    def new_entry_id() -> str:
        """Reserve an id before appending (snapshots reference it up front)."""
        return new_record_id("change")

    def append(self, feature: str, entry: ChangeLogEntry) -> ChangeLogEntry:
        storage = self._workspace.feature(feature)
        with storage.locked():
            existing = self.read(feature)
            if entry.id and any(e.id == entry.id for e in existing):
                raise ValidationError(
                    f"change entry {entry.id} already exists",
                    [ErrorDetail(field="id", reason="entry ids are unique")],
                )
            timestamp = utc_now()
            if existing:
                last = existing[-1].timestamp
                if last is not None and timestamp <= last:
                    timestamp = last + _TICK
            stored = dataclasses.replace(
                entry,
                id=entry.id or self.new_entry_id(),
                timestamp=timestamp,
                sequence=existing[-1].sequence + 1 if existing else 1,
                author=entry.author if entry.author != "system" else self._author,
            )
            storage.append_line(CHANGE_LOG_FILE, stored.to_json_line())

        logger.info(
            "change_appended",
            extra={
                "feature": feature,
                "change.id": stored.id,
                "change.type": stored.change_type.value,
                "todo.id": stored.todo_id,
            },
        )
        return stored

    def read(self, feature: str) -> tuple[ChangeLogEntry, ...]:
        records = self._workspace.feature(feature).read_records(CHANGE_LOG_FILE)
        entries: list[ChangeLogEntry] = []
        for record in records:
            try:
                entries.append(ChangeLogEntry.from_dict(record))
            except (KeyError, ValueError):
                logger.warning(
                    "change_parse_failed",
                    extra={"feature": feature, "change.id": record.get("id")},
                )
        return tuple(entries)

    def read_since(self, feature: str, timestamp: datetime) -> tuple[ChangeLogEntry, ...]:
        return tuple(
            e
            for e in self.read(feature)
            if e.timestamp is not None and e.timestamp > timestamp
        )

    def read_after(self, feature: str, sequence: int) -> tuple[ChangeLogEntry, ...]:
        return tuple(e for e in self.read(feature) if e.sequence > sequence)

    def get(self, feature: str, entry_id: str) -> ChangeLogEntry | None:
        for entry in self.read(feature):
            if entry.id == entry_id:
                return entry
        return None

    def for_todo(self, feature: str, todo_id: str) -> tuple[ChangeLogEntry, ...]:
        return tuple(e for e in self.read(feature) if e.todo_id == todo_id)

    def last_sequence(self, feature: str) -> int:
        entries = self.read(feature)
        return entries[-1].sequence if entries else 0

    def query(
        self,
        feature: str,
        *,
        todo_id: str | None = None,
        change_type: ChangeType | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ChangeLogEntry]:
        """Filtered entries, newest first."""
        results = [
            e
            for e in reversed(self.read(feature))
            if (todo_id is None or e.todo_id == todo_id)
            and (change_type is None or e.change_type == change_type)
            and (since is None or (e.timestamp is not None and e.timestamp > since))
        ]
        if limit is not None:
            results = results[:limit]
        return results
