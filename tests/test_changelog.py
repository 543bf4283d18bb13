"""Tests for the append-only change log."""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from tiertrack.todos import ChangeLog, Workspace
from tiertrack.todos.errors import ValidationError
from tiertrack.todos.types import ChangeLogEntry, ChangeType, TodoTier


@pytest.fixture
def changelog(tmp_path):
    return ChangeLog(Workspace(tmp_path / "data"), author="planner")


def _entry(todo_id="phase-1", change_type=ChangeType.TODO_UPDATED, **kwargs):
    return ChangeLogEntry(change_type=change_type, tier=TodoTier.PHASE, todo_id=todo_id, **kwargs)


class TestAppend:
    def test_assigns_id_sequence_timestamp_author(self, changelog):
        stored = changelog.append("auth", _entry())

        assert stored.id.startswith("change-")
        assert stored.sequence == 1
        assert stored.timestamp is not None
        assert stored.author == "planner"

    def test_explicit_author_kept(self, changelog):
        stored = changelog.append("auth", _entry(author="alice"))
        assert stored.author == "alice"

    def test_reserved_id_kept(self, changelog):
        entry_id = changelog.new_entry_id()
        stored = changelog.append("auth", _entry(id=entry_id))
        assert stored.id == entry_id

    def test_duplicate_id_rejected(self, changelog):
        stored = changelog.append("auth", _entry())
        with pytest.raises(ValidationError):
            changelog.append("auth", _entry(id=stored.id))
        assert len(changelog.read("auth")) == 1

    def test_read_preserves_append_order(self, changelog):
        first = changelog.append("auth", _entry("phase-1"))
        second = changelog.append("auth", _entry("phase-2"))

        entries = changelog.read("auth")
        assert isinstance(entries, tuple)
        assert [e.id for e in entries] == [first.id, second.id]
        assert [e.sequence for e in entries] == [1, 2]

    def test_round_trips_before_and_after(self, changelog):
        changelog.append(
            "auth",
            _entry(
                before={"title": "Old"},
                after={"title": "New"},
                reason="rename",
                conflicts=({"field": "title", "severity": "high"},),
            ),
        )
        entry = changelog.read("auth")[0]
        assert entry.before == {"title": "Old"}
        assert entry.after == {"title": "New"}
        assert entry.reason == "rename"
        assert entry.changed_fields() == ["title"]
        assert entry.max_conflict_severity() == "high"


class TestTimestamps:
    def test_strictly_increasing(self, changelog):
        for _ in range(5):
            changelog.append("auth", _entry())
        stamps = [e.timestamp for e in changelog.read("auth")]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_same_instant_appends_are_bumped(self, changelog, monkeypatch):
        frozen = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        monkeypatch.setattr("tiertrack.todos.changelog.utc_now", lambda: frozen)

        first = changelog.append("auth", _entry())
        second = changelog.append("auth", _entry())
        third = changelog.append("auth", _entry())

        assert first.timestamp == frozen
        assert second.timestamp == frozen + timedelta(microseconds=1)
        assert third.timestamp == frozen + timedelta(microseconds=2)

    def test_clock_going_backwards_is_bumped(self, changelog, monkeypatch):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        clock = iter([now, now - timedelta(seconds=5)])
        monkeypatch.setattr("tiertrack.todos.changelog.utc_now", lambda: next(clock))

        first = changelog.append("auth", _entry())
        second = changelog.append("auth", _entry())
        assert second.timestamp > first.timestamp


class TestQueries:
    def test_read_since_is_strict(self, changelog):
        first = changelog.append("auth", _entry())
        second = changelog.append("auth", _entry())

        assert [e.id for e in changelog.read_since("auth", first.timestamp)] == [second.id]

    def test_read_after_sequence(self, changelog):
        changelog.append("auth", _entry())
        second = changelog.append("auth", _entry())
        assert [e.id for e in changelog.read_after("auth", 1)] == [second.id]

    def test_get_and_for_todo(self, changelog):
        stored = changelog.append("auth", _entry("phase-2"))
        changelog.append("auth", _entry("phase-1"))

        assert changelog.get("auth", stored.id) == stored
        assert changelog.get("auth", "change-missing") is None
        assert [e.todo_id for e in changelog.for_todo("auth", "phase-2")] == ["phase-2"]

    def test_query_newest_first_with_filters(self, changelog):
        changelog.append("auth", _entry("phase-1", ChangeType.TODO_CREATED))
        changelog.append("auth", _entry("phase-1", ChangeType.TODO_STATUS_CHANGED))
        changelog.append("auth", _entry("phase-2", ChangeType.TODO_STATUS_CHANGED))

        results = changelog.query("auth", change_type=ChangeType.TODO_STATUS_CHANGED)
        assert [e.todo_id for e in results] == ["phase-2", "phase-1"]
        assert len(changelog.query("auth", todo_id="phase-1", limit=1)) == 1

    def test_last_sequence(self, changelog):
        assert changelog.last_sequence("auth") == 0
        changelog.append("auth", _entry())
        assert changelog.last_sequence("auth") == 1


class TestConcurrentWriters:
    def test_separate_instances_share_one_sequence(self, tmp_path):
        data_dir = tmp_path / "data"

        def write(author):
            log = ChangeLog(Workspace(data_dir), author=author)
            for _ in range(25):
                log.append("auth", _entry())

        with ThreadPoolExecutor(max_workers=4) as pool:
            for future in [pool.submit(write, f"writer-{n}") for n in range(4)]:
                future.result()

        entries = ChangeLog(Workspace(data_dir)).read("auth")
        assert [e.sequence for e in entries] == list(range(1, 101))
        assert len({e.id for e in entries}) == 100
        assert all(a.timestamp < b.timestamp for a, b in zip(entries, entries[1:]))
        assert {e.author for e in entries} == {f"writer-{n}" for n in range(4)}
