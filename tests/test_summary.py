"""Tests for progress roll-up."""

from tiertrack.todos.summary import aggregate_details, generate_summary, summarize_objective
from tiertrack.todos.types import TodoStatus, TodoTier

FEATURE = "auth"


class TestSummarizeObjective:
    def test_first_sentence_of_description(self, make_todo):
        todo = make_todo("phase-1", TodoTier.PHASE, "Accounts", "Sign-up flows. Then login.")
        assert summarize_objective(todo) == "Sign-up flows"

    def test_falls_back_to_title(self, make_todo):
        assert summarize_objective(make_todo("phase-1", TodoTier.PHASE, "Accounts")) == "Accounts"


class TestAggregateDetails:
    def test_counts_and_status(self, seeded):
        seeded.set_status(FEATURE, "task-1.1.1", TodoStatus.COMPLETED)

        details = aggregate_details(seeded.store, FEATURE, "session-1.1")
        assert details.progress.to_dict() == {
            "completed": 1,
            "in_progress": 0,
            "pending": 1,
            "total": 2,
        }
        assert details.status == TodoStatus.IN_PROGRESS
        assert details.dependencies == ["task-1.1.1"]
        assert [t["id"] for t in details.tasks] == ["task-1.1.1", "task-1.1.2"]

    def test_all_children_done(self, seeded):
        seeded.set_status(FEATURE, "task-1.1.1", TodoStatus.COMPLETED)
        seeded.set_status(FEATURE, "task-1.1.2", TodoStatus.COMPLETED)

        assert aggregate_details(seeded.store, FEATURE, "session-1.1").status == TodoStatus.COMPLETED

    def test_objectives_from_phase_children(self, seeded):
        details = aggregate_details(seeded.store, FEATURE, "feature-auth")
        assert details.objectives == ["Sign-up and login flows", "Session management"]

    def test_no_children_is_pending(self, seeded):
        details = aggregate_details(seeded.store, FEATURE, "phase-2")
        assert details.status == TodoStatus.PENDING
        assert details.progress.total == 0


class TestGenerateSummary:
    def test_next_steps_are_open_tasks(self, seeded):
        seeded.set_status(FEATURE, "task-1.1.1", TodoStatus.COMPLETED)
        todo = seeded.store.require(FEATURE, "session-1.1")

        summary = generate_summary(seeded.store, FEATURE, todo)
        assert summary.title == "Login form"
        assert summary.next_steps == ["Validate credentials"]
        assert summary.key_dependencies == ["task-1.1.1"]
        assert summary.to_dict()["status"] == "in_progress"
