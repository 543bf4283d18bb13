"""Tests for CLI commands."""

import pytest
import typer

from tiertrack.cli.app import app
from tiertrack.cli.console import run_guarded
from tiertrack.todos.errors import ErrorDetail, ValidationError
from tiertrack.todos.types import CitationContext, CitationPriority, CitationType, TodoStatus

FEATURE = "auth"


class TestConfigCommand:
    """Tests for 'tiertrack config' command."""

    def test_config_show_displays_content(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["config", "show", "--path", str(config_file)])
        assert result.exit_code == 0
        assert "[scope]" in result.stdout

    def test_config_show_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["config", "show", "--path", str(tmp_path / "missing.toml")]
        )
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_config_validate_success(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["config", "validate", "--path", str(config_file)])
        assert result.exit_code == 0
        assert "valid" in result.stdout.lower()

    def test_config_validate_invalid_toml(self, cli_runner, tmp_path):
        invalid_file = tmp_path / "invalid.toml"
        invalid_file.write_text("not valid toml [[[")

        result = cli_runner.invoke(app, ["config", "validate", "--path", str(invalid_file)])
        assert result.exit_code == 1

    def test_config_validate_invalid_config(self, cli_runner, tmp_path):
        invalid_config = tmp_path / "bad_config.toml"
        invalid_config.write_text('[scope]\nmode = "sometimes"\n')

        result = cli_runner.invoke(app, ["config", "validate", "--path", str(invalid_config)])
        assert result.exit_code == 1
        assert "validation failed" in result.stdout.lower()

    def test_config_paths(self, cli_runner):
        result = cli_runner.invoke(app, ["config", "paths"])
        assert result.exit_code == 0
        assert "features" in result.stdout

    def test_config_unknown_action(self, cli_runner):
        result = cli_runner.invoke(app, ["config", "unknown"])
        assert result.exit_code == 1
        assert "Unknown action" in result.stdout


class TestRunGuarded:
    def test_returns_result(self):
        assert run_guarded(lambda a, b=0: a + b, 2, b=3) == 5

    def test_rejection_prints_details_and_exits(self, capsys):
        def reject():
            raise ValidationError(
                "title required",
                [ErrorDetail(reason="empty title", field="title", suggestion="pass --title")],
            )

        with pytest.raises(typer.Exit) as exc_info:
            run_guarded(reject)

        assert exc_info.value.exit_code == 1
        out = capsys.readouterr().out
        assert "title required" in out
        assert "title: empty title" in out
        assert "hint: pass --title" in out


class TestTodoCommand:
    def test_add_and_list(self, cli_runner):
        result = cli_runner.invoke(app, ["todo", "add", FEATURE, "feature-auth", "Auth"])
        assert result.exit_code == 0
        assert "Created feature-auth" in result.stdout

        result = cli_runner.invoke(app, ["todo", "add", FEATURE, "phase-1", "Accounts"])
        assert result.exit_code == 0

        result = cli_runner.invoke(app, ["todo", "list", FEATURE])
        assert result.exit_code == 0
        assert "phase-1" in result.stdout
        assert "Total: 2 todo(s)" in result.stdout

    def test_add_without_parent_fails(self, cli_runner):
        result = cli_runner.invoke(app, ["todo", "add", FEATURE, "task-1.1.1", "Orphan"])
        assert result.exit_code == 1
        assert "parent" in result.stdout.lower()

    def test_add_malformed_id_fails(self, cli_runner):
        result = cli_runner.invoke(app, ["todo", "add", FEATURE, "step-1", "Bad"])
        assert result.exit_code == 1

    def test_list_empty_feature(self, cli_runner):
        result = cli_runner.invoke(app, ["todo", "list", "empty"])
        assert result.exit_code == 0
        assert "No todos found" in result.stdout

    def test_show_missing(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["todo", "show", FEATURE, "phase-9"])
        assert result.exit_code == 1
        assert "todo not found" in result.stdout

    def test_status_with_propagation(self, cli_runner, seeded):
        result = cli_runner.invoke(
            app, ["todo", "status", FEATURE, "task-1.1.1", "completed", "--propagate"]
        )
        assert result.exit_code == 0
        assert "task-1.1.1 is now completed" in result.stdout
        assert "Cited on 1 dependent todo(s)" in result.stdout

        assert seeded.citations.lookup(FEATURE, "task-1.1.2")

    def test_invalid_status(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["todo", "status", FEATURE, "task-1.1.1", "finished"])
        assert result.exit_code == 1

    def test_edit_requires_a_change(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["todo", "edit", FEATURE, "phase-2"])
        assert result.exit_code == 1
        assert "Nothing to update" in result.stdout

    def test_edit_title(self, cli_runner, seeded):
        result = cli_runner.invoke(
            app, ["todo", "edit", FEATURE, "phase-2", "--title", "Tokens", "-r", "rename"]
        )
        assert result.exit_code == 0
        assert seeded.store.require(FEATURE, "phase-2").title == "Tokens"

    def test_delete_with_children_fails(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["todo", "delete", FEATURE, "session-1.1"])
        assert result.exit_code == 1

    def test_summary(self, cli_runner, seeded):
        seeded.set_status(FEATURE, "task-1.1.1", TodoStatus.COMPLETED)

        result = cli_runner.invoke(app, ["todo", "summary", FEATURE, "session-1.1"])
        assert result.exit_code == 0
        assert "1/2 completed" in result.stdout
        assert "Validate credentials" in result.stdout


class TestChangesCommand:
    def test_list(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["changes", "list", FEATURE, "--todo", "phase-2"])
        assert result.exit_code == 0
        assert "Changes: auth" in result.stdout

    def test_show(self, cli_runner, seeded):
        entry = seeded.changelog.query(FEATURE, todo_id="phase-2")[0]

        result = cli_runner.invoke(app, ["changes", "show", FEATURE, entry.id])
        assert result.exit_code == 0
        assert "Session management" in result.stdout

    def test_show_missing(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["changes", "show", FEATURE, "change-missing"])
        assert result.exit_code == 1


class TestCitationCommand:
    def _cite(self, manager):
        return manager.citations.create(
            FEATURE,
            "phase-2",
            "c-17",
            CitationType.STATUS_CHANGE,
            [CitationContext.PHASE_START],
            CitationPriority.HIGH,
        )

    def test_list_and_dismiss(self, cli_runner, seeded):
        citation = self._cite(seeded)

        result = cli_runner.invoke(app, ["citation", "list", FEATURE])
        assert result.exit_code == 0
        assert "Total: 1 citation(s)" in result.stdout

        result = cli_runner.invoke(app, ["citation", "dismiss", FEATURE, "phase-2", citation.id])
        assert result.exit_code == 0

        result = cli_runner.invoke(app, ["citation", "list", FEATURE])
        assert "No citations found" in result.stdout

    def test_review_unknown(self, cli_runner, seeded):
        result = cli_runner.invoke(
            app, ["citation", "review", FEATURE, "phase-2", "citation-missing"]
        )
        assert result.exit_code == 1

    def test_cite_non_citable_change_warns(self, cli_runner, seeded):
        entry = seeded.changelog.query(FEATURE, todo_id="phase-2")[0]

        result = cli_runner.invoke(app, ["citation", "cite", FEATURE, entry.id, "phase-1"])
        assert result.exit_code == 0
        assert "not citation-worthy" in result.stdout


class TestTriggerCommand:
    def test_list_shows_defaults(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["trigger", "list", FEATURE])
        assert result.exit_code == 0
        assert "Triggers: auth" in result.stdout

    def test_conflict_detection_cannot_be_suppressed(self, cli_runner, seeded):
        result = cli_runner.invoke(
            app, ["trigger", "suppress", FEATURE, "trigger-conflict-detection"]
        )
        assert result.exit_code == 1
        assert "cannot be suppressed" in result.stdout

    def test_suppress_and_unsuppress(self, cli_runner, seeded):
        result = cli_runner.invoke(
            app, ["trigger", "suppress", FEATURE, "trigger-phase-start", "--hours", "2"]
        )
        assert result.exit_code == 0
        assert seeded.triggers.is_suppressed(FEATURE, "trigger-phase-start")

        result = cli_runner.invoke(app, ["trigger", "unsuppress", FEATURE, "trigger-phase-start"])
        assert result.exit_code == 0
        assert "Unsuppressed" in result.stdout

    def test_detect(self, cli_runner, seeded):
        seeded.citations.create(
            FEATURE,
            "phase-2",
            "c-17",
            CitationType.STATUS_CHANGE,
            [CitationContext.PHASE_START],
            CitationPriority.HIGH,
        )

        result = cli_runner.invoke(
            app, ["trigger", "detect", FEATURE, "phase-start", "--todo", "phase-2"]
        )
        assert result.exit_code == 0
        assert "trigger-phase-start" in result.stdout
        assert "c-17" in result.stdout

    def test_detect_nothing(self, cli_runner, seeded):
        result = cli_runner.invoke(
            app, ["trigger", "detect", FEATURE, "phase-start", "--todo", "phase-1"]
        )
        assert result.exit_code == 0
        assert "No triggers fired" in result.stdout


class TestRollbackCommand:
    def test_apply(self, cli_runner, seeded):
        seeded.update_todo(FEATURE, "phase-2", title="Tokens")
        state = seeded.rollback.get_states(FEATURE, "phase-2")[0]

        result = cli_runner.invoke(app, ["rollback", "apply", FEATURE, "phase-2", state.id])
        assert result.exit_code == 0
        assert "Rolled back phase-2" in result.stdout
        assert seeded.store.require(FEATURE, "phase-2").title == "Session management"

    def test_conflict_exits_nonzero(self, cli_runner, seeded):
        seeded.set_status(FEATURE, "task-1.1.1", TodoStatus.IN_PROGRESS)
        state = seeded.rollback.get_states(FEATURE, "task-1.1.1")[0]
        seeded.set_status(FEATURE, "task-1.1.1", TodoStatus.COMPLETED)

        result = cli_runner.invoke(app, ["rollback", "apply", FEATURE, "task-1.1.1", state.id])
        assert result.exit_code == 1
        assert "conflict" in result.stdout

        result = cli_runner.invoke(app, ["rollback", "history", FEATURE])
        assert result.exit_code == 0
        assert "Rollbacks: auth" in result.stdout

    def test_states_empty(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["rollback", "states", FEATURE, "phase-2"])
        assert result.exit_code == 0
        assert "No snapshots" in result.stdout


class TestScopeCommand:
    def test_clean_tree(self, cli_runner, seeded):
        result = cli_runner.invoke(app, ["scope", "check", FEATURE])
        assert result.exit_code == 0
        assert "No scope violations in 6 todo(s)" in result.stdout

    def test_reports_violations(self, cli_runner, seeded):
        seeded.create_todo(FEATURE, "phase-3", "Edit src/app/main.py")

        result = cli_runner.invoke(app, ["scope", "check", FEATURE, "phase-3"])
        assert result.exit_code == 1
        assert "phase-3" in result.stdout
