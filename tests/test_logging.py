"""Tests for logging configuration and utilities."""

import json
import logging
import os
import time

from tiertrack.logging import ComponentFormatter, JSONLHandler, configure_logging, prune_old_logs


def _record(name="tiertrack.todos.store", msg="todo_saved", **extra):
    record = logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestPruneOldLogs:
    """Tests for prune_old_logs function."""

    def test_deletes_old_files(self, tmp_path):
        old_log = tmp_path / "2024-01-01.jsonl"
        old_log.write_text('{"test": "old"}\n')
        # Set mtime to 10 days ago
        old_time = time.time() - (10 * 24 * 60 * 60)
        os.utime(old_log, (old_time, old_time))

        recent_log = tmp_path / "2024-01-10.jsonl"
        recent_log.write_text('{"test": "recent"}\n')

        deleted = prune_old_logs(tmp_path, retention_days=7)

        assert deleted == 1
        assert not old_log.exists()
        assert recent_log.exists()

    def test_ignores_non_jsonl_files(self, tmp_path):
        old_txt = tmp_path / "old.txt"
        old_txt.write_text("old text")
        old_time = time.time() - (10 * 24 * 60 * 60)
        os.utime(old_txt, (old_time, old_time))

        assert prune_old_logs(tmp_path, retention_days=7) == 0
        assert old_txt.exists()

    def test_handles_nonexistent_directory(self, tmp_path):
        assert prune_old_logs(tmp_path / "nonexistent") == 0


class TestJSONLHandler:
    def test_writes_one_line_per_record(self, tmp_path):
        handler = JSONLHandler(tmp_path / "logs")
        try:
            handler.emit(_record(feature="auth", todo_id="phase-1"))
            handler.emit(_record(msg="change_logged", sequence=4))
        finally:
            handler.close()

        files = list((tmp_path / "logs").glob("*.jsonl"))
        assert len(files) == 1
        lines = [json.loads(line) for line in files[0].read_text().splitlines()]
        assert [line["message"] for line in lines] == ["todo_saved", "change_logged"]
        assert lines[0]["component"] == "todos"
        assert lines[0]["feature"] == "auth"
        assert lines[0]["todo_id"] == "phase-1"
        assert "extra" not in lines[0]
        assert lines[1]["extra"] == {"sequence": 4}


class TestComponentFormatter:
    def test_extracts_component_from_tiertrack_logger(self):
        formatter = ComponentFormatter("%(component)s: %(message)s")
        assert formatter.format(_record(name="tiertrack.cli.commands.todo")) == "cli: todo_saved"

    def test_extracts_component_from_other_logger(self):
        formatter = ComponentFormatter("%(component)s: %(message)s")
        assert formatter.format(_record(name="filelock")) == "filelock: todo_saved"


class TestConfigureLogging:
    def test_level_from_argument(self):
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("filelock").level == logging.WARNING

    def test_invalid_level_falls_back_to_warning(self, monkeypatch):
        monkeypatch.setenv("TIERTRACK_LOG_LEVEL", "chatty")
        configure_logging()
        assert logging.getLogger().level == logging.WARNING

    def test_log_to_file_uses_home_logs(self, isolated_home):
        configure_logging("INFO", log_to_file=True)
        try:
            logging.getLogger("tiertrack.todos.manager").info("todo_created")
        finally:
            configure_logging("WARNING")

        assert list((isolated_home / "logs").glob("*.jsonl"))
