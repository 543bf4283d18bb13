"""Logging setup for tiertrack.

Only entry points (the CLI, or a host tool embedding the library) call
``configure_logging()``. Library modules just use
``logging.getLogger(__name__)`` and log short event names such as
``todo_saved`` or ``rollback_blocked``, with ids passed through ``extra``.

Levels:
- DEBUG: reads, skipped citations, trigger condition results
- INFO: audited mutations (saves, change-log appends, rollbacks)
- WARNING: scope violations in warn mode, rollback conflicts, corrupt lines
- ERROR: failures that abort an operation

The JSONL file handler lifts ``feature``, ``todo_id`` and ``change_id`` to
top-level keys so a day's log can be filtered with ``jq`` per feature.
"""

import json
import logging
import os
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TextIO

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_RETENTION_DAYS = 7

# Keys promoted out of ``extra`` in JSONL entries
_TOP_LEVEL_KEYS = ("feature", "todo_id", "change_id")

_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "component"}


def prune_old_logs(
    logs_dir: Path,
    retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
    suffix: str = ".jsonl",
) -> int:
    """Remove ``*<suffix>`` files in ``logs_dir`` not modified for ``retention_days``.

    Returns the number of files removed. Files that vanish or cannot be
    removed are left for the next pass.
    """
    if not logs_dir.is_dir():
        return 0

    cutoff = time.time() - retention_days * 86400
    removed = 0
    for path in logs_dir.glob(f"*{suffix}"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError:
            continue
    return removed


def _component_for(logger_name: str) -> str:
    """``tiertrack.todos.rollback`` -> ``todos``; third-party loggers keep their root."""
    head, _, rest = logger_name.partition(".")
    if head == "tiertrack" and rest:
        return rest.split(".", 1)[0]
    return head


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


class JSONLHandler(logging.Handler):
    """Append one JSON object per record to ``<logs_dir>/YYYY-MM-DD.jsonl``.

    A new file is opened when the UTC date changes; old files are pruned
    at that point.
    """

    def __init__(self, logs_dir: Path, retention_days: int = DEFAULT_LOG_RETENTION_DAYS):
        super().__init__()
        logs_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir = logs_dir
        self.retention_days = retention_days
        self._day: str | None = None
        self._stream: TextIO | None = None

    def _stream_for_today(self) -> TextIO:
        day = datetime.now(UTC).date().isoformat()
        if self._stream is None or day != self._day:
            self._close_stream()
            self._day = day
            self._stream = (self.logs_dir / f"{day}.jsonl").open("a", encoding="utf-8")
            prune_old_logs(self.logs_dir, self.retention_days)
        return self._stream

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def format_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "component": _component_for(record.name),
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = _record_extra(record)
        for key in _TOP_LEVEL_KEYS:
            if key in extra:
                entry[key] = extra.pop(key)
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = (self.formatter or logging.Formatter()).formatException(
                record.exc_info
            )
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.format_entry(record), default=str)
            stream = self._stream_for_today()
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self._close_stream()
        super().close()


class ComponentFormatter(logging.Formatter):
    """Adds ``%(component)s``: the tiertrack subpackage a record came from."""

    def format(self, record: logging.LogRecord) -> str:
        record.component = _component_for(record.name)
        return super().format(record)


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get("TIERTRACK_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    if name not in LOG_LEVELS:
        name = DEFAULT_LOG_LEVEL
    return getattr(logging, name)


def _console_handler(use_rich: bool) -> logging.Handler:
    if use_rich:
        from rich.logging import RichHandler

        handler: logging.Handler = RichHandler(
            show_path=False,
            show_time=True,
            rich_tracebacks=False,
            markup=False,
        )
        handler.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
        return handler

    handler = logging.StreamHandler()
    handler.setFormatter(
        ComponentFormatter(
            "%(asctime)s %(levelname)-7s %(component)s | %(message)s", datefmt="%H:%M:%S"
        )
    )
    return handler


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    log_to_file: bool = False,
) -> None:
    """Install root handlers. Safe to call more than once; the last call wins.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Falls back to
            ``TIERTRACK_LOG_LEVEL``, then WARNING; unknown names also fall
            back to WARNING.
        use_rich: Render console records with rich.
        log_to_file: Also write JSONL under ``$TIERTRACK_HOME/logs``.
    """
    from tiertrack.config.paths import get_logs_path

    log_level = _resolve_level(level)
    handlers = [_console_handler(use_rich)]
    if log_to_file:
        file_handler = JSONLHandler(get_logs_path())
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # filelock logs every acquire/release at DEBUG
    logging.getLogger("filelock").setLevel(logging.WARNING)
