"""Per-feature file storage.

Each feature lives in ``<data_dir>/features/<feature>/``. Collections are
JSONL files rewritten atomically (tempfile + fsync + os.replace()); the
change log is appended one line at a time. All access goes through the
feature's FileLock, which is re-entrant for the owning FeatureStorage so
components can nest reads inside a write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from filelock import FileLock

from tiertrack.config.paths import get_features_path
from tiertrack.todos.ids import validate_feature_name

logger = logging.getLogger(__name__)

TODOS_FILE = "todos.jsonl"
CHANGE_LOG_FILE = "change_log.jsonl"
PREVIOUS_STATES_FILE = "previous_states.jsonl"
ROLLBACKS_FILE = "rollbacks.jsonl"
TRIGGERS_FILE = "triggers.json"


def _read_jsonl(path: Path) -> list[dict[str, Any]]:
    """Read JSONL file, skipping blank/corrupt lines."""
    results: list[dict[str, Any]] = []
    if not path.exists():
        return results
    with path.open(encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                results.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(
                    "corrupt_jsonl_line",
                    extra={"file.line_no": line_no, "file.path": str(path)},
                )
    return results


def _write_jsonl_atomic(path: Path, records: list[dict[str, Any]]) -> None:
    """Write JSONL atomically via tempfile + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record, separators=(",", ":")))
                f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        Path(tmp).replace(path)
    except BaseException:
        try:
            Path(tmp).unlink()
        except OSError:
            pass
        raise


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON atomically via tempfile + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, indent=2))
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        Path(tmp).replace(path)
    except BaseException:
        try:
            Path(tmp).unlink()
        except OSError:
            pass
        raise


def _append_jsonl_line(path: Path, line: str) -> None:
    """Append one complete line and fsync before returning."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line)
        f.write("\n")
        f.flush()
        os.fsync(f.fileno())


class FeatureStorage:
    """Files and lock for one feature directory."""

    def __init__(self, root: Path, feature: str) -> None:
        self._feature = validate_feature_name(feature)
        self._dir = root / feature
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self._dir / ".lock"))

    @property
    def feature(self) -> str:
        return self._feature

    @property
    def directory(self) -> Path:
        return self._dir

    def path(self, name: str) -> Path:
        return self._dir / name

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def read_records(self, name: str) -> list[dict[str, Any]]:
        with self._lock:
            return _read_jsonl(self.path(name))

    def write_records(self, name: str, records: list[dict[str, Any]]) -> None:
        with self._lock:
            _write_jsonl_atomic(self.path(name), records)

    def append_line(self, name: str, line: str) -> None:
        with self._lock:
            _append_jsonl_line(self.path(name), line)

    def read_document(self, name: str) -> dict[str, Any] | None:
        path = self.path(name)
        with self._lock:
            if not path.exists():
                return None
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("corrupt_json_file", extra={"file.path": str(path)})
                return None

    def write_document(self, name: str, data: dict[str, Any]) -> None:
        with self._lock:
            _write_json_atomic(self.path(name), data)


class Workspace:
    """Root of all feature directories under one data dir.

    Hands out one FeatureStorage per feature so every component touching a
    feature shares (and can re-enter) the same lock.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self._root = get_features_path(data_dir)
        self._features: dict[str, FeatureStorage] = {}
        self._guard = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def feature(self, feature: str) -> FeatureStorage:
        with self._guard:
            storage = self._features.get(feature)
            if storage is None:
                storage = FeatureStorage(self._root, feature)
                self._features[feature] = storage
            return storage

    def list_features(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.name for p in self._root.iterdir() if p.is_dir())
