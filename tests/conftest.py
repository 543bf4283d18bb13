"""Shared test fixtures and factories."""

from pathlib import Path

import pytest

from tiertrack.config.models import ScopeConfig, TiertrackConfig
from tiertrack.config.paths import ENV_VAR, get_tiertrack_home
from tiertrack.todos import TodoManager
from tiertrack.todos.types import Todo, TodoStatus, TodoTier, utc_now

FEATURE = "auth"

# =============================================================================
# Environment Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point TIERTRACK_HOME at a temp dir and run from an empty cwd."""
    home = tmp_path / "home"
    monkeypatch.setenv(ENV_VAR, str(home))
    for var in ("TIERTRACK_DATA_DIR", "TIERTRACK_SCOPE_MODE", "TIERTRACK_AUTHOR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    get_tiertrack_home.cache_clear()
    yield home
    get_tiertrack_home.cache_clear()


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def config(isolated_home: Path) -> TiertrackConfig:
    """Config whose data dir is the one the CLI resolves by default."""
    return TiertrackConfig(data_dir=isolated_home)


@pytest.fixture
def blocking_config(isolated_home: Path) -> TiertrackConfig:
    return TiertrackConfig(data_dir=isolated_home, scope=ScopeConfig(mode="block"))


@pytest.fixture
def config_toml_content() -> str:
    """Valid TOML config content."""
    return """
author = "planner"

[scope]
mode = "block"

[rollback]
blocking_severity = "critical"

[rollback.field_severity]
title = "high"

[triggers]
recent_hours = 12
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


# =============================================================================
# Manager Fixtures
# =============================================================================


@pytest.fixture
def manager(config: TiertrackConfig) -> TodoManager:
    return TodoManager(config)


@pytest.fixture
def seeded(manager: TodoManager) -> TodoManager:
    """A small feature tree.

    feature-auth
    ├── phase-1
    │   └── session-1.1
    │       ├── task-1.1.1
    │       └── task-1.1.2 (blocked by task-1.1.1)
    └── phase-2
    """
    manager.create_feature(FEATURE, "User authentication", "Let people sign in.")
    manager.create_todo(FEATURE, "phase-1", "Account basics", "Sign-up and login flows.")
    manager.create_todo(FEATURE, "session-1.1", "Login form")
    manager.create_todo(FEATURE, "task-1.1.1", "Wire up the login form")
    manager.create_todo(
        FEATURE, "task-1.1.2", "Validate credentials", blocked_by=["task-1.1.1"]
    )
    manager.create_todo(FEATURE, "phase-2", "Session management")
    return manager


@pytest.fixture
def make_todo():
    """Factory for unsaved todos."""

    def _make(
        todo_id: str,
        tier: TodoTier,
        title: str = "Untitled",
        description: str = "",
        parent_id: str | None = None,
    ) -> Todo:
        now = utc_now()
        return Todo(
            id=todo_id,
            title=title,
            description=description,
            status=TodoStatus.PENDING,
            tier=tier,
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )

    return _make


# =============================================================================
# CLI Test Helpers
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
