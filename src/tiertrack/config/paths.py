"""Centralized path management for tiertrack.

All state (config, feature data, logs) is stored under a single base
directory. The base directory can be overridden with the TIERTRACK_HOME
environment variable.

Default layout:
    ~/.tiertrack/
    ├── config.toml
    ├── features/<feature>/    # todos, change log, snapshots, rollbacks
    └── logs/YYYY-MM-DD.jsonl
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "TIERTRACK_HOME"


@lru_cache(maxsize=1)
def get_tiertrack_home() -> Path:
    """Get the base directory for all tiertrack data.

    Resolution order:
    1. TIERTRACK_HOME environment variable (if set)
    2. Platform default (~/.tiertrack)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".tiertrack"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_tiertrack_home() / "config.toml"


def get_data_dir() -> Path:
    """Get the default data directory (per-feature state lives below it)."""
    return get_tiertrack_home()


def get_features_path(data_dir: Path | None = None) -> Path:
    """Get the directory holding one subdirectory per feature."""
    return (data_dir or get_data_dir()) / "features"


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_tiertrack_home() / "logs"


def ensure_tiertrack_home() -> Path:
    """Ensure the tiertrack home directory exists."""
    home = get_tiertrack_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def get_all_paths() -> dict[str, Path]:
    """Get all standard paths for debugging/display."""
    return {
        "home": get_tiertrack_home(),
        "config": get_config_path(),
        "features": get_features_path(),
        "logs": get_logs_path(),
    }
