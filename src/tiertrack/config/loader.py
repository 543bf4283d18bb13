"""Load TiertrackConfig from TOML, with TIERTRACK_* environment overrides."""

import os
import tomllib
from pathlib import Path
from typing import Any

from tiertrack.config.models import TiertrackConfig
from tiertrack.config.paths import get_config_path

# Environment variable -> key path inside the config document
ENV_OVERRIDES = {
    "TIERTRACK_DATA_DIR": ("data_dir",),
    "TIERTRACK_SCOPE_MODE": ("scope", "mode"),
    "TIERTRACK_AUTHOR": ("author",),
}


def _search_paths() -> list[Path]:
    """Project-local file first, then the per-user one."""
    return [Path("tiertrack.toml"), get_config_path()]


def _find_config_file(path: Path | None) -> Path:
    if path is not None:
        explicit = Path(path).expanduser()
        if not explicit.exists():
            raise FileNotFoundError(f"Config file not found: {explicit}")
        return explicit

    candidates = _search_paths()
    found = next((p for p in candidates if p.exists()), None)
    if found is None:
        searched = ", ".join(str(p) for p in candidates)
        raise FileNotFoundError(f"No config file found. Searched: {searched}")
    return found


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for env_var, keys in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if not value:
            continue
        target = raw
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = value
    return raw


def load_config(path: Path | None = None) -> TiertrackConfig:
    """Read and validate the config file.

    Without ``path``, ``./tiertrack.toml`` wins over
    ``$TIERTRACK_HOME/config.toml``. Environment overrides are applied on
    top of the file.

    Raises:
        FileNotFoundError: No file at ``path``, or none in the search paths.
        tomllib.TOMLDecodeError: The file is not valid TOML.
        pydantic.ValidationError: A value is out of range or mistyped.
    """
    config_file = _find_config_file(path)
    with config_file.open("rb") as f:
        raw = tomllib.load(f)
    return TiertrackConfig.model_validate(_apply_env_overrides(raw))


def load_config_or_default(path: Path | None = None) -> TiertrackConfig:
    """Like ``load_config``, but no file in the search paths means defaults.

    An explicit ``path`` that does not exist is still an error.
    """
    try:
        return load_config(path)
    except FileNotFoundError:
        if path is not None:
            raise
        return get_default_config()


def get_default_config() -> TiertrackConfig:
    """Built-in defaults with environment overrides applied."""
    return TiertrackConfig.model_validate(_apply_env_overrides({}))
