"""Configuration module."""

from tiertrack.config.loader import (
    get_default_config,
    load_config,
    load_config_or_default,
)
from tiertrack.config.models import (
    RollbackConfig,
    ScopeConfig,
    TiertrackConfig,
    TriggerConfig,
)
from tiertrack.config.paths import (
    get_config_path,
    get_data_dir,
    get_logs_path,
    get_tiertrack_home,
)

__all__ = [
    "RollbackConfig",
    "ScopeConfig",
    "TiertrackConfig",
    "TriggerConfig",
    "get_config_path",
    "get_data_dir",
    "get_default_config",
    "get_logs_path",
    "get_tiertrack_home",
    "load_config",
    "load_config_or_default",
]
