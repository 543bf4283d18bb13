"""Configuration models using Pydantic."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from tiertrack.config.paths import get_data_dir

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high", "critical"]

# Fields a rollback would overwrite, ranked by how costly it is to silently
# discard a newer value. Unlisted fields default to "medium".
DEFAULT_FIELD_SEVERITY: dict[str, Severity] = {
    "status": "high",
    "parent_id": "high",
    "completed_at": "medium",
    "blocked_by": "medium",
    "blocks": "medium",
    "title": "medium",
    "scope": "medium",
    "description": "low",
    "tags": "low",
    "metadata": "low",
}


class ScopeConfig(BaseModel):
    """Scope enforcement policy applied when todos are saved."""

    # "warn" saves and records violations, "block" rejects the save
    mode: Literal["warn", "block"] = "warn"


class RollbackConfig(BaseModel):
    """Rollback conflict policy."""

    field_severity: dict[str, Severity] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_SEVERITY)
    )
    default_severity: Severity = "medium"
    # Conflicts at or above this severity stop a rollback from applying
    blocking_severity: Severity = "high"

    @field_validator("field_severity", mode="after")
    @classmethod
    def _merge_defaults(cls, value: dict[str, Severity]) -> dict[str, Severity]:
        """Overrides from TOML extend the built-in table instead of replacing it."""
        return {**DEFAULT_FIELD_SEVERITY, **value}

    def severity_for(self, field: str) -> Severity:
        return self.field_severity.get(field, self.default_severity)


class TriggerConfig(BaseModel):
    """Defaults for trigger evaluation."""

    recent_hours: float = 24.0
    default_suppress_hours: float = 1.0


class TiertrackConfig(BaseModel):
    """Root configuration model."""

    data_dir: Path = Field(default_factory=get_data_dir)
    author: str = "system"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    scope: ScopeConfig = Field(default_factory=ScopeConfig)
    rollback: RollbackConfig = Field(default_factory=RollbackConfig)
    triggers: TriggerConfig = Field(default_factory=TriggerConfig)

    @field_validator("data_dir", mode="after")
    @classmethod
    def _expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()
