"""Configuration loading with deterministic merge order.

Precedence, lowest to highest: built-in defaults, ``line_notes.toml`` at the
project root, then explicit overrides (CLI flags).
"""

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_FILENAME = "line_notes.toml"


class ConfigError(ValueError):
    """Raised when the configuration file is unreadable or invalid."""

    pass


class NotesConfig(BaseModel):
    """Fully merged engine configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    storage_dir: str = Field(default=".notes", min_length=1)
    lock_timeout: float = Field(default=5.0, gt=0)
    git_timeout: float = Field(default=10.0, gt=0)
    debounce_seconds: float = Field(default=0.5, ge=0)
    verbose: bool = False

    def storage_path(self, project_root: Path) -> Path:
        """Absolute directory holding sidecars and metadata."""
        path = Path(self.storage_dir)
        if path.is_absolute():
            return path
        return project_root.resolve() / path


def load_config_file(project_root: Path) -> dict[str, Any]:
    """Load the optional ``line_notes.toml`` from the project root.

    Returns:
        The parsed table, or an empty dict when the file does not exist

    Raises:
        ConfigError: If the file is not valid TOML
    """
    config_path = project_root / CONFIG_FILENAME
    if not config_path.exists():
        return {}
    try:
        with config_path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e


def load_config(project_root: Path, **overrides: Any) -> NotesConfig:
    """Merge defaults, the project file, then non-None overrides.

    Args:
        project_root: Directory searched for ``line_notes.toml``
        **overrides: Field values from the caller; None means "not set"

    Raises:
        ConfigError: If the merged values fail validation
    """
    payload = load_config_file(project_root)
    merged = dict(payload)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return NotesConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
