"""Project configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from storyloom.story.prompt_builder import DEFAULT_TARGET_SCENELETS_PER_PATH

DEFAULT_PROVIDER = "openai/gpt-5-mini"
DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_DATABASE = "story.db"
CONFIG_FILENAME = "project.yaml"

PROVIDER_ENV_VAR = "STORYLOOM_PROVIDER"


@dataclass
class GenerationConfig:
    """Settings applied to every growth run of a project.

    Attributes:
        timeout_ms: Deadline for each generation call.
        target_scenelets_per_path: Preferred path length shown to the model.
        max_scenelets: Scenelets a single run may create. None for unbounded.
    """

    timeout_ms: int | None = DEFAULT_TIMEOUT_MS
    target_scenelets_per_path: int = DEFAULT_TARGET_SCENELETS_PER_PATH
    max_scenelets: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
        return cls(
            timeout_ms=_optional_positive_int(data, "timeout_ms", DEFAULT_TIMEOUT_MS),
            target_scenelets_per_path=_positive_int(
                data, "target_scenelets_per_path", DEFAULT_TARGET_SCENELETS_PER_PATH
            ),
            max_scenelets=_optional_positive_int(data, "max_scenelets", None),
        )


@dataclass
class ProjectConfig:
    """Configuration read from ``project.yaml``.

    Provider resolution order:
    1. ``STORYLOOM_PROVIDER`` environment variable
    2. ``providers.default`` in the project config
    """

    name: str
    provider: str = DEFAULT_PROVIDER
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    database: str = DEFAULT_DATABASE

    def get_provider(self) -> str:
        """Get the effective provider string."""
        return os.getenv(PROVIDER_ENV_VAR) or self.provider

    def database_path(self, project_path: Path) -> Path:
        """Resolve the scenelet database relative to the project directory."""
        path = Path(self.database)
        return path if path.is_absolute() else project_path / path

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        """Create config from dictionary.

        Raises:
            ValueError: If a section has the wrong shape or a value is invalid.
        """
        providers = _section(data, "providers")
        generation = _section(data, "generation")
        storage = _section(data, "storage")
        return cls(
            name=str(data.get("name", "unnamed")),
            provider=str(providers.get("default") or DEFAULT_PROVIDER),
            generation=GenerationConfig.from_dict(generation),
            database=str(storage.get("database") or DEFAULT_DATABASE),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "providers": {"default": self.provider},
            "generation": {
                "timeout_ms": self.generation.timeout_ms,
                "target_scenelets_per_path": self.generation.target_scenelets_per_path,
                "max_scenelets": self.generation.max_scenelets,
            },
            "storage": {"database": self.database},
        }


class ProjectConfigError(Exception):
    """Raised when project configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load project config at {path}: {reason}")


def load_project_config(project_path: Path) -> ProjectConfig:
    """Load project configuration from project.yaml.

    Args:
        project_path: Path to the project root directory.

    Raises:
        ProjectConfigError: If config cannot be loaded.
    """
    config_path = project_path / CONFIG_FILENAME

    if not config_path.exists():
        raise ProjectConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except Exception as e:
        raise ProjectConfigError(config_path, str(e)) from e

    if data is None:
        raise ProjectConfigError(config_path, "Empty file")
    if not isinstance(data, dict):
        raise ProjectConfigError(config_path, "Expected a mapping at the top level")

    try:
        return ProjectConfig.from_dict(data)
    except ValueError as e:
        raise ProjectConfigError(config_path, str(e)) from e


def create_default_config(name: str, provider: str | None = None) -> ProjectConfig:
    """Create a default project configuration.

    Args:
        name: Project name.
        provider: Optional provider string (e.g. ``ollama/qwen3:8b``).
    """
    return ProjectConfig(name=name, provider=provider or DEFAULT_PROVIDER)


def save_project_config(config: ProjectConfig, project_path: Path) -> Path:
    """Write *config* to ``project.yaml`` in *project_path* and return the file path."""
    project_path.mkdir(parents=True, exist_ok=True)
    config_path = project_path / CONFIG_FILENAME
    yaml = YAML()
    yaml.default_flow_style = False
    with config_path.open("w", encoding="utf-8") as f:
        yaml.dump(config.to_dict(), f)
    return config_path


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping")
    return value


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"'{key}' must be a positive integer, got {value!r}")
    return value


def _optional_positive_int(data: dict[str, Any], key: str, default: int | None) -> int | None:
    if key in data and data[key] is None:
        return None
    if key not in data and default is None:
        return None
    return _positive_int(data, key, default or 0)
