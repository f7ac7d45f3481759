"""Project configuration and story generation workflow."""

from storyloom.pipeline.config import (
    ProjectConfig,
    ProjectConfigError,
    create_default_config,
    load_project_config,
    save_project_config,
)
from storyloom.pipeline.workflow import StoryGenerationResult, generate_story

__all__ = [
    "ProjectConfig",
    "ProjectConfigError",
    "StoryGenerationResult",
    "create_default_config",
    "generate_story",
    "load_project_config",
    "save_project_config",
]
