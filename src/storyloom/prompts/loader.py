"""Prompt template loading.

Templates are YAML files under a ``templates/`` directory, each holding the
``system`` instruction sent with every generation call. The per-call user
content is built by ``storyloom.story.prompt_builder``.

A project may ship its own ``prompts/templates/<name>.yaml``; it shadows the
bundled template of the same name for that project only.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML, YAMLError

from storyloom.observability.logging import get_logger

PROMPTS_PATH = Path(__file__).parent
INTERACTIVE_SCRIPTWRITER = "interactive_scriptwriter"

log = get_logger(__name__)


@dataclass
class PromptTemplate:
    """A system instruction loaded from YAML.

    Attributes:
        name: Template name (the file stem unless overridden in the file).
        description: Free text shown by tooling, not sent to the model.
        system: The system instruction.
        source: File the template was read from.
    """

    name: str
    description: str
    system: str
    source: Path

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str, source: Path) -> PromptTemplate:
        return cls(
            name=str(data.get("name", name)),
            description=str(data.get("description", "")),
            system=str(data.get("system", "")),
            source=source,
        )


class TemplateNotFoundError(Exception):
    """Raised when no search path has the requested template."""

    def __init__(self, template_name: str, searched: list[Path]) -> None:
        self.template_name = template_name
        self.searched = searched
        locations = ", ".join(str(p) for p in searched)
        super().__init__(f"Template not found: {template_name} (searched {locations})")


class TemplateParseError(Exception):
    """Raised when a template file is not a usable template."""

    def __init__(self, template_name: str, reason: str) -> None:
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to parse template '{template_name}': {reason}")


class PromptLoader:
    """Load templates from one or more prompt directories.

    Each directory is expected to contain a ``templates/`` folder. Earlier
    directories win, so a project directory listed before the bundled one
    overrides templates by name.
    """

    def __init__(self, *prompts_paths: Path) -> None:
        self.search_paths = [p / "templates" for p in (prompts_paths or (PROMPTS_PATH,))]
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def load(self, template_name: str) -> PromptTemplate:
        """Load a template by name (without the .yaml extension).

        Raises:
            TemplateNotFoundError: If no search path has the template.
            TemplateParseError: If the file is not valid YAML, not a mapping,
                or has no system instruction.
        """
        if template_name in self._cache:
            return self._cache[template_name]

        path = self._find(template_name)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)
        except (OSError, YAMLError) as e:
            raise TemplateParseError(template_name, str(e)) from e

        if not isinstance(data, dict):
            raise TemplateParseError(template_name, "Expected a mapping at the top level")

        template = PromptTemplate.from_dict(data, template_name, path)
        if not template.system.strip():
            raise TemplateParseError(template_name, "Missing system prompt")

        log.debug("prompt_template_loaded", template=template_name, source=str(path))
        self._cache[template_name] = template
        return template

    def list_templates(self) -> list[str]:
        """Names available across all search paths, sorted."""
        names = {
            p.stem
            for directory in self.search_paths
            if directory.is_dir()
            for p in directory.glob("*.yaml")
            if p.is_file()
        }
        return sorted(names)

    def _find(self, template_name: str) -> Path:
        for directory in self.search_paths:
            path = directory / f"{template_name}.yaml"
            if path.is_file():
                return path
        raise TemplateNotFoundError(template_name, self.search_paths)


def project_loader(project_path: Path | None = None) -> PromptLoader:
    """Loader that checks ``{project_path}/prompts`` before the bundled templates."""
    if project_path is None:
        return PromptLoader()
    return PromptLoader(project_path / "prompts", PROMPTS_PATH)


def load_system_prompt(
    template_name: str = INTERACTIVE_SCRIPTWRITER,
    project_path: Path | None = None,
) -> str:
    """Return the system instruction of a template, honouring project overrides."""
    return project_loader(project_path).load(template_name).system
