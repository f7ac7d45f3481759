"""Story tree data models.

Content models (``DialogueLine``, ``SceneletContent``) are pydantic models
shared by the wire format of the generation service, the stored scenelet
content, and the path context carried by generation tasks. Field names are
snake_case in all three places.

Records, tasks and classified responses are plain dataclasses:

- SceneletRecord: one persisted scenelet as returned by a store
- GenerationTask: one unit of pending growth work (serializable)
- LinearContinuation / ConcludingContinuation / BranchContinuation: the
  closed set of shapes a classified generation response can take
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BaseModel, ConfigDict, StringConstraints

if TYPE_CHECKING:
    from pydantic import ValidationError

NonEmptyText = Annotated[str, StringConstraints(strict=True, strip_whitespace=True, min_length=1)]


class DialogueLine(BaseModel):
    """A single spoken line inside a scenelet."""

    model_config = ConfigDict(frozen=True)

    character: NonEmptyText
    line: NonEmptyText


class SceneletContent(BaseModel):
    """Narrative content of one scenelet.

    ``choice_label`` is only meaningful for scenelets that continue a branch
    point; it is the label of the choice that leads to this scenelet.
    """

    model_config = ConfigDict(frozen=True)

    description: NonEmptyText
    dialogue: list[DialogueLine]
    shot_suggestions: list[NonEmptyText]
    choice_label: NonEmptyText | None = None

    def to_payload(self) -> dict[str, Any]:
        """Return the storage/wire representation (choice_label omitted when unset)."""
        return self.model_dump(exclude_none=True)


def format_validation_errors(error: ValidationError, prefix: str = "") -> list[str]:
    """Format pydantic validation errors as ``field.path: message`` strings.

    List indices are rendered in brackets, e.g. ``dialogue[0].character``.

    Args:
        error: Pydantic ValidationError.
        prefix: Optional location prefix prepended to every path.
    """
    messages = []
    for e in error.errors():
        loc = prefix
        for part in e["loc"]:
            if isinstance(part, int):
                loc += f"[{part}]"
            else:
                loc = f"{loc}.{part}" if loc else str(part)
        messages.append(f"{loc}: {e['msg']}" if loc else e["msg"])
    return messages


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class SceneletRecord:
    """A persisted scenelet.

    ``content`` is kept as the raw stored mapping; tree walks normalize it
    into ``SceneletContent`` and report malformed content as a structural
    violation.

    Attributes:
        id: Store-assigned id.
        story_id: Story the scenelet belongs to.
        parent_id: Parent scenelet id, None only for the root.
        choice_label_from_parent: Label of the choice leading here (branch children only).
        choice_prompt: Question asked at this scenelet (branch points only).
        content: Stored content mapping.
        is_branch_point: Whether the story forks after this scenelet.
        is_terminal_node: Whether this scenelet ends its path.
        created_at: ISO-8601 creation timestamp; orders siblings.
    """

    id: str
    story_id: str
    parent_id: str | None
    content: Any
    created_at: str
    choice_label_from_parent: str | None = None
    choice_prompt: str | None = None
    is_branch_point: bool = False
    is_terminal_node: bool = False


# ---------------------------------------------------------------------------
# Generation work
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationTask:
    """Pending growth work below one scenelet (or at the root).

    Attributes:
        story_id: Story being grown.
        parent_scenelet_id: Scenelet to continue from; None for the root task.
        path_context: Contents from the root down to and including the parent.
    """

    story_id: str
    parent_scenelet_id: str | None
    path_context: tuple[SceneletContent, ...] = ()

    @property
    def is_root(self) -> bool:
        """True for the task that generates the first scenelet of a story."""
        return self.parent_scenelet_id is None and not self.path_context

    def extend(self, parent_scenelet_id: str, content: SceneletContent) -> GenerationTask:
        """Return the follow-up task below a newly created scenelet."""
        return GenerationTask(
            story_id=self.story_id,
            parent_scenelet_id=parent_scenelet_id,
            path_context=(*self.path_context, content),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "story_id": self.story_id,
            "parent_scenelet_id": self.parent_scenelet_id,
            "path_context": [c.to_payload() for c in self.path_context],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationTask:
        """Deserialize a task written by :meth:`to_dict`.

        Raises:
            pydantic.ValidationError: If a path context entry is malformed.
        """
        return cls(
            story_id=data["story_id"],
            parent_scenelet_id=data.get("parent_scenelet_id"),
            path_context=tuple(
                SceneletContent.model_validate(c) for c in data.get("path_context", [])
            ),
        )


@dataclass
class ResumePlan:
    """Result of planning a resume over a stored tree."""

    story_id: str
    pending_tasks: list[GenerationTask] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """True when every path in the tree has reached an ending."""
        return not self.pending_tasks


# ---------------------------------------------------------------------------
# Classified generation responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LinearContinuation:
    """The story continues with exactly one scenelet."""

    scenelet: SceneletContent


@dataclass(frozen=True)
class ConcludingContinuation:
    """The path ends with exactly one final scenelet."""

    scenelet: SceneletContent


@dataclass(frozen=True)
class BranchContinuation:
    """The story forks into two or more labelled scenelets."""

    choice_prompt: str
    scenelets: tuple[SceneletContent, ...]


ClassifiedResponse = LinearContinuation | ConcludingContinuation | BranchContinuation
