"""Snapshot assembler: canonical serialization of a validated story tree.

Downstream stages prompt with the whole story tree as context. They receive
it as a snapshot: an ordered list of entries plus a YAML-like text block
rendered from them. The text is treated as a byte-stable artifact, so the
rendering below is deliberately rigid:

- scenelets are renumbered ``scenelet-1..N`` in depth-first pre-order
- a ``branching-point-N`` entry follows each branch point, before its children
- two-space indentation, one field per line, fixed field order
- empty lists are written as ``[]``, never omitted
- strings are JSON-quoted, multi-line strings become ``|`` blocks

Tree validation and sibling ordering are shared with the resume planner
(see ``tree.py``).
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from storyloom.observability.logging import get_logger
from storyloom.story.errors import StructuralValidationError
from storyloom.story.models import DialogueLine, SceneletRecord
from storyloom.story.store import SceneletStore
from storyloom.story.tree import (
    check_node,
    index_story_tree,
    iter_depth_first,
    load_content,
    require_choice_label,
    require_choice_prompt,
)

log = get_logger(__name__)

SceneletRole = Literal["root", "branch", "terminal", "linear"]

_INDENT = "  "
_BLOCK_INDENT = "      "


@dataclass(frozen=True)
class SceneletDigest:
    """Normalized view of one scenelet inside a snapshot.

    Attributes:
        id: Canonical id (``scenelet-N``).
        source_id: Store id of the scenelet. Not rendered.
        parent_id: Canonical id of the parent, None for the root.
        role: Position of the scenelet in the tree.
        description: Scene description.
        dialogue: Spoken lines in order.
        shot_suggestions: Suggested shots in order.
        choice_label: Label of the choice leading here (branch children only).
    """

    id: str
    source_id: str
    parent_id: str | None
    role: SceneletRole
    description: str
    dialogue: tuple[DialogueLine, ...] = ()
    shot_suggestions: tuple[str, ...] = ()
    choice_label: str | None = None


@dataclass(frozen=True)
class BranchChoice:
    label: str
    leads_to: str


@dataclass(frozen=True)
class BranchingPointDigest:
    """The choice offered after a branch-point scenelet.

    Attributes:
        id: Canonical id (``branching-point-N``).
        source_scenelet_id: Canonical id of the branch-point scenelet.
        choice_prompt: Question asked to the reader.
        choices: Labels and the canonical ids they lead to, in sibling order.
    """

    id: str
    source_scenelet_id: str
    choice_prompt: str
    choices: tuple[BranchChoice, ...] = ()


@dataclass(frozen=True)
class SceneletEntry:
    digest: SceneletDigest
    kind: Literal["scenelet"] = field(default="scenelet", init=False)


@dataclass(frozen=True)
class BranchingPointEntry:
    digest: BranchingPointDigest
    kind: Literal["branching-point"] = field(default="branching-point", init=False)


SnapshotEntry = SceneletEntry | BranchingPointEntry


@dataclass(frozen=True)
class StoryTreeSnapshot:
    """Ordered entries of a story tree and their rendered text."""

    story_id: str
    entries: tuple[SnapshotEntry, ...]
    text: str


def assemble_snapshot(story_id: str, scenelets: Sequence[SceneletRecord]) -> StoryTreeSnapshot:
    """Walk a stored story tree into its canonical snapshot.

    Args:
        story_id: Story to assemble. Records of other stories are ignored.
        scenelets: All stored scenelets, in any order.

    Returns:
        The snapshot with entries in depth-first order and rendered text.

    Raises:
        StructuralValidationError: If the story has no scenelets, or the
            tree violates a structural invariant.
    """
    index = index_story_tree(story_id, scenelets)
    if index is None:
        raise StructuralValidationError(
            f"Story {story_id} requires at least one scenelet to build a snapshot.", story_id
        )

    # The walk validates cycles and orphans only once exhausted, and
    # branching-point entries need the canonical ids of later siblings.
    visits = list(iter_depth_first(index))
    canonical_ids = {
        visit.record.id: f"scenelet-{number}" for number, visit in enumerate(visits, start=1)
    }

    entries: list[SnapshotEntry] = []
    branching_count = 0
    for visit in visits:
        record, parent = visit.record, visit.parent
        children = check_node(index, record)
        content = load_content(index, record)

        choice_label = None
        if parent is not None and parent.is_branch_point:
            choice_label = require_choice_label(index, parent, record)

        entries.append(
            SceneletEntry(
                SceneletDigest(
                    id=canonical_ids[record.id],
                    source_id=record.id,
                    parent_id=canonical_ids[parent.id] if parent is not None else None,
                    role=_scenelet_role(record, parent),
                    description=content.description,
                    dialogue=tuple(content.dialogue),
                    shot_suggestions=tuple(content.shot_suggestions),
                    choice_label=choice_label,
                )
            )
        )

        if record.is_branch_point:
            branching_count += 1
            entries.append(
                BranchingPointEntry(
                    BranchingPointDigest(
                        id=f"branching-point-{branching_count}",
                        source_scenelet_id=canonical_ids[record.id],
                        choice_prompt=require_choice_prompt(index, record),
                        choices=tuple(
                            BranchChoice(
                                label=require_choice_label(index, record, child),
                                leads_to=canonical_ids[child.id],
                            )
                            for child in children
                        ),
                    )
                )
            )

    log.debug(
        "story_snapshot_assembled",
        story_id=story_id,
        scenelets=len(visits),
        branching_points=branching_count,
    )
    return StoryTreeSnapshot(
        story_id=story_id, entries=tuple(entries), text=render_snapshot_text(entries)
    )


def load_story_tree_snapshot(story_id: str, store: SceneletStore) -> StoryTreeSnapshot:
    """Load every scenelet of *story_id* from *store* and assemble the snapshot.

    Raises:
        StructuralValidationError: If the story id is empty, the story has
            no scenelets, or the stored tree is invalid.
    """
    trimmed = (story_id or "").strip()
    if not trimmed:
        raise StructuralValidationError(
            "Story id must be provided to load the story tree snapshot."
        )
    return assemble_snapshot(trimmed, store.list_scenelets_by_story(trimmed))


def _scenelet_role(record: SceneletRecord, parent: SceneletRecord | None) -> SceneletRole:
    if parent is None:
        return "root"
    if record.is_terminal_node:
        return "terminal"
    if parent.is_branch_point:
        return "branch"
    return "linear"


# -- Text rendering --------------------------------------------------------------


def render_snapshot_text(entries: Sequence[SnapshotEntry]) -> str:
    """Render snapshot entries as the canonical text block (no trailing newline)."""
    lines: list[str] = []
    for entry in entries:
        if isinstance(entry, SceneletEntry):
            lines.extend(_render_scenelet(entry.digest))
        else:
            lines.extend(_render_branching_point(entry.digest))
    return "\n".join(lines)


def _render_scenelet(digest: SceneletDigest) -> list[str]:
    lines = [f"- {digest.id}:"]
    if digest.role != "linear":
        lines.append(f"{_INDENT}role: {digest.role}")
    if digest.choice_label:
        lines.append(f"{_INDENT}choice_label: {_format_string(digest.choice_label)}")
    lines.append(f"{_INDENT}description: {_format_string(digest.description)}")

    if digest.dialogue:
        lines.append(f"{_INDENT}dialogue:")
        for dialogue_line in digest.dialogue:
            lines.append(f"{_INDENT}  - character: {_format_string(dialogue_line.character)}")
            lines.append(f"{_INDENT}    line: {_format_string(dialogue_line.line)}")
    else:
        lines.append(f"{_INDENT}dialogue: []")

    if digest.shot_suggestions:
        lines.append(f"{_INDENT}shot_suggestions:")
        for suggestion in digest.shot_suggestions:
            lines.append(f"{_INDENT}  - {_format_string(suggestion)}")
    else:
        lines.append(f"{_INDENT}shot_suggestions: []")
    return lines


def _render_branching_point(digest: BranchingPointDigest) -> list[str]:
    lines = [
        f"- {digest.id}:",
        f"{_INDENT}choice_prompt: {_format_string(digest.choice_prompt)}",
    ]
    if not digest.choices:
        lines.append(f"{_INDENT}choices: []")
        return lines

    lines.append(f"{_INDENT}choices:")
    for choice in digest.choices:
        lines.append(f"{_INDENT}  - label: {_format_string(choice.label)}")
        lines.append(f"{_INDENT}    leads_to: {choice.leads_to}")
    return lines


def _format_string(value: str) -> str:
    if not value:
        return '""'
    if "\n" not in value:
        return json.dumps(value, ensure_ascii=False)
    block = "\n".join(f"{_BLOCK_INDENT}{segment}" for segment in value.split("\n"))
    return f"|\n{block}"
