"""Shared structural primitives for stored story trees.

Both the resume planner and the snapshot assembler rebuild a tree from the
flat list a store returns. This module owns that derivation so that both
see the same root, the same canonical sibling order, and the same
violations:

- exactly one root (``parent_id is None``)
- every referenced parent exists
- children ordered by ``created_at`` ascending, ties broken by id
- no cycles, no scenelets unreachable from the root

Violations raise ``StructuralValidationError`` naming the story and the
offending scenelet ids. Nothing is repaired.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from storyloom.story.errors import StructuralValidationError
from storyloom.story.models import SceneletContent, SceneletRecord, format_validation_errors

_EARLIEST = datetime.min.replace(tzinfo=UTC)


@dataclass
class StoryTreeIndex:
    """Id and parent/children indices over one story's scenelets.

    Attributes:
        story_id: Story the index was built for.
        root: The single root scenelet.
        records: Scenelets by id.
        children: Child scenelets by parent id, in canonical order.
    """

    story_id: str
    root: SceneletRecord
    records: dict[str, SceneletRecord] = field(default_factory=dict)
    children: dict[str, list[SceneletRecord]] = field(default_factory=dict)

    def children_of(self, scenelet_id: str) -> list[SceneletRecord]:
        return self.children.get(scenelet_id, [])

    def violation(self, message: str, *scenelet_ids: str) -> StructuralValidationError:
        """Build a StructuralValidationError bound to this story."""
        return StructuralValidationError(message, self.story_id, list(scenelet_ids))


@dataclass(frozen=True)
class TreeVisit:
    """One step of a depth-first walk."""

    record: SceneletRecord
    parent: SceneletRecord | None
    depth: int


def index_story_tree(story_id: str, scenelets: Sequence[SceneletRecord]) -> StoryTreeIndex | None:
    """Index the scenelets belonging to *story_id*.

    Args:
        story_id: Story to index. Records of other stories are ignored.
        scenelets: Records as returned by a store, in any order.

    Returns:
        The index, or None when the story has no scenelets at all.

    Raises:
        StructuralValidationError: On malformed records, duplicate ids, a
            missing or duplicated root, or a parent id that does not exist.
    """
    filtered = [r for r in scenelets if r.story_id == story_id]
    if not filtered:
        return None

    records: dict[str, SceneletRecord] = {}
    children: dict[str, list[SceneletRecord]] = {}
    roots: list[SceneletRecord] = []

    for record in filtered:
        _validate_record(story_id, record)
        if record.id in records:
            raise StructuralValidationError(
                f"Story {story_id} contains duplicate scenelet id {record.id}.",
                story_id,
                [record.id],
            )
        records[record.id] = record
        if record.parent_id is None:
            roots.append(record)
        else:
            children.setdefault(record.parent_id, []).append(record)

    if not roots:
        raise StructuralValidationError(f"Story {story_id} is missing a root scenelet.", story_id)
    if len(roots) > 1:
        root_ids = [r.id for r in roots]
        raise StructuralValidationError(
            f"Story {story_id} has multiple roots: {', '.join(root_ids)}.",
            story_id,
            root_ids,
        )

    for parent_id, siblings in children.items():
        if parent_id not in records:
            child_ids = [c.id for c in siblings]
            raise StructuralValidationError(
                f"Scenelet {parent_id} is referenced as parent by "
                f"{', '.join(child_ids)} but is missing from story {story_id}.",
                story_id,
                [parent_id, *child_ids],
            )
        siblings.sort(key=sibling_sort_key)

    return StoryTreeIndex(story_id=story_id, root=roots[0], records=records, children=children)


def iter_depth_first(index: StoryTreeIndex) -> Iterator[TreeVisit]:
    """Walk the tree in pre-order, children in canonical order.

    The walk uses an explicit stack, so arbitrarily deep stories do not hit
    the recursion limit. Once the walk is exhausted, every indexed scenelet
    must have been visited exactly once.

    Raises:
        StructuralValidationError: If a scenelet reappears on its own
            ancestor path (cycle) or some scenelets are unreachable from the
            root (orphans).
    """
    visited: set[str] = set()
    stack: list[tuple[SceneletRecord, SceneletRecord | None, frozenset[str]]] = [
        (index.root, None, frozenset())
    ]

    while stack:
        record, parent, ancestors = stack.pop()
        if record.id in ancestors or record.id in visited:
            raise index.violation(
                f"Cycle detected in story {index.story_id} at scenelet {record.id}.", record.id
            )
        visited.add(record.id)
        yield TreeVisit(record=record, parent=parent, depth=len(ancestors))

        path = ancestors | {record.id}
        for child in reversed(index.children_of(record.id)):
            stack.append((child, record, path))

    if len(visited) != len(index.records):
        orphans = [sid for sid in index.records if sid not in visited]
        raise index.violation(
            f"Story {index.story_id} contains orphaned scenelets: {', '.join(orphans)}.",
            *orphans,
        )


def load_content(index: StoryTreeIndex, record: SceneletRecord) -> SceneletContent:
    """Normalize stored content of *record*.

    A missing dialogue list is read as empty; every other field follows the
    same rules as freshly generated content.

    Raises:
        StructuralValidationError: If the stored content is malformed.
    """
    raw: Any = record.content
    if not isinstance(raw, dict):
        raise index.violation(
            f"Scenelet {record.id} content must be an object with script fields.", record.id
        )
    data = dict(raw)
    data.setdefault("dialogue", [])
    try:
        return SceneletContent.model_validate(data)
    except ValidationError as e:
        details = "; ".join(format_validation_errors(e))
        raise index.violation(
            f"Scenelet {record.id} has invalid content: {details}", record.id
        ) from e


def require_choice_prompt(index: StoryTreeIndex, record: SceneletRecord) -> str:
    """Return the trimmed choice prompt of a branch point.

    Raises:
        StructuralValidationError: If the prompt is missing or blank.
    """
    prompt = (record.choice_prompt or "").strip()
    if not prompt:
        raise index.violation(
            f"Branch scenelet {record.id} is missing a choice prompt.", record.id
        )
    return prompt


def require_choice_label(
    index: StoryTreeIndex, parent: SceneletRecord, child: SceneletRecord
) -> str:
    """Return the trimmed label leading from branch point *parent* to *child*.

    Raises:
        StructuralValidationError: If the label is missing or blank.
    """
    label = (child.choice_label_from_parent or "").strip()
    if not label:
        raise index.violation(
            f"Branch scenelet {parent.id} has a child without a choice label ({child.id}).",
            parent.id,
            child.id,
        )
    return label


def sibling_sort_key(record: SceneletRecord) -> tuple[datetime, str]:
    """Canonical sibling order: creation time ascending, then id."""
    return (_parse_timestamp(record.created_at), record.id)


def _parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; missing or invalid values sort first."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return _EARLIEST
    else:
        return _EARLIEST
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _validate_record(story_id: str, record: SceneletRecord) -> None:
    if not isinstance(record.id, str) or not record.id.strip():
        raise StructuralValidationError(
            f"Story {story_id} contains a scenelet without a non-empty id.", story_id
        )
    if not isinstance(record.story_id, str) or not record.story_id.strip():
        raise StructuralValidationError(
            f"Scenelet {record.id} is missing a valid story id.", story_id, [record.id]
        )
    if record.parent_id is not None and not isinstance(record.parent_id, str):
        raise StructuralValidationError(
            f"Scenelet {record.id} parent_id must be null or a string.", story_id, [record.id]
        )


def check_node(index: StoryTreeIndex, record: SceneletRecord) -> list[SceneletRecord]:
    """Check the flags of one scenelet against its children.

    Returns:
        The scenelet's children in canonical order.

    Raises:
        StructuralValidationError: If a terminal scenelet has children, or a
            branch point lacks its prompt, its children or their labels.
    """
    children = index.children_of(record.id)
    if record.is_terminal_node and children:
        raise index.violation(
            f"Terminal scenelet {record.id} cannot have child scenelets.",
            record.id,
            *(c.id for c in children),
        )

    if record.is_branch_point:
        require_choice_prompt(index, record)
        if not children:
            raise index.violation(
                f"Branch scenelet {record.id} is marked as branch point "
                "but missing child scenelets.",
                record.id,
            )
        for child in children:
            require_choice_label(index, record, child)
    return children
