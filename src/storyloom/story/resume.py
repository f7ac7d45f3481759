"""Resume planner: rebuild the pending-work frontier from a stored tree.

Growth runs can stop at any point (crash, timeout, Ctrl-C, growth cap).
Everything already written is durable, so the frontier of unfinished work
is fully determined by the stored scenelets: every leaf that is neither a
branch point nor terminal is an open path that still needs generation.

The planner walks the tree depth-first, validating the structural
invariants along the way, and emits one ``GenerationTask`` per open leaf,
in canonical order. Violations are reported, never repaired.
"""

from __future__ import annotations

from collections.abc import Sequence

from storyloom.observability.logging import get_logger
from storyloom.story.models import GenerationTask, ResumePlan, SceneletContent, SceneletRecord
from storyloom.story.tree import check_node, index_story_tree, iter_depth_first, load_content

log = get_logger(__name__)


def plan_resume(story_id: str, scenelets: Sequence[SceneletRecord]) -> ResumePlan:
    """Validate a stored story tree and list its open leaves.

    Args:
        story_id: Story to plan. Records of other stories are ignored.
        scenelets: All stored scenelets, in any order.

    Returns:
        ResumePlan whose ``pending_tasks`` continue every open leaf, in
        depth-first order. Empty for a complete tree or a story without
        scenelets.

    Raises:
        StructuralValidationError: If the tree violates any structural
            invariant. The message names the offending scenelet ids.
    """
    index = index_story_tree(story_id, scenelets)
    if index is None:
        log.debug("resume_plan_empty", story_id=story_id)
        return ResumePlan(story_id=story_id)

    contexts: dict[str, tuple[SceneletContent, ...]] = {}
    pending: list[GenerationTask] = []

    for visit in iter_depth_first(index):
        record = visit.record
        parent_context = contexts[visit.parent.id] if visit.parent is not None else ()
        path_context = (*parent_context, load_content(index, record))
        contexts[record.id] = path_context

        children = check_node(index, record)
        if not children and not record.is_terminal_node:
            pending.append(
                GenerationTask(
                    story_id=story_id,
                    parent_scenelet_id=record.id,
                    path_context=path_context,
                )
            )

    log.debug(
        "resume_planned",
        story_id=story_id,
        scenelets=len(index.records),
        pending_tasks=len(pending),
    )
    return ResumePlan(story_id=story_id, pending_tasks=pending)
