"""Tree growth engine: depth-first expansion of one story tree.

Pending work is an explicit LIFO stack of ``GenerationTask`` values rather
than call-stack recursion. Each iteration pops one task, asks the generation
service for the next scenelet(s), classifies the reply and writes the
resulting nodes through the store before pushing follow-up tasks. Because
every task is plain data derived from stored scenelets, an interrupted run
can be rebuilt later by the resume planner.

There is exactly one outstanding generation call at any time; branches are
grown one child at a time, left to right.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from storyloom.observability.logging import get_logger
from storyloom.providers.base import GenerationPort
from storyloom.story.classifier import classify_response
from storyloom.story.errors import GrowthLimitExceededError, StoryGenerationError
from storyloom.story.models import (
    BranchContinuation,
    ClassifiedResponse,
    ConcludingContinuation,
    GenerationTask,
    LinearContinuation,
)
from storyloom.story.prompt_builder import DEFAULT_TARGET_SCENELETS_PER_PATH, build_user_content
from storyloom.story.store import SceneletStore

log = get_logger(__name__)


@dataclass
class GrowthReport:
    """Summary of one growth run.

    Attributes:
        story_id: Story that was grown.
        created_scenelets: Scenelets written during this run.
        generation_calls: Calls made to the generation service.
        resumed: Whether the run started from a resume frontier.
    """

    story_id: str
    created_scenelets: int = 0
    generation_calls: int = 0
    resumed: bool = False


async def grow_story_tree(
    story_id: str,
    brief: str,
    *,
    generator: GenerationPort,
    store: SceneletStore,
    system_prompt: str,
    pending_tasks: Sequence[GenerationTask] | None = None,
    timeout_ms: int | None = None,
    target_scenelets_per_path: int = DEFAULT_TARGET_SCENELETS_PER_PATH,
    max_scenelets: int | None = None,
) -> GrowthReport:
    """Grow a story tree until every explored path has concluded.

    Args:
        story_id: Story to grow.
        brief: Story premise, included in every generation call.
        generator: Generation service.
        store: Scenelet store receiving every new node.
        system_prompt: System instruction describing the response contract.
        pending_tasks: Resume frontier from the resume planner. When None, the
            run starts with the root task; when empty, the tree is already
            complete and no call is made.
        timeout_ms: Per-call deadline handed to the generation service.
        target_scenelets_per_path: Preferred path length, shown to the model.
        max_scenelets: Stop the run once this many scenelets were created.
            Checked before each generation call, so the call that crosses the
            cap still stores every scenelet it returned (a branch is never
            left half written). Unbounded when None.

    Returns:
        GrowthReport for the run.

    Raises:
        StoryGenerationError: On invalid inputs or a branch without a parent.
        ResponseParseError: If a generation response cannot be classified.
        GrowthLimitExceededError: If ``max_scenelets`` is reached with work left.
        ProviderError: Generation failures, propagated unchanged.
        SceneletStoreError: Store failures, propagated unchanged.
    """
    story_id = (story_id or "").strip()
    if not story_id:
        raise StoryGenerationError("Story id must be provided to grow a story tree.")
    if not (brief or "").strip():
        raise StoryGenerationError(f"Story {story_id} brief must not be empty.")
    if not (system_prompt or "").strip():
        raise StoryGenerationError("System prompt must be provided to grow a story tree.")
    if max_scenelets is not None and max_scenelets < 1:
        raise StoryGenerationError(f"max_scenelets must be positive, got {max_scenelets}.")

    report = GrowthReport(story_id=story_id, resumed=pending_tasks is not None)
    if pending_tasks is None:
        stack = [GenerationTask(story_id=story_id, parent_scenelet_id=None)]
    else:
        _check_resume_tasks(story_id, pending_tasks)
        # Reversed so the first pending task is popped first
        stack = list(reversed(pending_tasks))

    if not stack:
        log.info("story_growth_skipped", story_id=story_id, reason="no_pending_tasks")
        return report

    log.info(
        "story_growth_started",
        story_id=story_id,
        resumed=report.resumed,
        pending_tasks=len(stack),
    )

    while stack:
        if max_scenelets is not None and report.created_scenelets >= max_scenelets:
            log.warning(
                "story_growth_limit_reached",
                story_id=story_id,
                limit=max_scenelets,
                remaining_tasks=len(stack),
            )
            raise GrowthLimitExceededError(story_id=story_id, limit=max_scenelets)

        task = stack.pop()
        user_content = build_user_content(
            brief,
            task.path_context,
            is_root=task.is_root,
            target_scenelets_per_path=target_scenelets_per_path,
        )
        log.debug(
            "scenelet_generation_requested",
            story_id=story_id,
            parent_id=task.parent_scenelet_id,
            depth=len(task.path_context),
        )
        raw = await generator.generate(system_prompt, user_content, timeout_ms=timeout_ms)
        report.generation_calls += 1

        response = classify_response(raw)
        log.debug(
            "scenelet_generation_received",
            story_id=story_id,
            parent_id=task.parent_scenelet_id,
            kind=type(response).__name__,
        )

        follow_ups = _apply_response(task, response, store, report)
        # Reversed so siblings are grown in label order
        stack.extend(reversed(follow_ups))

    log.info(
        "story_growth_completed",
        story_id=story_id,
        created_scenelets=report.created_scenelets,
        generation_calls=report.generation_calls,
    )
    return report


def _apply_response(
    task: GenerationTask,
    response: ClassifiedResponse,
    store: SceneletStore,
    report: GrowthReport,
) -> list[GenerationTask]:
    """Persist a classified response and return its follow-up tasks in order."""
    if isinstance(response, BranchContinuation):
        if task.parent_scenelet_id is None:
            raise StoryGenerationError(
                f"Story {task.story_id}: branch response cannot start a story "
                "without a parent scenelet."
            )
        # The parent is flagged before any child exists, so an interrupted
        # branch shows up as a branch point without children on resume.
        store.mark_scenelet_as_branch_point(task.parent_scenelet_id, response.choice_prompt)
        follow_ups = []
        for content in response.scenelets:
            record = store.create_scenelet(
                task.story_id,
                task.parent_scenelet_id,
                content.to_payload(),
                choice_label_from_parent=content.choice_label,
            )
            report.created_scenelets += 1
            follow_ups.append(task.extend(record.id, content))
        log.debug(
            "story_branch_created",
            story_id=task.story_id,
            parent_id=task.parent_scenelet_id,
            children=len(follow_ups),
        )
        return follow_ups

    if isinstance(response, ConcludingContinuation):
        record = store.create_scenelet(
            task.story_id, task.parent_scenelet_id, response.scenelet.to_payload()
        )
        report.created_scenelets += 1
        store.mark_scenelet_as_terminal(record.id)
        return []

    if isinstance(response, LinearContinuation):
        record = store.create_scenelet(
            task.story_id, task.parent_scenelet_id, response.scenelet.to_payload()
        )
        report.created_scenelets += 1
        return [task.extend(record.id, response.scenelet)]

    raise TypeError(f"Unsupported response type: {type(response).__name__}")


def _check_resume_tasks(story_id: str, tasks: Sequence[GenerationTask]) -> None:
    for index, task in enumerate(tasks):
        if not isinstance(task, GenerationTask):
            raise StoryGenerationError(f"Pending task at index {index} is not a GenerationTask.")
        if task.story_id != story_id:
            raise StoryGenerationError(
                f"Pending task at index {index} belongs to story {task.story_id}, "
                f"not {story_id}."
            )
