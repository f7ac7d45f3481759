"""Start-or-resume orchestration for one story.

``generate_story`` is what the CLI runs: it decides whether a story is new
or partially grown, grows it to completion, and finishes with the
completion check (a second resume plan over the stored tree).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from storyloom.observability.logging import get_logger, story_context
from storyloom.story.engine import GrowthReport, grow_story_tree
from storyloom.story.errors import StoryGenerationError
from storyloom.story.prompt_builder import DEFAULT_TARGET_SCENELETS_PER_PATH
from storyloom.story.resume import plan_resume

if TYPE_CHECKING:
    from storyloom.providers.base import GenerationPort
    from storyloom.story.models import ResumePlan
    from storyloom.story.store import SceneletStore

log = get_logger(__name__)


@dataclass
class StoryGenerationResult:
    """Outcome of :func:`generate_story`.

    Attributes:
        report: What the growth run did.
        plan: Resume plan computed over the stored tree after the run.
    """

    report: GrowthReport
    plan: ResumePlan

    @property
    def is_complete(self) -> bool:
        return self.plan.is_complete


async def generate_story(
    story_id: str,
    brief: str,
    *,
    generator: GenerationPort,
    store: SceneletStore,
    system_prompt: str,
    timeout_ms: int | None = None,
    target_scenelets_per_path: int = DEFAULT_TARGET_SCENELETS_PER_PATH,
    max_scenelets: int | None = None,
) -> StoryGenerationResult:
    """Grow a new story, or resume a partially grown one, to completion.

    The story id is stripped before use, so " s1 " resumes the tree stored
    under "s1" instead of starting a second root.

    Raises:
        StoryGenerationError: If the story id is empty.
        StructuralValidationError: If a stored tree cannot be resumed.
        StoryTreeError: Any growth failure, see ``grow_story_tree``.
        ProviderError: Generation failures, propagated unchanged.
    """
    story_id = (story_id or "").strip()
    if not story_id:
        raise StoryGenerationError("Story id must be provided to grow a story tree.")

    with story_context(story_id):
        pending_tasks = None
        if store.has_scenelets_for_story(story_id):
            resume_plan = plan_resume(story_id, store.list_scenelets_by_story(story_id))
            pending_tasks = resume_plan.pending_tasks
            log.info("story_resume_planned", pending_tasks=len(pending_tasks))

        report = await grow_story_tree(
            story_id,
            brief,
            generator=generator,
            store=store,
            system_prompt=system_prompt,
            pending_tasks=pending_tasks,
            timeout_ms=timeout_ms,
            target_scenelets_per_path=target_scenelets_per_path,
            max_scenelets=max_scenelets,
        )

        final_plan = plan_resume(report.story_id, store.list_scenelets_by_story(report.story_id))
        if not final_plan.is_complete:
            log.warning(
                "story_incomplete_after_growth", pending_tasks=len(final_plan.pending_tasks)
            )
    return StoryGenerationResult(report=report, plan=final_plan)
