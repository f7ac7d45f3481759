"""Error types for story tree growth, planning and snapshotting.

Every error names the story and/or scenelet ids involved so a failed run
can be traced back to stored data. None of these errors are corrected
automatically: malformed model output aborts the run, and structural
violations in a stored tree require fixing the stored data.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class StoryTreeError(Exception):
    """Base class for all story tree errors."""


class StoryGenerationError(StoryTreeError):
    """Raised when a growth run is started with invalid inputs.

    Covers empty story ids, briefs or system prompts, resume tasks that do
    not belong to the story being grown, and branch responses that arrive
    without a parent scenelet to attach to.
    """


@dataclass
class ResponseParseError(StoryTreeError):
    """Raised when generation output cannot be classified.

    Attributes:
        message: What is wrong, naming the offending index or field.
        raw_response: The unmodified text returned by the generation service.
    """

    message: str
    raw_response: str = ""

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass
class StructuralValidationError(StoryTreeError):
    """Raised when a stored story tree violates a structural invariant.

    Examples are a missing or duplicated root, orphaned scenelets, cycles,
    a branch point without prompt or labels, or a terminal scenelet with
    children.

    Attributes:
        message: Description of the violation, including the offending ids.
        story_id: Story whose tree was being walked.
        scenelet_ids: Scenelets involved in the violation.
    """

    message: str
    story_id: str = ""
    scenelet_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass
class GrowthLimitExceededError(StoryTreeError):
    """Raised when a growth run reaches its configured scenelet cap.

    Everything created before the cap stays persisted; the tree can be
    resumed with a higher (or no) cap.

    Attributes:
        story_id: Story being grown.
        limit: Configured maximum number of scenelets per run. The run may
            overshoot it by the children of its last branch response.
    """

    story_id: str
    limit: int

    def __post_init__(self) -> None:
        super().__init__(
            f"Story {self.story_id} reached the limit of {self.limit} scenelets "
            "for a single growth run."
        )


class SceneletStoreError(StoryTreeError):
    """Raised when the scenelet store rejects or fails an operation."""


@dataclass
class SceneletNotFoundError(SceneletStoreError):
    """Raised when a store update targets an unknown scenelet id."""

    scenelet_id: str

    def __post_init__(self) -> None:
        super().__init__(f"Scenelet {self.scenelet_id} does not exist.")
