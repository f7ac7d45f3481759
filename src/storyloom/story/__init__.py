"""Story tree growth, resume planning and snapshots."""

from storyloom.story.classifier import classify_response
from storyloom.story.engine import GrowthReport, grow_story_tree
from storyloom.story.errors import (
    GrowthLimitExceededError,
    ResponseParseError,
    SceneletNotFoundError,
    SceneletStoreError,
    StoryGenerationError,
    StoryTreeError,
    StructuralValidationError,
)
from storyloom.story.models import (
    BranchContinuation,
    ClassifiedResponse,
    ConcludingContinuation,
    DialogueLine,
    GenerationTask,
    LinearContinuation,
    ResumePlan,
    SceneletContent,
    SceneletRecord,
)
from storyloom.story.resume import plan_resume
from storyloom.story.snapshot import (
    StoryTreeSnapshot,
    assemble_snapshot,
    load_story_tree_snapshot,
    render_snapshot_text,
)
from storyloom.story.sqlite_store import SqliteSceneletStore
from storyloom.story.store import InMemorySceneletStore, SceneletStore

__all__ = [
    "BranchContinuation",
    "ClassifiedResponse",
    "ConcludingContinuation",
    "DialogueLine",
    "GenerationTask",
    "GrowthLimitExceededError",
    "GrowthReport",
    "InMemorySceneletStore",
    "LinearContinuation",
    "ResponseParseError",
    "ResumePlan",
    "SceneletContent",
    "SceneletNotFoundError",
    "SceneletRecord",
    "SceneletStore",
    "SceneletStoreError",
    "SqliteSceneletStore",
    "StoryGenerationError",
    "StoryTreeError",
    "StoryTreeSnapshot",
    "StructuralValidationError",
    "assemble_snapshot",
    "classify_response",
    "grow_story_tree",
    "load_story_tree_snapshot",
    "plan_resume",
    "render_snapshot_text",
]
