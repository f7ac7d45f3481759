"""Scenelet storage protocol and in-memory implementation.

The growth engine, resume planner and snapshot assembler only talk to
storage through :class:`SceneletStore`. Each call is expected to be atomic
on its own; no cross-call transaction is coordinated by the callers.

InMemorySceneletStore keeps everything in a dict and is used by tests and
dry runs. SqliteSceneletStore (see sqlite_store.py) persists to disk and
records every mutation for auditing.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from storyloom.story.errors import SceneletNotFoundError, SceneletStoreError
from storyloom.story.models import SceneletRecord


@runtime_checkable
class SceneletStore(Protocol):
    """Storage backend protocol for scenelets.

    Stores assign ``id`` and ``created_at``. ``created_at`` must increase
    across creations so that siblings keep their creation order.
    """

    def create_scenelet(
        self,
        story_id: str,
        parent_id: str | None,
        content: dict[str, Any],
        choice_label_from_parent: str | None = None,
    ) -> SceneletRecord:
        """Persist a new scenelet and return the stored record."""
        ...

    def mark_scenelet_as_branch_point(self, scenelet_id: str, choice_prompt: str) -> None:
        """Flag a scenelet as a branch point. Raises SceneletNotFoundError for unknown ids."""
        ...

    def mark_scenelet_as_terminal(self, scenelet_id: str) -> None:
        """Flag a scenelet as terminal. Raises SceneletNotFoundError for unknown ids."""
        ...

    def has_scenelets_for_story(self, story_id: str) -> bool:
        """Check whether any scenelet exists for the story."""
        ...

    def list_scenelets_by_story(self, story_id: str) -> list[SceneletRecord]:
        """Return every scenelet of the story, in no particular order."""
        ...


def validate_create_input(story_id: str, content: Any) -> str:
    """Check create arguments shared by all stores and return the trimmed story id.

    Raises:
        SceneletStoreError: If the story id is empty or content is missing.
    """
    trimmed = (story_id or "").strip()
    if not trimmed:
        raise SceneletStoreError("Scenelet story id must be provided.")
    if not content:
        raise SceneletStoreError("Scenelet content must be provided.")
    return trimmed


def validate_choice_prompt(choice_prompt: str) -> str:
    """Return the trimmed choice prompt, rejecting empty prompts."""
    prompt = (choice_prompt or "").strip()
    if not prompt:
        raise SceneletStoreError("Branch choice prompt must be provided.")
    return prompt


class MonotonicClock:
    """UTC clock that never returns the same instant twice."""

    def __init__(self) -> None:
        self._last: datetime | None = None

    def __call__(self) -> datetime:
        now = datetime.now(UTC)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now


class InMemorySceneletStore:
    """Dict-backed scenelet store.

    Args:
        clock: Callable returning the creation timestamp for each new scenelet.
            Defaults to a strictly increasing UTC clock.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._records: dict[str, SceneletRecord] = {}
        self._clock = clock or MonotonicClock()

    def create_scenelet(
        self,
        story_id: str,
        parent_id: str | None,
        content: dict[str, Any],
        choice_label_from_parent: str | None = None,
    ) -> SceneletRecord:
        story_id = validate_create_input(story_id, content)
        record = SceneletRecord(
            id=f"scenelet-{uuid.uuid4().hex}",
            story_id=story_id,
            parent_id=parent_id,
            content=copy.deepcopy(content),
            created_at=self._clock().isoformat(),
            choice_label_from_parent=choice_label_from_parent,
        )
        self._records[record.id] = record
        return copy.deepcopy(record)

    def mark_scenelet_as_branch_point(self, scenelet_id: str, choice_prompt: str) -> None:
        prompt = validate_choice_prompt(choice_prompt)
        record = self._get(scenelet_id)
        record.is_branch_point = True
        record.choice_prompt = prompt

    def mark_scenelet_as_terminal(self, scenelet_id: str) -> None:
        self._get(scenelet_id).is_terminal_node = True

    def has_scenelets_for_story(self, story_id: str) -> bool:
        return any(r.story_id == story_id for r in self._records.values())

    def list_scenelets_by_story(self, story_id: str) -> list[SceneletRecord]:
        return [copy.deepcopy(r) for r in self._records.values() if r.story_id == story_id]

    # -- Direct access ---------------------------------------------------------

    def add_record(self, record: SceneletRecord) -> None:
        """Insert a pre-built record verbatim (no validation)."""
        self._records[record.id] = copy.deepcopy(record)

    def __len__(self) -> int:
        return len(self._records)

    def _get(self, scenelet_id: str) -> SceneletRecord:
        record = self._records.get(scenelet_id)
        if record is None:
            raise SceneletNotFoundError(scenelet_id=scenelet_id)
        return record
