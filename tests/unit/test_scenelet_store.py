"""Tests for the SceneletStore protocol implementations.

Both backends run the same protocol tests; SQLite-only behaviour (story
briefs, mutation audit, persistence across connections) is tested below.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from storyloom.story.errors import SceneletNotFoundError, SceneletStoreError
from storyloom.story.sqlite_store import SqliteSceneletStore
from storyloom.story.store import InMemorySceneletStore, MonotonicClock, SceneletStore
from tests.fixtures.story_fixtures import make_record, scenelet_payload

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest) -> Iterator[SceneletStore]:
    if request.param == "memory":
        yield InMemorySceneletStore()
    else:
        sqlite = SqliteSceneletStore()
        yield sqlite
        sqlite.close()


class TestStoreProtocol:
    """Behaviour shared by every SceneletStore."""

    def test_is_runtime_checkable(self, store: SceneletStore) -> None:
        assert isinstance(store, SceneletStore)

    def test_create_assigns_id_and_timestamp(self, store: SceneletStore) -> None:
        record = store.create_scenelet("story-1", None, scenelet_payload("Opening"))
        assert record.id.startswith("scenelet-")
        assert record.story_id == "story-1"
        assert record.parent_id is None
        assert record.content["description"] == "Opening"
        assert datetime.fromisoformat(record.created_at).tzinfo is not None
        assert not record.is_branch_point
        assert not record.is_terminal_node

    def test_create_trims_story_id(self, store: SceneletStore) -> None:
        record = store.create_scenelet("  story-1 ", None, scenelet_payload("Opening"))
        assert record.story_id == "story-1"
        assert store.has_scenelets_for_story("story-1")

    def test_ids_are_unique(self, store: SceneletStore) -> None:
        ids = {store.create_scenelet("s", None, scenelet_payload(f"n{i}")).id for i in range(5)}
        assert len(ids) == 5

    def test_created_at_strictly_increases(self, store: SceneletStore) -> None:
        stamps = [
            store.create_scenelet("s", None, scenelet_payload(f"n{i}")).created_at
            for i in range(20)
        ]
        parsed = [datetime.fromisoformat(s) for s in stamps]
        assert parsed == sorted(parsed)
        assert len(set(parsed)) == len(parsed)

    def test_choice_label_is_stored(self, store: SceneletStore) -> None:
        root = store.create_scenelet("s", None, scenelet_payload("root"))
        child = store.create_scenelet("s", root.id, scenelet_payload("left"), "Left")
        assert child.choice_label_from_parent == "Left"
        [listed] = [r for r in store.list_scenelets_by_story("s") if r.id == child.id]
        assert listed.choice_label_from_parent == "Left"
        assert listed.parent_id == root.id

    @pytest.mark.parametrize("story_id", ["", "   "])
    def test_rejects_empty_story_id(self, store: SceneletStore, story_id: str) -> None:
        with pytest.raises(SceneletStoreError, match="story id"):
            store.create_scenelet(story_id, None, scenelet_payload("x"))

    def test_rejects_empty_content(self, store: SceneletStore) -> None:
        with pytest.raises(SceneletStoreError, match="content"):
            store.create_scenelet("s", None, {})

    def test_mark_branch_point(self, store: SceneletStore) -> None:
        record = store.create_scenelet("s", None, scenelet_payload("root"))
        store.mark_scenelet_as_branch_point(record.id, "  Which door?  ")
        [stored] = store.list_scenelets_by_story("s")
        assert stored.is_branch_point
        assert stored.choice_prompt == "Which door?"

    def test_mark_branch_point_rejects_empty_prompt(self, store: SceneletStore) -> None:
        record = store.create_scenelet("s", None, scenelet_payload("root"))
        with pytest.raises(SceneletStoreError, match="choice prompt"):
            store.mark_scenelet_as_branch_point(record.id, "  ")

    def test_mark_terminal(self, store: SceneletStore) -> None:
        record = store.create_scenelet("s", None, scenelet_payload("end"))
        store.mark_scenelet_as_terminal(record.id)
        [stored] = store.list_scenelets_by_story("s")
        assert stored.is_terminal_node

    def test_mark_unknown_id_fails(self, store: SceneletStore) -> None:
        with pytest.raises(SceneletNotFoundError, match="scenelet-missing"):
            store.mark_scenelet_as_terminal("scenelet-missing")
        with pytest.raises(SceneletNotFoundError):
            store.mark_scenelet_as_branch_point("scenelet-missing", "Which?")

    def test_not_found_is_store_error(self) -> None:
        assert issubclass(SceneletNotFoundError, SceneletStoreError)

    def test_list_is_scoped_to_story(self, store: SceneletStore) -> None:
        store.create_scenelet("a", None, scenelet_payload("a"))
        store.create_scenelet("b", None, scenelet_payload("b"))
        assert [r.story_id for r in store.list_scenelets_by_story("a")] == ["a"]
        assert store.list_scenelets_by_story("c") == []
        assert not store.has_scenelets_for_story("c")

    def test_returned_records_are_copies(self, store: SceneletStore) -> None:
        record = store.create_scenelet("s", None, scenelet_payload("root"))
        record.content["description"] = "mutated"
        [stored] = store.list_scenelets_by_story("s")
        assert stored.content["description"] == "root"


class TestInMemoryStore:
    """InMemorySceneletStore specifics."""

    def test_injected_clock(self) -> None:
        fixed = datetime(2024, 5, 1, tzinfo=UTC)
        store = InMemorySceneletStore(clock=lambda: fixed)
        record = store.create_scenelet("s", None, scenelet_payload("root"))
        assert record.created_at == fixed.isoformat()

    def test_add_record_is_verbatim(self) -> None:
        store = InMemorySceneletStore()
        store.add_record(make_record("custom", None))
        assert len(store) == 1
        [stored] = store.list_scenelets_by_story("story-1")
        assert stored.id == "custom"


class TestMonotonicClock:
    def test_never_repeats(self) -> None:
        clock = MonotonicClock()
        stamps = [clock() for _ in range(100)]
        assert all(b > a for a, b in zip(stamps, stamps[1:], strict=False))

    def test_is_utc(self) -> None:
        assert MonotonicClock()().utcoffset() == timedelta(0)


class TestSqliteStore:
    """SqliteSceneletStore specifics."""

    def test_story_brief_roundtrip(self, sqlite_store: SqliteSceneletStore) -> None:
        assert sqlite_store.get_story_brief("s") is None
        sqlite_store.save_story("s", "A lighthouse mystery")
        assert sqlite_store.get_story_brief("s") == "A lighthouse mystery"
        sqlite_store.save_story("s", "A revised premise")
        assert sqlite_store.get_story_brief("s") == "A revised premise"

    def test_save_story_rejects_empty_brief(self, sqlite_store: SqliteSceneletStore) -> None:
        with pytest.raises(SceneletStoreError, match="brief"):
            sqlite_store.save_story("s", "  ")

    def test_list_story_ids(self, sqlite_store: SqliteSceneletStore) -> None:
        sqlite_store.save_story("b", "premise")
        sqlite_store.create_scenelet("a", None, scenelet_payload("root"))
        assert sqlite_store.list_story_ids() == ["a", "b"]

    def test_mutations_are_recorded(self, sqlite_store: SqliteSceneletStore) -> None:
        root = sqlite_store.create_scenelet("s", None, scenelet_payload("root"))
        sqlite_store.mark_scenelet_as_branch_point(root.id, "Which?")
        child = sqlite_store.create_scenelet("s", root.id, scenelet_payload("left"), "Left")
        sqlite_store.mark_scenelet_as_terminal(child.id)

        mutations = sqlite_store.get_mutations("s")
        assert [m["operation"] for m in mutations] == [
            "create_scenelet",
            "mark_branch_point",
            "create_scenelet",
            "mark_terminal",
        ]
        assert mutations[1]["target_id"] == root.id
        assert mutations[1]["delta"] == {"choice_prompt": "Which?"}
        assert mutations[2]["delta"]["choice_label_from_parent"] == "Left"
        assert mutations[3]["delta"] is None

    def test_mutations_filtered_by_story(self, sqlite_store: SqliteSceneletStore) -> None:
        sqlite_store.create_scenelet("a", None, scenelet_payload("a"))
        sqlite_store.create_scenelet("b", None, scenelet_payload("b"))
        assert len(sqlite_store.get_mutations()) == 2
        assert [m["story_id"] for m in sqlite_store.get_mutations("b")] == ["b"]

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "story.db"
        store = SqliteSceneletStore(db_path)
        root = store.create_scenelet("s", None, scenelet_payload("root"))
        store.mark_scenelet_as_terminal(root.id)
        store.close()

        reopened = SqliteSceneletStore(db_path)
        try:
            [stored] = reopened.list_scenelets_by_story("s")
            assert stored.id == root.id
            assert stored.is_terminal_node
            assert stored.created_at == root.created_at
        finally:
            reopened.close()

    def test_backup_to(self, sqlite_store: SqliteSceneletStore, tmp_path: Path) -> None:
        sqlite_store.create_scenelet("s", None, scenelet_payload("root"))
        dest = tmp_path / "backup.db"
        sqlite_store.backup_to(dest)

        copy = SqliteSceneletStore(dest)
        try:
            assert copy.has_scenelets_for_story("s")
        finally:
            copy.close()


class TestSqliteStoreAtomicity:
    """A write and its audit row land together or not at all."""

    @staticmethod
    def _break_audit(store: SqliteSceneletStore) -> None:
        store._conn.execute(
            "CREATE TRIGGER audit_down BEFORE INSERT ON mutations "
            "BEGIN SELECT RAISE(ABORT, 'audit down'); END"
        )

    def test_mark_terminal_rolls_back_without_audit(
        self, sqlite_store: SqliteSceneletStore
    ) -> None:
        root = sqlite_store.create_scenelet("s", None, scenelet_payload("root"))
        self._break_audit(sqlite_store)

        with pytest.raises(SceneletStoreError, match="audit down"):
            sqlite_store.mark_scenelet_as_terminal(root.id)

        [stored] = sqlite_store.list_scenelets_by_story("s")
        assert not stored.is_terminal_node
        assert [m["operation"] for m in sqlite_store.get_mutations("s")] == ["create_scenelet"]

    def test_mark_branch_point_rolls_back_without_audit(
        self, sqlite_store: SqliteSceneletStore
    ) -> None:
        root = sqlite_store.create_scenelet("s", None, scenelet_payload("root"))
        self._break_audit(sqlite_store)

        with pytest.raises(SceneletStoreError, match="branch point"):
            sqlite_store.mark_scenelet_as_branch_point(root.id, "Which door?")

        [stored] = sqlite_store.list_scenelets_by_story("s")
        assert not stored.is_branch_point
        assert stored.choice_prompt is None

    def test_create_rolls_back_without_audit(self, sqlite_store: SqliteSceneletStore) -> None:
        self._break_audit(sqlite_store)

        with pytest.raises(SceneletStoreError, match="Failed to create scenelet"):
            sqlite_store.create_scenelet("s", None, scenelet_payload("root"))

        assert not sqlite_store.has_scenelets_for_story("s")

    def test_unknown_id_still_not_found(self, sqlite_store: SqliteSceneletStore) -> None:
        with pytest.raises(SceneletNotFoundError):
            sqlite_store.mark_scenelet_as_terminal("ghost")
        assert sqlite_store.get_mutations() == []

    @pytest.mark.parametrize("operation", ["terminal", "branch"])
    def test_sqlite_errors_become_store_errors(
        self, sqlite_store: SqliteSceneletStore, operation: str
    ) -> None:
        root = sqlite_store.create_scenelet("s", None, scenelet_payload("root"))
        sqlite_store.close()

        with pytest.raises(SceneletStoreError):
            if operation == "terminal":
                sqlite_store.mark_scenelet_as_terminal(root.id)
            else:
                sqlite_store.mark_scenelet_as_branch_point(root.id, "Which door?")
