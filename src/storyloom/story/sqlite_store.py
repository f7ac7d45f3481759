"""SQLite-backed scenelet storage with mutation audit trail.

SqliteSceneletStore implements the SceneletStore protocol using stdlib
sqlite3. Every mutating operation (create, mark branch point, mark terminal)
is recorded in the ``mutations`` table so an interrupted growth run can be
inspected afterwards.

The database also keeps the story brief per story id, so that a resumed
run grows the tree from the same premise it started with.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from storyloom.story.errors import SceneletNotFoundError, SceneletStoreError
from storyloom.story.models import SceneletRecord
from storyloom.story.store import MonotonicClock, validate_choice_prompt, validate_create_input

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS stories (
    story_id   TEXT PRIMARY KEY,
    brief      TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS scenelets (
    id                       TEXT PRIMARY KEY,
    story_id                 TEXT NOT NULL,
    parent_id                TEXT,
    choice_label_from_parent TEXT,
    choice_prompt            TEXT,
    content                  JSON NOT NULL,
    is_branch_point          INTEGER NOT NULL DEFAULT 0,
    is_terminal_node         INTEGER NOT NULL DEFAULT 0,
    created_at               TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scenelets_story  ON scenelets(story_id);
CREATE INDEX IF NOT EXISTS idx_scenelets_parent ON scenelets(parent_id);

CREATE TABLE IF NOT EXISTS mutations (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    story_id  TEXT NOT NULL,
    operation TEXT NOT NULL,
    target_id TEXT NOT NULL,
    delta     JSON
);
CREATE INDEX IF NOT EXISTS idx_mutations_story  ON mutations(story_id);
CREATE INDEX IF NOT EXISTS idx_mutations_target ON mutations(target_id);
"""


class SqliteSceneletStore:
    """SQLite-backed scenelet store with mutation recording.

    Each public mutation and its audit row are written in one savepoint, so
    a change is either fully persisted and recorded or absent. SQLite
    failures surface as SceneletStoreError.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        clock: Callable[[], datetime] | None = None,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        """Open or create a scenelet database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
            clock: Callable returning creation timestamps. Defaults to a
                strictly increasing UTC clock.
            _conn: Pre-existing connection (for testing). If provided,
                   *db_path* is ignored.
        """
        if _conn is not None:
            self._conn = _conn
            self._db_path: str = ":memory:"
        else:
            self._db_path = str(db_path)
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)
        self._clock = clock or MonotonicClock()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def backup_to(self, dest_path: Path) -> None:
        """Copy the live database to *dest_path* using SQLite's online backup API."""
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest = sqlite3.connect(str(dest_path))
        try:
            self._conn.backup(dest)
        except Exception:
            dest.close()
            if dest_path.exists():
                dest_path.unlink()
            raise
        else:
            dest.close()

    # -- Stories ---------------------------------------------------------------

    def save_story(self, story_id: str, brief: str) -> None:
        """Store (or replace) the brief a story is grown from."""
        story_id = (story_id or "").strip()
        if not story_id:
            raise SceneletStoreError("Story id must be provided.")
        if not (brief or "").strip():
            raise SceneletStoreError(f"Story {story_id} brief must not be empty.")
        try:
            with self._atomic("save_story"):
                self._conn.execute(
                    "INSERT INTO stories (story_id, brief) VALUES (?, ?) "
                    "ON CONFLICT(story_id) DO UPDATE SET brief = excluded.brief",
                    (story_id, brief),
                )
                self._record_mutation(story_id, "save_story", story_id, {"brief": brief})
        except sqlite3.Error as e:
            raise SceneletStoreError(f"Failed to save brief for story {story_id}: {e}") from e

    def get_story_brief(self, story_id: str) -> str | None:
        """Return the stored brief for *story_id*, or None if unknown."""
        row = self._conn.execute(
            "SELECT brief FROM stories WHERE story_id = ?", ((story_id or "").strip(),)
        ).fetchone()
        return None if row is None else str(row["brief"])

    def list_story_ids(self) -> list[str]:
        """Return every story id that has a brief or scenelets, sorted."""
        rows = self._conn.execute(
            "SELECT story_id FROM stories UNION SELECT story_id FROM scenelets ORDER BY story_id"
        ).fetchall()
        return [row["story_id"] for row in rows]

    # -- Scenelets -------------------------------------------------------------

    def create_scenelet(
        self,
        story_id: str,
        parent_id: str | None,
        content: dict[str, Any],
        choice_label_from_parent: str | None = None,
    ) -> SceneletRecord:
        story_id = validate_create_input(story_id, content)
        scenelet_id = f"scenelet-{uuid.uuid4().hex}"
        created_at = self._clock().isoformat()
        try:
            with self._atomic("create_scenelet"):
                self._conn.execute(
                    "INSERT INTO scenelets "
                    "(id, story_id, parent_id, choice_label_from_parent, content, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        scenelet_id,
                        story_id,
                        parent_id,
                        choice_label_from_parent,
                        json.dumps(content),
                        created_at,
                    ),
                )
                self._record_mutation(
                    story_id,
                    "create_scenelet",
                    scenelet_id,
                    {
                        "parent_id": parent_id,
                        "choice_label_from_parent": choice_label_from_parent,
                        "content": content,
                    },
                )
        except sqlite3.Error as e:
            raise SceneletStoreError(f"Failed to create scenelet for story {story_id}: {e}") from e
        return SceneletRecord(
            id=scenelet_id,
            story_id=story_id,
            parent_id=parent_id,
            content=json.loads(json.dumps(content)),
            created_at=created_at,
            choice_label_from_parent=choice_label_from_parent,
        )

    def mark_scenelet_as_branch_point(self, scenelet_id: str, choice_prompt: str) -> None:
        prompt = validate_choice_prompt(choice_prompt)
        try:
            with self._atomic("mark_branch_point"):
                story_id = self._story_of(scenelet_id)
                self._conn.execute(
                    "UPDATE scenelets SET is_branch_point = 1, choice_prompt = ? WHERE id = ?",
                    (prompt, scenelet_id),
                )
                self._record_mutation(
                    story_id, "mark_branch_point", scenelet_id, {"choice_prompt": prompt}
                )
        except sqlite3.Error as e:
            raise SceneletStoreError(
                f"Failed to mark scenelet {scenelet_id} as a branch point: {e}"
            ) from e

    def mark_scenelet_as_terminal(self, scenelet_id: str) -> None:
        try:
            with self._atomic("mark_terminal"):
                story_id = self._story_of(scenelet_id)
                self._conn.execute(
                    "UPDATE scenelets SET is_terminal_node = 1 WHERE id = ?", (scenelet_id,)
                )
                self._record_mutation(story_id, "mark_terminal", scenelet_id)
        except sqlite3.Error as e:
            raise SceneletStoreError(
                f"Failed to mark scenelet {scenelet_id} as terminal: {e}"
            ) from e

    def has_scenelets_for_story(self, story_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM scenelets WHERE story_id = ? LIMIT 1", (story_id,)
        ).fetchone()
        return row is not None

    def list_scenelets_by_story(self, story_id: str) -> list[SceneletRecord]:
        rows = self._conn.execute(
            "SELECT * FROM scenelets WHERE story_id = ?", (story_id,)
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _story_of(self, scenelet_id: str) -> str:
        row = self._conn.execute(
            "SELECT story_id FROM scenelets WHERE id = ?", (scenelet_id,)
        ).fetchone()
        if row is None:
            raise SceneletNotFoundError(scenelet_id=scenelet_id)
        return str(row["story_id"])

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SceneletRecord:
        return SceneletRecord(
            id=row["id"],
            story_id=row["story_id"],
            parent_id=row["parent_id"],
            content=json.loads(row["content"]),
            created_at=row["created_at"],
            choice_label_from_parent=row["choice_label_from_parent"],
            choice_prompt=row["choice_prompt"],
            is_branch_point=bool(row["is_branch_point"]),
            is_terminal_node=bool(row["is_terminal_node"]),
        )

    @contextmanager
    def _atomic(self, name: str) -> Iterator[None]:
        """Run a write and its audit row in one savepoint."""
        self._conn.execute(f"SAVEPOINT sp_{name}")
        try:
            yield
        except Exception:
            self._conn.execute(f"ROLLBACK TO sp_{name}")
            self._conn.execute(f"RELEASE SAVEPOINT sp_{name}")
            raise
        self._conn.execute(f"RELEASE SAVEPOINT sp_{name}")

    # -- Mutation audit --------------------------------------------------------

    def _record_mutation(
        self,
        story_id: str,
        operation: str,
        target_id: str,
        delta: dict[str, Any] | None = None,
    ) -> None:
        self._conn.execute(
            "INSERT INTO mutations (story_id, operation, target_id, delta) VALUES (?, ?, ?, ?)",
            (story_id, operation, target_id, json.dumps(delta) if delta is not None else None),
        )

    def get_mutations(self, story_id: str | None = None) -> list[dict[str, Any]]:
        """Return recorded mutations in the order they happened.

        Args:
            story_id: Restrict to one story. All stories when None.
        """
        if story_id is None:
            rows = self._conn.execute("SELECT * FROM mutations ORDER BY id").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM mutations WHERE story_id = ? ORDER BY id", (story_id,)
            ).fetchall()
        return [
            {
                "id": row["id"],
                "timestamp": row["timestamp"],
                "story_id": row["story_id"],
                "operation": row["operation"],
                "target_id": row["target_id"],
                "delta": json.loads(row["delta"]) if row["delta"] else None,
            }
            for row in rows
        ]
