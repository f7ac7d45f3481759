"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from storyloom.story.sqlite_store import SqliteSceneletStore
from storyloom.story.store import InMemorySceneletStore

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def isolate_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's provider override out of test runs."""
    monkeypatch.delenv("STORYLOOM_PROVIDER", raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def memory_store() -> InMemorySceneletStore:
    return InMemorySceneletStore()


@pytest.fixture
def sqlite_store() -> Iterator[SqliteSceneletStore]:
    store = SqliteSceneletStore()
    yield store
    store.close()
