"""Integration test configuration and fixtures.

Most integration tests run the full grow/interrupt/resume cycle against a
file-backed SQLite store with a scripted generator. Tests marked with
``requires_*`` talk to a real provider and are skipped when it is not
configured.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from dotenv import load_dotenv

from storyloom.story.sqlite_store import SqliteSceneletStore

# Load .env file at import time so provider availability checks work
load_dotenv()

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def _ollama_available() -> bool:
    """Check if Ollama is configured and reachable."""
    host = os.getenv("OLLAMA_HOST")
    if not host:
        return False

    import httpx

    try:
        response = httpx.get(f"{host}/api/tags", timeout=5.0)
    except (httpx.HTTPError, OSError):
        return False
    return response.status_code == 200


def _openai_available() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


requires_any_provider = pytest.mark.skipif(
    not (_ollama_available() or _openai_available()),
    reason="No LLM provider configured (need OLLAMA_HOST or OPENAI_API_KEY)",
)


@pytest.fixture
def live_provider() -> str:
    """Provider string for live tests, preferring a local Ollama."""
    if _ollama_available():
        return "ollama/qwen3:8b"
    if _openai_available():
        return "openai/gpt-5-mini"
    pytest.skip("No LLM provider configured")


@pytest.fixture
def story_db(tmp_path: Path) -> Path:
    return tmp_path / "project" / "story.db"


@pytest.fixture
def file_store(story_db: Path) -> Iterator[SqliteSceneletStore]:
    """File-backed store; tests may reopen ``story_db`` to simulate a restart."""
    store = SqliteSceneletStore(story_db)
    yield store
    store.close()


@pytest.fixture
def lighthouse_brief() -> str:
    """A short, consistent premise for end-to-end runs."""
    return (
        "A lighthouse keeper on a remote island finds a message in a bottle "
        "warning that the light must not be lit tonight."
    )
