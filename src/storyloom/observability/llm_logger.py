"""JSONL log of generation calls.

Each call to the generation service is appended to logs/llm_calls.jsonl
with the full system instruction, user content and raw response. Nothing
is truncated, so a failed parse can be replayed from the log. Calls made
during a story run are tagged with its id in ``metadata["story_id"]``.

Only active when the --log flag is passed to the CLI.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class LLMLogEntry:
    """One generation call."""

    timestamp: str
    model: str

    # Request
    system_instruction: str
    user_content: str
    timeout_ms: int | None

    # Response
    content: str
    duration_seconds: float
    tokens_used: int = 0

    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def story_id(self) -> str | None:
        return self.metadata.get("story_id")


class LLMLogger:
    """Append-only JSONL writer for generation calls.

    Attributes:
        log_path: Path to the JSONL log file.
        enabled: Whether entries are written at all.
    """

    def __init__(self, project_path: Path, enabled: bool = True) -> None:
        self.enabled = enabled
        self.log_path = project_path / "logs" / "llm_calls.jsonl"
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: LLMLogEntry) -> None:
        """Append an entry to the log file."""
        if not self.enabled:
            return

        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry)) + "\n")

    @staticmethod
    def create_entry(
        model: str,
        system_instruction: str,
        user_content: str,
        content: str,
        duration_seconds: float,
        timeout_ms: int | None = None,
        tokens_used: int = 0,
        error: str | None = None,
        **metadata: Any,
    ) -> LLMLogEntry:
        """Create an entry stamped with the current UTC time.

        Args:
            model: Model identifier used for the call.
            system_instruction: System prompt sent with the call.
            user_content: User message sent with the call.
            content: Raw response text (empty when the call failed).
            duration_seconds: Wall time of the call.
            timeout_ms: Timeout applied to the call, if any.
            tokens_used: Total tokens reported by the provider (0 if unknown).
            error: Error message when the call failed.
            **metadata: Additional context such as story and parent ids.
        """
        return LLMLogEntry(
            timestamp=datetime.now(UTC).isoformat(),
            model=model,
            system_instruction=system_instruction,
            user_content=user_content,
            timeout_ms=timeout_ms,
            content=content,
            duration_seconds=duration_seconds,
            tokens_used=tokens_used,
            error=error,
            metadata=dict(metadata),
        )

    def read_entries(self) -> list[LLMLogEntry]:
        """Read every entry back from the log file."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(LLMLogEntry(**json.loads(line)))
        return entries

    def entries_for_story(self, story_id: str) -> list[LLMLogEntry]:
        """Calls made while growing one story, oldest first.

        Only entries written inside a ``story_context`` carry a story id.
        """
        return [entry for entry in self.read_entries() if entry.story_id == story_id]
