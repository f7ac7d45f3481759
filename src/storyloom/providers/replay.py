"""Replay canned model responses instead of calling a provider.

Used by ``storyloom grow --responses-file`` to grow a story offline from a
recorded or hand-written set of responses, one per generation call.
"""

from __future__ import annotations

import json
from collections import deque
from typing import TYPE_CHECKING, Any

from storyloom.observability.logging import get_logger
from storyloom.providers.base import ProviderError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

REPLAY_PROVIDER = "replay"

log = get_logger(__name__)


class ReplayGenerator:
    """GenerationPort that returns queued responses in order.

    Prompts are ignored. Each call consumes the next response; once the
    queue is empty every further call raises ``ProviderError``.
    """

    provider = REPLAY_PROVIDER

    def __init__(self, responses: Iterable[str]) -> None:
        self._responses = deque(responses)
        self.calls = 0

    @classmethod
    def from_file(cls, path: Path) -> ReplayGenerator:
        """Load responses from a JSON array.

        String items are replayed verbatim. Any other item is serialized back
        to JSON, so a file can hold response objects directly.

        Raises:
            ProviderError: If the file is unreadable or not a JSON array.
        """
        try:
            data: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ProviderError(REPLAY_PROVIDER, f"Cannot read responses from {path}: {e}") from e
        if not isinstance(data, list):
            raise ProviderError(REPLAY_PROVIDER, f"Expected a JSON array of responses in {path}")
        return cls(item if isinstance(item, str) else json.dumps(item) for item in data)

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def generate(
        self,
        system_instruction: str,  # noqa: ARG002
        user_content: str,  # noqa: ARG002
        *,
        timeout_ms: int | None = None,  # noqa: ARG002
    ) -> str:
        self.calls += 1
        if not self._responses:
            raise ProviderError(
                REPLAY_PROVIDER,
                f"Ran out of fixture responses after {self.calls - 1} generation calls",
            )
        log.debug("replay_response_served", call=self.calls, remaining=len(self._responses) - 1)
        return self._responses.popleft()
