"""Classify raw generation output into a continuation shape.

The generation service answers every request with a JSON object::

    {
      "branch_point": false,
      "is_concluding_scene": false,
      "next_scenelets": [
        {"description": "...", "dialogue": [{"character": "...", "line": "..."}],
         "shot_suggestions": ["..."], "choice_label": "..."}
      ],
      "choice_prompt": "..."          # only when branch_point is true
    }

:func:`classify_response` turns that text into exactly one of
``LinearContinuation``, ``ConcludingContinuation`` or ``BranchContinuation``.
Anything that does not fit raises ``ResponseParseError``; no field is ever
defaulted or dropped to make a response fit.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from storyloom.story.errors import ResponseParseError
from storyloom.story.models import (
    BranchContinuation,
    ClassifiedResponse,
    ConcludingContinuation,
    LinearContinuation,
    SceneletContent,
    format_validation_errors,
)


def classify_response(raw: str) -> ClassifiedResponse:
    """Parse and classify one generation response.

    Args:
        raw: Raw text returned by the generation service.

    Returns:
        The classified continuation.

    Raises:
        ResponseParseError: If the text is not valid JSON, a discriminator or
            the scenelet list is missing, a scenelet is malformed, or the shape
            rules for the flagged continuation type are violated.
    """
    try:
        parsed: Any = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ResponseParseError(f"Failed to parse generation response as JSON: {e}", raw) from e

    if not isinstance(parsed, dict):
        raise ResponseParseError("Generation response is not a JSON object.", raw)

    branch_point = parsed.get("branch_point")
    if not isinstance(branch_point, bool):
        raise ResponseParseError("Generation response must include branch_point boolean.", raw)

    is_concluding = parsed.get("is_concluding_scene")
    if not isinstance(is_concluding, bool):
        raise ResponseParseError(
            "Generation response must include is_concluding_scene boolean.", raw
        )

    raw_scenelets = parsed.get("next_scenelets")
    if not isinstance(raw_scenelets, list) or not raw_scenelets:
        raise ResponseParseError("Generation response is missing next_scenelets.", raw)

    scenelets = [
        _normalize_scenelet(value, index, raw) for index, value in enumerate(raw_scenelets)
    ]

    if branch_point and is_concluding:
        raise ResponseParseError(
            "Generation response cannot be both a branch point and a concluding scene.", raw
        )

    if branch_point:
        return _classify_branch(parsed.get("choice_prompt"), scenelets, raw)

    if len(scenelets) != 1:
        kind = "Concluding" if is_concluding else "Linear continuation"
        raise ResponseParseError(f"{kind} response must contain exactly one scenelet.", raw)

    if is_concluding:
        return ConcludingContinuation(scenelet=scenelets[0])
    return LinearContinuation(scenelet=scenelets[0])


def _classify_branch(
    choice_prompt: Any,
    scenelets: list[SceneletContent],
    raw: str,
) -> BranchContinuation:
    if not isinstance(choice_prompt, str) or not choice_prompt.strip():
        raise ResponseParseError("Branch response is missing a non-empty choice_prompt.", raw)

    if len(scenelets) < 2:
        raise ResponseParseError("Branch response must include at least two scenelets.", raw)

    for index, scenelet in enumerate(scenelets):
        if scenelet.choice_label is None:
            raise ResponseParseError(
                f"Branch scenelet at index {index} must include a non-empty choice_label.", raw
            )

    return BranchContinuation(choice_prompt=choice_prompt.strip(), scenelets=tuple(scenelets))


def _normalize_scenelet(value: Any, index: int, raw: str) -> SceneletContent:
    """Validate one entry of ``next_scenelets``, naming the index on failure."""
    if not isinstance(value, dict):
        raise ResponseParseError(f"Scenelet at index {index} is not an object.", raw)

    try:
        return SceneletContent.model_validate(value)
    except ValidationError as e:
        details = "; ".join(format_validation_errors(e, prefix=f"next_scenelets[{index}]"))
        raise ResponseParseError(f"Scenelet at index {index} is invalid: {details}", raw) from e
