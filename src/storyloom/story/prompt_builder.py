"""Build the user content sent for one generation task.

The system prompt (see ``prompts/templates/interactive_scriptwriter.yaml``)
describes the response contract. The user content carries the per-task
context in three markdown sections: the story brief, the current narrative
path, and the instruction for this call.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from storyloom.story.models import SceneletContent

DEFAULT_TARGET_SCENELETS_PER_PATH = 12

ROOT_INSTRUCTION = "Now start with the first scenelet of the story."
CONTINUE_INSTRUCTION = "Now continue the story by writing only the immediate next scenelet(s)."
EMPTY_PATH_NOTE = "No scenelets have been written on this path yet."


def build_user_content(
    brief: str,
    path_context: Sequence[SceneletContent],
    *,
    is_root: bool,
    target_scenelets_per_path: int = DEFAULT_TARGET_SCENELETS_PER_PATH,
) -> str:
    """Assemble the narrative context for one generation call.

    Args:
        brief: Story premise the whole tree grows from.
        path_context: Contents from the root down to the parent scenelet.
        is_root: Whether this call writes the first scenelet of the story.
        target_scenelets_per_path: Preferred length of every path.

    Returns:
        Markdown text with brief, path and instruction sections.
    """
    sections = [
        "## Story Brief",
        brief.strip(),
        "",
        _format_path_section(path_context, target_scenelets_per_path),
        "",
        "## Instruction",
        ROOT_INSTRUCTION if is_root else CONTINUE_INSTRUCTION,
    ]
    return "\n".join(sections)


def _format_path_section(path_context: Sequence[SceneletContent], target: int) -> str:
    current = len(path_context)
    remaining = max(target - current, 0)
    lines = [
        "## Current Narrative Path",
        f"Target scenelets per path: {target}",
        f"Current scenelets in this path: {current}",
        f"Reminder: Aim to conclude this path within {target} scenelets. "
        f"Approximately {remaining} scenelets remain.",
    ]
    if not path_context:
        lines.append(EMPTY_PATH_NOTE)
    else:
        payload = [content.to_payload() for content in path_context]
        lines.append("")
        lines.append(json.dumps(payload, indent=2, ensure_ascii=False))
    return "\n".join(lines)
