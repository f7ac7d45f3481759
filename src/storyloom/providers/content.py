"""Utilities for normalizing LLM message content across providers.

Some providers (notably Google Gemini) return ``AIMessage.content`` as a list
of content-block dicts rather than a plain string. Story responses are
expected to be a single JSON object, and several models wrap it in a
markdown code fence; both shapes are reduced to plain text here.
"""

from __future__ import annotations

import re
from typing import Any

_FENCE_PATTERN = re.compile(r"^```[A-Za-z0-9_-]*\s*\n(?P<body>.*?)\n?```$", re.DOTALL)


def extract_text(content: str | list[Any]) -> str:
    """Extract plain text from an LLM message content field.

    Handles two formats:
    - ``str``: returned as-is.
    - ``list[dict]``: content blocks (e.g. Gemini). Text is extracted from
      each block that has ``type == "text"`` and a ``text`` key, then joined
      with newlines. Plain string blocks are kept as well.

    Falls back to ``str(content)`` for unexpected shapes.
    """
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str):
                    parts.append(text)
        if parts:
            return "\n".join(parts)

    return str(content)


def strip_code_fence(text: str) -> str:
    """Remove a single markdown code fence wrapping the whole response.

    ``"```json\\n{...}\\n```"`` becomes ``"{...}"``. Text that is not
    entirely fenced is returned unchanged (apart from outer whitespace).
    """
    stripped = text.strip()
    match = _FENCE_PATTERN.match(stripped)
    if match is None:
        return stripped
    return match.group("body").strip()
