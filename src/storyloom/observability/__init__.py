"""Observability module for StoryLoom.

Provides structured logging and generation call tracking.
"""

from storyloom.observability.llm_logger import LLMLogEntry, LLMLogger
from storyloom.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
    story_context,
)

__all__ = [
    "LLMLogEntry",
    "LLMLogger",
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
    "story_context",
]
