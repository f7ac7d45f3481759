"""Prompt templates for story generation."""

from storyloom.prompts.loader import (
    INTERACTIVE_SCRIPTWRITER,
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
    load_system_prompt,
    project_loader,
)

__all__ = [
    "INTERACTIVE_SCRIPTWRITER",
    "PromptLoader",
    "PromptTemplate",
    "TemplateNotFoundError",
    "TemplateParseError",
    "load_system_prompt",
    "project_loader",
]
