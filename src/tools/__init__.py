"""Local tools callable by the assistant."""

from __future__ import annotations

from .file_server import LIST_FILES, READ_FILE, FileNotFound
from .incident import DYNATRACE_SNAPSHOT, F5_REDIRECT_EMAIL, PAGE_HUMAN_ON_CALL
from .registry import ToolContext, ToolRegistry, ToolSpec


def build_default_registry() -> ToolRegistry:
    """Registry with every tool any profile may use."""
    return ToolRegistry(
        [LIST_FILES, READ_FILE, DYNATRACE_SNAPSHOT, F5_REDIRECT_EMAIL, PAGE_HUMAN_ON_CALL]
    )


__all__ = [
    "FileNotFound",
    "ToolContext",
    "ToolRegistry",
    "ToolSpec",
    "build_default_registry",
]
