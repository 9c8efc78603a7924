"""
Documentation File Server

Mock documentation store backing the onboarding assistant. The documents ship
with the package under ``src/docs``; the listing below is the catalogue the
model sees.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel

from src.chat.errors import ChatError

from .registry import ToolContext, ToolSpec

logger = logging.getLogger(__name__)

DOCS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "docs")
DOCS_PREFIX = "/docs/"

READ_FILE_HINT = "You can now use the readFile tool with any file path to get its content."


class FileInfo(BaseModel):
    path: str
    name: str
    type: Literal["file", "directory"] = "file"
    description: str | None = None


class FileNotFound(ChatError):
    """Requested path is not in the documentation store."""

    status_code = 404

    def __init__(self, file_path: str) -> None:
        super().__init__(f"File not found: {file_path}")
        self.file_path = file_path


FILES: list[FileInfo] = [
    FileInfo(
        path="/docs/getting-started.md",
        name="Getting Started",
        description="Initial setup guide for new developers",
    ),
    FileInfo(
        path="/docs/tech-stack.md",
        name="Tech Stack",
        description="Overview of our technology stack",
    ),
    FileInfo(
        path="/docs/development-workflow.md",
        name="Development Workflow",
        description="Git branching and PR process",
    ),
    FileInfo(
        path="/docs/code-standards.md",
        name="Code Standards",
        description="TypeScript and React best practices",
    ),
    FileInfo(
        path="/docs/troubleshooting.md",
        name="Troubleshooting",
        description="Common issues and solutions",
    ),
    FileInfo(
        path="/docs/resources.md",
        name="Resources",
        description="Useful links and contacts",
    ),
]

_KNOWN_PATHS = {f.path for f in FILES}


def list_files() -> dict[str, Any]:
    return {"files": [f.model_dump(exclude_none=True) for f in FILES]}


def read_file(file_path: str) -> dict[str, Any]:
    """
    Return the markdown content of a documentation file.

    Raises:
        FileNotFound: if the path is not one of the listed documents
    """
    if file_path not in _KNOWN_PATHS:
        raise FileNotFound(file_path)

    local_path = os.path.join(DOCS_DIR, file_path[len(DOCS_PREFIX) :])
    with open(local_path, encoding="utf-8") as f:
        content = f.read()

    logger.debug("Read %s (%d chars)", file_path, len(content))
    return {
        "fileContent": content,
        "metadata": {
            "path": file_path,
            "lastModified": datetime.now(UTC).isoformat(),
        },
    }


# ==============================================================================
# TOOL HANDLERS
# ==============================================================================


def list_files_tool(context: ToolContext) -> dict[str, Any]:
    return {**list_files(), "hint": READ_FILE_HINT}


def read_file_tool(context: ToolContext, filePath: str) -> dict[str, Any]:
    return read_file(filePath)


LIST_FILES = ToolSpec(
    name="listFiles",
    description=(
        "List all available documentation files on the file server. Use this tool to discover "
        "what documentation is available before reading specific content. Returns a list of "
        "files with their paths and descriptions."
    ),
    handler=list_files_tool,
)

READ_FILE = ToolSpec(
    name="readFile",
    description=(
        "Read the content of a specific documentation file from the file server. Use the "
        "listFiles tool first to discover available file paths. Returns the full markdown "
        "content of the file."
    ),
    handler=read_file_tool,
    parameters={
        "type": "object",
        "properties": {
            "filePath": {
                "type": "string",
                "description": "The full path to the file to read, e.g., '/docs/getting-started.md'",
            }
        },
        "required": ["filePath"],
        "additionalProperties": False,
    },
)
