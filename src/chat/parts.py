"""
Message and Part Models

Typed representation of a conversation: every message has a role and an
ordered list of parts, and every part is either text or a tool invocation.
All strongly typed with Pydantic; the wire format uses camelCase keys so the
same JSON can be exchanged with a browser client.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "system"]

TOOL_TYPE_PREFIX = "tool-"


class WireModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ToolState(str, Enum):
    """Lifecycle of a single tool invocation."""

    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    APPROVAL_REQUESTED = "approval-requested"
    APPROVAL_RESPONDED = "approval-responded"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolState.OUTPUT_AVAILABLE, ToolState.OUTPUT_ERROR)


class Approval(WireModel):
    """Human approval request attached to a gated tool call."""

    id: str
    approved: bool | None = None
    reason: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.approved is None


class TextPart(WireModel):
    type: Literal["text"] = "text"
    text: str


class ToolPart(WireModel):
    type: Literal["tool"] = "tool"
    tool_name: str
    tool_call_id: str
    state: ToolState
    input: Any | None = None
    output: Any | None = None
    error_text: str | None = None
    approval: Approval | None = None


Part = Annotated[TextPart | ToolPart, Field(discriminator="type")]


class Message(WireModel):
    """A single conversation message."""

    id: str | None = None
    role: Role
    parts: list[Part] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_parts(cls, data: Any) -> Any:
        """
        Accept the browser UI message shape.

        UI clients tag tool parts as ``tool-<toolName>`` and may interleave
        bookkeeping parts (``step-start``, ``reasoning``) that carry no
        conversation content; those are dropped here.
        """
        if not isinstance(data, dict) or not isinstance(data.get("parts"), list):
            return data

        parts: list[Any] = []
        for raw in data["parts"]:
            if not isinstance(raw, dict):
                parts.append(raw)
                continue
            part_type = raw.get("type", "")
            if part_type == "text" or part_type == "tool":
                parts.append(raw)
            elif isinstance(part_type, str) and part_type.startswith(TOOL_TYPE_PREFIX):
                normalized = {k: v for k, v in raw.items() if k != "type"}
                normalized["type"] = "tool"
                normalized.setdefault("toolName", part_type[len(TOOL_TYPE_PREFIX) :])
                parts.append(normalized)
            else:
                logger.debug("Dropping unsupported part type: %s", part_type)
        return {**data, "parts": parts}

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def tool_parts(self) -> list[ToolPart]:
        return [p for p in self.parts if isinstance(p, ToolPart)]


def user_message(text: str, message_id: str | None = None) -> Message:
    """Convenience constructor for a single-text user message."""
    return Message(id=message_id, role="user", parts=[TextPart(text=text)])
