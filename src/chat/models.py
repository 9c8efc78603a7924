"""
Chat Service Data Models

Data structures shared by the orchestration loop: provider (LLM API) message
types, streaming deltas, the chat request accepted from
clients and the stream updates sent back to them.
All strongly typed with Pydantic for validation and type safety.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from .parts import Message, Part, WireModel

# ==============================================================================
# PROVIDER CHAT MESSAGES (LLM API Types)
# ==============================================================================


class SystemMessage(BaseModel):
    """System message for setting context."""

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    """User message."""

    role: Literal["user"] = "user"
    content: str


class FunctionCall(BaseModel):
    """Function call within a tool call."""

    name: str
    arguments: str = Field(default="{}")  # JSON string


class ToolCall(BaseModel):
    """Tool call from LLM."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class AssistantMessage(BaseModel):
    """Assistant message with optional tool calls."""

    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None

    @field_validator("tool_calls")
    @classmethod
    def validate_tool_calls(cls, v: list[ToolCall] | None) -> list[ToolCall] | None:
        """Convert empty tool_calls list to None to avoid API errors."""
        if v is not None and len(v) == 0:
            return None
        return v


class ToolMessage(BaseModel):
    """Tool response message."""

    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str


# Union of all message types for conversation
ChatCompletionMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage


# ==============================================================================
# STREAMING MODELS
# ==============================================================================


class FunctionCallDelta(BaseModel):
    """Partial function call data in streaming response."""

    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    """Partial tool call data in streaming response."""

    index: int | None = None
    id: str | None = None
    type: Literal["function"] | None = None
    function: FunctionCallDelta | None = None


class CompletedStep(BaseModel):
    """Everything one streamed completion produced once the stream ended."""

    content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)  # in stream index order
    finish_reason: str | None = None


# ==============================================================================
# CLIENT REQUEST / STREAM UPDATES
# ==============================================================================


class ChatRequest(WireModel):
    """Chat submission: full message history plus provider/model selection."""

    messages: list[Message]
    provider: str
    model_id: str


FinishReason = Literal["stop", "approval-pending", "step-budget", "cancelled"]


class StartUpdate(WireModel):
    type: Literal["start"] = "start"
    message_id: str


class TextDeltaUpdate(WireModel):
    type: Literal["text-delta"] = "text-delta"
    message_id: str
    part_index: int
    delta: str


class PartUpdate(WireModel):
    """Full snapshot of one part; tool parts are only sent once their input is complete."""

    type: Literal["part"] = "part"
    message_id: str
    part_index: int
    part: Part


class FinishUpdate(WireModel):
    type: Literal["finish"] = "finish"
    message_id: str
    finish_reason: FinishReason
    steps: int = 0


class ErrorUpdate(WireModel):
    type: Literal["error"] = "error"
    error_text: str


StreamUpdate = Annotated[
    StartUpdate | TextDeltaUpdate | PartUpdate | FinishUpdate | ErrorUpdate,
    Field(discriminator="type"),
]
