"""
Event Projection

Pure, order-preserving derivation of a flat event log from a message list,
plus the incident status badge computed from that log. Nothing here keeps
state between calls; callers recompute on every change.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from .parts import Message, TextPart, ToolPart, ToolState
from .results import parse_snapshot

SNAPSHOT_TOOL = "getDynatraceSnapshot"
REDIRECT_EMAIL_TOOL = "sendF5RedirectEmail"
PAGER_TOOL = "pageHumanOnCall"


class NoteEvent(BaseModel):
    kind: Literal["note"] = "note"
    message_index: int
    part_index: int
    text: str


class ToolEvent(BaseModel):
    kind: Literal["tool"] = "tool"
    message_index: int
    part_index: int
    tool_name: str
    state: ToolState
    input: Any | None = None
    output: Any | None = None
    error_text: str | None = None
    at: str | None = None


Event = Annotated[NoteEvent | ToolEvent, Field(discriminator="kind")]


class IncidentStatus(BaseModel):
    label: str
    variant: Literal["secondary", "destructive", "outline"] = "secondary"


def _output_timestamp(output: Any) -> str | None:
    if isinstance(output, dict):
        at = output.get("at")
        if isinstance(at, str):
            return at
    return None


def project_events(messages: Sequence[Message]) -> list[NoteEvent | ToolEvent]:
    """
    Flatten messages into notes and tool events in (message, part) order.

    Every tool part yields exactly one event regardless of state; text parts
    yield a note only when authored by the assistant and non-blank.
    """
    events: list[NoteEvent | ToolEvent] = []
    for message_index, message in enumerate(messages):
        for part_index, part in enumerate(message.parts):
            if isinstance(part, TextPart):
                text = part.text.strip()
                if message.role == "assistant" and text:
                    events.append(NoteEvent(message_index=message_index, part_index=part_index, text=text))
            elif isinstance(part, ToolPart):
                events.append(
                    ToolEvent(
                        message_index=message_index,
                        part_index=part_index,
                        tool_name=part.tool_name,
                        state=part.state,
                        input=part.input,
                        output=part.output,
                        error_text=part.error_text,
                        at=_output_timestamp(part.output),
                    )
                )
    return events


def tool_events(events: Sequence[NoteEvent | ToolEvent], tool_name: str) -> list[ToolEvent]:
    return [e for e in events if isinstance(e, ToolEvent) and e.tool_name == tool_name]


def latest_snapshot_phase(events: Sequence[NoteEvent | ToolEvent]) -> str | None:
    """Phase reported by the most recent snapshot event, if it carries a valid output."""
    for event in reversed(events):
        if isinstance(event, ToolEvent) and event.tool_name == SNAPSHOT_TOOL:
            snapshot = parse_snapshot(event.output)
            return snapshot.phase if snapshot else None
    return None


def incident_status(events: Sequence[NoteEvent | ToolEvent], message_count: int) -> IncidentStatus:
    """
    Derive the incident badge.

    Precedence: resolved snapshot, pending approval, mitigation in progress,
    human paged, monitoring, idle. Later events win; timestamps are ignored.
    """
    phase = latest_snapshot_phase(events)
    emails = tool_events(events, REDIRECT_EMAIL_TOOL)

    if phase == "resolved":
        return IncidentStatus(label="Resolved")
    if any(e.state is ToolState.APPROVAL_REQUESTED for e in emails):
        return IncidentStatus(label="Awaiting Approval")
    if phase == "rerouted" or any(e.state is ToolState.OUTPUT_AVAILABLE for e in emails):
        return IncidentStatus(label="Mitigating")
    if tool_events(events, PAGER_TOOL):
        return IncidentStatus(label="Human Paged", variant="destructive")
    if message_count > 0:
        return IncidentStatus(label="Monitoring")
    return IncidentStatus(label="Idle", variant="outline")
