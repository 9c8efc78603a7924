#!/usr/bin/env python3
"""
Tests for the event projection and the incident status badge.
"""

from src.chat.events import NoteEvent, ToolEvent, incident_status, project_events
from src.chat.parts import Approval, Message, TextPart, ToolPart, ToolState, user_message


def _snapshot(phase: str, call_id: str) -> ToolPart:
    return ToolPart(
        tool_name="getDynatraceSnapshot",
        tool_call_id=call_id,
        state=ToolState.OUTPUT_AVAILABLE,
        input={},
        output={
            "schemaVersion": 1,
            "at": "2026-10-18T03:00:00+00:00",
            "service": "checkout-api",
            "phase": phase,
            "health": {"summary": "..."},
            "metrics": {"errorRatePct": 12.7, "p95LatencyMs": 1900},
        },
    )


def _page(call_id: str = "page_1") -> ToolPart:
    return ToolPart(
        tool_name="pageHumanOnCall",
        tool_call_id=call_id,
        state=ToolState.OUTPUT_AVAILABLE,
        input={"summary": "checkout degraded"},
        output={"schemaVersion": 1, "at": "2026-10-18T03:01:00+00:00", "pageId": "PG-1", "severity": "high"},
    )


def _email_awaiting_approval() -> ToolPart:
    return ToolPart(
        tool_name="sendF5RedirectEmail",
        tool_call_id="email_1",
        state=ToolState.APPROVAL_REQUESTED,
        input={"reason": "shift traffic"},
        approval=Approval(id="appr-1"),
    )


def _assistant(*parts) -> Message:
    return Message(role="assistant", parts=list(parts))


def test_events_preserve_source_order():
    messages = [
        user_message("status?"),
        _assistant(TextPart(text="Checking"), _snapshot("degraded", "s1"), TextPart(text="Bad.")),
        user_message("page someone"),
        _assistant(_page(), TextPart(text="Paged.")),
    ]

    events = project_events(messages)
    keys = [(e.message_index, e.part_index) for e in events]

    assert keys == sorted(keys)
    assert keys == [(1, 0), (1, 1), (1, 2), (3, 0), (3, 1)]


def test_notes_only_for_non_blank_assistant_text():
    blank = project_events([_assistant(TextPart(text="   "))])
    spike = project_events([_assistant(TextPart(text="Investigating the spike"))])
    user_text = project_events([user_message("Investigating the spike")])

    assert blank == []
    assert spike == [NoteEvent(message_index=0, part_index=0, text="Investigating the spike")]
    assert user_text == []


def test_one_tool_event_per_tool_part_in_any_state():
    messages = [
        _assistant(_snapshot("degraded", "s1"), _email_awaiting_approval()),
        user_message("ok"),
        _assistant(ToolPart(tool_name="listFiles", tool_call_id="l1", state=ToolState.INPUT_STREAMING)),
    ]

    tool_events = [e for e in project_events(messages) if isinstance(e, ToolEvent)]

    assert [e.tool_name for e in tool_events] == ["getDynatraceSnapshot", "sendF5RedirectEmail", "listFiles"]
    assert [e.state for e in tool_events] == [
        ToolState.OUTPUT_AVAILABLE,
        ToolState.APPROVAL_REQUESTED,
        ToolState.INPUT_STREAMING,
    ]


def test_timestamp_is_taken_from_output():
    events = project_events([_assistant(_page(), _email_awaiting_approval())])

    assert events[0].at == "2026-10-18T03:01:00+00:00"
    assert events[1].at is None


def test_projection_is_repeatable():
    messages = [_assistant(TextPart(text="a"), _page())]

    assert project_events(messages) == project_events(messages)


def test_status_badge_sequence():
    messages = [_assistant(_snapshot("monitoring", "s1"), _page())]

    def status():
        return incident_status(project_events(messages), len(messages))

    paged = status()
    assert paged.label == "Human Paged"
    assert paged.variant == "destructive"

    messages.append(_assistant(_email_awaiting_approval()))
    assert status().label == "Awaiting Approval"

    messages.append(_assistant(_snapshot("resolved", "s2")))
    assert status().label == "Resolved"


def test_status_without_incident_signals():
    assert incident_status([], 0).label == "Idle"
    assert incident_status([], 0).variant == "outline"
    assert incident_status(project_events([user_message("hi")]), 1).label == "Monitoring"


def test_completed_redirect_means_mitigating():
    email = _email_awaiting_approval().model_copy(
        update={
            "state": ToolState.OUTPUT_AVAILABLE,
            "approval": Approval(id="appr-1", approved=True),
            "output": {"schemaVersion": 1, "at": "2026-10-18T03:05:00+00:00", "ticketId": "F5-1"},
        }
    )
    messages = [_assistant(_snapshot("degraded", "s1"), _page(), email)]

    assert incident_status(project_events(messages), 1).label == "Mitigating"


def test_malformed_snapshot_output_is_not_trusted():
    broken = _snapshot("resolved", "s1").model_copy(update={"output": {"phase": "resolved"}})

    assert incident_status(project_events([_assistant(broken)]), 1).label == "Monitoring"
