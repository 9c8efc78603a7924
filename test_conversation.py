#!/usr/bin/env python3
"""
Tests for the session conversation buffer: stream merging and approvals.
"""

import threading

import pytest

from src.chat import Conversation, parse_update
from src.chat.errors import ApprovalNotFound, IllegalTransition
from src.chat.models import FinishUpdate, PartUpdate, StartUpdate, TextDeltaUpdate
from src.chat.parts import Approval, Message, TextPart, ToolPart, ToolState, user_message


def _gated_part(approval_id: str = "appr-1", call_id: str = "call_1") -> ToolPart:
    return ToolPart(
        tool_name="sendF5RedirectEmail",
        tool_call_id=call_id,
        state=ToolState.APPROVAL_REQUESTED,
        input={"reason": "pool A failing"},
        approval=Approval(id=approval_id),
    )


def _conversation_with_open_approval() -> Conversation:
    return Conversation(
        [
            user_message("checkout is on fire"),
            Message(id="a1", role="assistant", parts=[TextPart(text="Requesting a redirect."), _gated_part()]),
        ]
    )


def test_text_deltas_are_merged_incrementally():
    conversation = Conversation([user_message("hi")])

    conversation.apply_update(StartUpdate(message_id="a1"))
    conversation.apply_update(TextDeltaUpdate(message_id="a1", part_index=0, delta="Hel"))
    conversation.apply_update(TextDeltaUpdate(message_id="a1", part_index=0, delta="lo"))

    assert len(conversation) == 2
    assert conversation.messages[1].role == "assistant"
    assert conversation.messages[1].text == "Hello"


def test_wire_updates_are_accepted():
    conversation = Conversation()

    for line in [
        '{"type": "start", "messageId": "a1"}',
        '{"type": "text-delta", "messageId": "a1", "partIndex": 0, "delta": "Reading"}',
        '{"type": "part", "messageId": "a1", "partIndex": 1, "part": {"type": "tool", "toolName": "listFiles",'
        ' "toolCallId": "c1", "state": "input-available", "input": {}}}',
        '{"type": "finish", "messageId": "a1", "finishReason": "stop", "steps": 1}',
    ]:
        conversation.apply_update(parse_update(line))

    parts = conversation.messages[0].parts
    assert isinstance(parts[0], TextPart)
    assert isinstance(parts[1], ToolPart)
    assert parts[1].state is ToolState.INPUT_AVAILABLE


def test_part_snapshots_advance_the_tool_state():
    conversation = Conversation()
    part = ToolPart(tool_name="listFiles", tool_call_id="c1", state=ToolState.INPUT_AVAILABLE, input={})

    conversation.apply_update({"type": "part", "messageId": "a1", "partIndex": 0, "part": part.to_wire()})
    done = part.model_copy(update={"state": ToolState.OUTPUT_AVAILABLE, "output": {"files": []}})
    conversation.apply_update(PartUpdate(message_id="a1", part_index=0, part=done))

    stored = conversation.messages[0].parts[0]
    assert isinstance(stored, ToolPart)
    assert stored.state is ToolState.OUTPUT_AVAILABLE


def test_terminal_part_cannot_be_rewound():
    conversation = Conversation()
    done = ToolPart(tool_name="listFiles", tool_call_id="c1", state=ToolState.OUTPUT_ERROR, error_text="x")
    conversation.apply_update(PartUpdate(message_id="a1", part_index=0, part=done))

    with pytest.raises(IllegalTransition):
        conversation.apply_update(
            PartUpdate(
                message_id="a1",
                part_index=0,
                part=done.model_copy(update={"state": ToolState.INPUT_AVAILABLE}),
            )
        )
    assert conversation.messages[0].parts[0] == done


def test_updates_cannot_skip_part_indexes():
    conversation = Conversation()
    conversation.apply_update(StartUpdate(message_id="a1"))

    with pytest.raises(ValueError):
        conversation.apply_update(TextDeltaUpdate(message_id="a1", part_index=2, delta="x"))


def test_finish_update_does_not_change_messages():
    conversation = _conversation_with_open_approval()
    before = [m.model_copy(deep=True) for m in conversation.messages]

    conversation.apply_update(FinishUpdate(message_id="a1", finish_reason="approval-pending", steps=1))

    assert list(conversation.messages) == before


def test_appended_messages_are_copies():
    message = user_message("hello")
    conversation = Conversation([message])
    message.parts.append(TextPart(text=" again"))

    assert conversation.messages[0].text == "hello"


def test_resolve_once():
    conversation = _conversation_with_open_approval()

    assert conversation.approvals.open_ids() == ["appr-1"]
    assert conversation.resolve_approval("appr-1", True) is True
    assert conversation.resolve_approval("appr-1", False, "changed my mind") is False

    part = conversation.messages[1].parts[1]
    assert isinstance(part, ToolPart)
    assert part.state is ToolState.APPROVAL_RESPONDED
    assert part.approval == Approval(id="appr-1", approved=True)
    assert conversation.open_approvals() == []


def test_unknown_approval_is_ignored():
    conversation = _conversation_with_open_approval()

    assert conversation.resolve_approval("appr-404", True) is False
    assert conversation.approvals.is_open("appr-1")


def test_registry_resolve_raises_for_unknown_id():
    conversation = _conversation_with_open_approval()
    conversation.approvals.resolve("appr-1")

    with pytest.raises(ApprovalNotFound):
        conversation.approvals.resolve("appr-1")


def test_concurrent_resolution_has_one_winner():
    conversation = _conversation_with_open_approval()
    results: list[bool] = []
    barrier = threading.Barrier(8)

    def resolve(approved: bool) -> None:
        barrier.wait()
        results.append(conversation.resolve_approval("appr-1", approved))

    threads = [threading.Thread(target=resolve, args=(i % 2 == 0,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1


def test_same_call_cannot_be_gated_twice():
    conversation = _conversation_with_open_approval()

    with pytest.raises(IllegalTransition):
        conversation.append(Message(role="assistant", parts=[_gated_part("appr-2", call_id="call_1")]))

    assert len(conversation) == 2
    assert conversation.approvals.open_ids() == ["appr-1"]


def test_history_with_settled_approval_has_nothing_open():
    settled = _gated_part().model_copy(
        update={"state": ToolState.APPROVAL_RESPONDED, "approval": Approval(id="appr-1", approved=False)}
    )
    conversation = Conversation([Message(role="assistant", parts=[settled])])

    assert conversation.approvals.open_ids() == []
    assert conversation.resolve_approval("appr-1", True) is False


def test_stream_settling_an_approval_closes_it():
    conversation = _conversation_with_open_approval()
    responded = _gated_part().model_copy(
        update={"state": ToolState.APPROVAL_RESPONDED, "approval": Approval(id="appr-1", approved=True)}
    )

    conversation.apply_update(PartUpdate(message_id="a1", part_index=1, part=responded))

    assert not conversation.approvals.is_open("appr-1")


def test_reset_discards_everything():
    conversation = _conversation_with_open_approval()
    conversation.reset()

    assert len(conversation) == 0
    assert conversation.approvals.open_ids() == []
    assert conversation.status().label == "Idle"


def test_message_ids_are_assigned_on_demand():
    conversation = Conversation([Message(role="assistant", parts=[TextPart(text="hi")])])

    message_id = conversation.ensure_message_id(0)

    assert message_id.startswith("msg-")
    assert conversation.ensure_message_id(0) == message_id
    assert conversation.index_of(message_id) == 0
    assert conversation.last_assistant_index() == 0


def test_reprompt_with_new_approval_id_is_rejected():
    conversation = Conversation()
    conversation.apply_update(PartUpdate(message_id="a1", part_index=0, part=_gated_part("appr-A")))
    conversation.apply_update(PartUpdate(message_id="a1", part_index=0, part=_gated_part("appr-A")))

    with pytest.raises(IllegalTransition):
        conversation.apply_update(PartUpdate(message_id="a1", part_index=0, part=_gated_part("appr-B")))

    stored = conversation.messages[0].parts[0]
    assert isinstance(stored, ToolPart)
    assert stored.approval == Approval(id="appr-A")
    assert conversation.approvals.open_ids() == ["appr-A"]
    assert conversation.resolve_approval("appr-B", True) is False
    assert conversation.resolve_approval("appr-A", True) is True


def test_second_gated_part_for_the_same_call_leaves_no_trace():
    conversation = Conversation()
    conversation.apply_update(PartUpdate(message_id="a1", part_index=0, part=_gated_part("appr-A")))

    with pytest.raises(IllegalTransition):
        conversation.apply_update(PartUpdate(message_id="a1", part_index=1, part=_gated_part("appr-B")))

    assert len(conversation.messages[0].parts) == 1
    assert [e.part_index for e in conversation.events()] == [0]
    assert conversation.approvals.open_ids() == ["appr-A"]


def test_open_approval_id_cannot_be_reused_for_another_call():
    conversation = _conversation_with_open_approval()

    with pytest.raises(ValueError, match="already open"):
        conversation.apply_update(
            PartUpdate(message_id="a1", part_index=2, part=_gated_part("appr-1", call_id="call_2"))
        )

    assert len(conversation.messages[1].parts) == 2
    assert conversation.resolve_approval("appr-1", True) is True
    part = conversation.messages[1].parts[1]
    assert isinstance(part, ToolPart)
    assert part.tool_call_id == "call_1"


def test_rejected_update_does_not_open_a_message():
    conversation = _conversation_with_open_approval()

    with pytest.raises(IllegalTransition):
        conversation.apply_update(PartUpdate(message_id="a2", part_index=0, part=_gated_part("appr-2")))

    assert len(conversation) == 2
    assert conversation.index_of("a2") is None
