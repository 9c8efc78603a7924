"""
Tool-Call State Machine

Legal transitions for a tool part:

    input-streaming -> input-available
    input-available -> output-available | output-error | approval-requested
    approval-requested -> approval-responded
    approval-responded (approved) -> output-available | output-error
    approval-responded (denied)   -> output-error

output-available and output-error are terminal.
"""

from __future__ import annotations

from typing import Any

from .errors import IllegalTransition
from .parts import Approval, ToolPart, ToolState

TRANSITIONS: dict[ToolState, frozenset[ToolState]] = {
    ToolState.INPUT_STREAMING: frozenset({ToolState.INPUT_AVAILABLE}),
    ToolState.INPUT_AVAILABLE: frozenset(
        {
            ToolState.OUTPUT_AVAILABLE,
            ToolState.OUTPUT_ERROR,
            ToolState.APPROVAL_REQUESTED,
        }
    ),
    ToolState.APPROVAL_REQUESTED: frozenset({ToolState.APPROVAL_RESPONDED}),
    ToolState.APPROVAL_RESPONDED: frozenset({ToolState.OUTPUT_AVAILABLE, ToolState.OUTPUT_ERROR}),
    ToolState.OUTPUT_AVAILABLE: frozenset(),
    ToolState.OUTPUT_ERROR: frozenset(),
}


def can_transition(part: ToolPart, target: ToolState) -> bool:
    """Check whether ``part`` may move to ``target``."""
    if target not in TRANSITIONS[part.state]:
        return False
    # A denied approval can only end in an error
    if (
        part.state is ToolState.APPROVAL_RESPONDED
        and target is ToolState.OUTPUT_AVAILABLE
        and not (part.approval and part.approval.approved)
    ):
        return False
    return True


def advance(part: ToolPart, target: ToolState, **fields: Any) -> ToolPart:
    """
    Return a copy of ``part`` moved to ``target`` with ``fields`` applied.

    Raises:
        IllegalTransition: if the move is not allowed from the current state
    """
    if not can_transition(part, target):
        raise IllegalTransition(part.tool_call_id, part.state.value, target.value)
    return part.model_copy(update={"state": target, **fields})


def mark_input_available(part: ToolPart, tool_input: Any) -> ToolPart:
    return advance(part, ToolState.INPUT_AVAILABLE, input=tool_input)


def complete(part: ToolPart, output: Any) -> ToolPart:
    return advance(part, ToolState.OUTPUT_AVAILABLE, output=output)


def fail(part: ToolPart, error_text: str) -> ToolPart:
    return advance(part, ToolState.OUTPUT_ERROR, error_text=error_text)


def request_approval(part: ToolPart, approval_id: str) -> ToolPart:
    return advance(part, ToolState.APPROVAL_REQUESTED, approval=Approval(id=approval_id))


def respond(part: ToolPart, approved: bool, reason: str | None = None) -> ToolPart:
    """Record a human decision on a pending approval."""
    if part.approval is None:
        raise IllegalTransition(part.tool_call_id, part.state.value, ToolState.APPROVAL_RESPONDED.value)
    approval = part.approval.model_copy(update={"approved": approved, "reason": reason})
    return advance(part, ToolState.APPROVAL_RESPONDED, approval=approval)


def check_update(current: ToolPart, incoming: ToolPart) -> None:
    """
    Validate that ``incoming`` is a legal successor snapshot of ``current``.

    A snapshot in the same state is accepted only as an identical re-delivery,
    except while input is still streaming. A re-sent approval request with
    another approval id would be a second prompt for the same call.

    Raises:
        IllegalTransition: if the snapshot would rewind or skip the lifecycle
    """
    if incoming.tool_call_id != current.tool_call_id:
        raise IllegalTransition(current.tool_call_id, current.state.value, incoming.state.value)
    if incoming.state is current.state:
        if current.state is not ToolState.INPUT_STREAMING and incoming != current:
            raise IllegalTransition(current.tool_call_id, current.state.value, incoming.state.value)
        return
    if incoming.state not in TRANSITIONS[current.state]:
        raise IllegalTransition(current.tool_call_id, current.state.value, incoming.state.value)
    if (
        current.state is ToolState.APPROVAL_RESPONDED
        and incoming.state is ToolState.OUTPUT_AVAILABLE
        and not (current.approval and current.approval.approved)
    ):
        raise IllegalTransition(current.tool_call_id, current.state.value, incoming.state.value)
