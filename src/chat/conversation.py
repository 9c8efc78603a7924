"""
Conversation Session

Append-only message buffer owned by one chat session. It merges streamed
updates into the message they target, keeps the registry of open approval
requests and exposes the derived event log.

A session is created empty (or from a client-supplied history) and discarded
with reset(); it is never shared between sessions.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import TypeAdapter

from . import tool_state
from .errors import ApprovalNotFound, IllegalTransition
from .events import IncidentStatus, NoteEvent, ToolEvent, incident_status, project_events
from .models import (
    ErrorUpdate,
    FinishUpdate,
    PartUpdate,
    StartUpdate,
    StreamUpdate,
    TextDeltaUpdate,
)
from .parts import Message, TextPart, ToolPart, ToolState

logger = logging.getLogger(__name__)

_update_adapter: TypeAdapter[Any] = TypeAdapter(StreamUpdate)


def parse_update(data: dict[str, Any] | str) -> StartUpdate | TextDeltaUpdate | PartUpdate | FinishUpdate | ErrorUpdate:
    """Parse one stream update from its wire form (dict or JSON line)."""
    if isinstance(data, str):
        return _update_adapter.validate_json(data)
    return _update_adapter.validate_python(data)


class ApprovalRegistry:
    """
    Open approval requests of one session.

    An approval id maps to at most one open request and a tool call is gated
    at most once. resolve() is an atomic test-and-set: of two concurrent
    attempts on the same id exactly one succeeds, the other gets
    ApprovalNotFound.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._open: dict[str, tuple[int, int]] = {}
        self._gated_calls: set[str] = set()

    def track(self, entries: Iterable[tuple[ToolPart, tuple[int, int]]]) -> None:
        """
        Record the approvals carried by ``entries`` (part, location) pairs.

        Pending requests are opened; settled ones only mark their call as
        gated. Either every entry is recorded or none is.

        Raises:
            IllegalTransition: if a tool call would be gated a second time
            ValueError: if an approval id is already open for another request
        """
        with self._lock:
            gated = set(self._gated_calls)
            opened: dict[str, tuple[int, int]] = {}
            for part, location in entries:
                if part.approval is None:
                    continue
                if part.state is ToolState.APPROVAL_REQUESTED and part.approval.is_pending:
                    approval_id = part.approval.id
                    if part.tool_call_id in gated:
                        raise IllegalTransition(
                            part.tool_call_id,
                            ToolState.APPROVAL_REQUESTED.value,
                            ToolState.APPROVAL_REQUESTED.value,
                        )
                    if approval_id in self._open or approval_id in opened:
                        raise ValueError(f"Approval {approval_id} is already open for another request")
                    opened[approval_id] = location
                gated.add(part.tool_call_id)

            self._gated_calls = gated
            self._open.update(opened)

    def resolve(self, approval_id: str) -> tuple[int, int]:
        with self._lock:
            location = self._open.pop(approval_id, None)
        if location is None:
            raise ApprovalNotFound(approval_id)
        return location

    def discard(self, approval_id: str) -> None:
        with self._lock:
            self._open.pop(approval_id, None)

    def is_open(self, approval_id: str) -> bool:
        with self._lock:
            return approval_id in self._open

    def open_ids(self) -> list[str]:
        with self._lock:
            return list(self._open)

    def clear(self) -> None:
        with self._lock:
            self._open.clear()
            self._gated_calls.clear()


class Conversation:
    """Ordered, append-only buffer of messages for a single session."""

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = []
        self.approvals = ApprovalRegistry()
        for message in messages or ():
            self.append(message)

    @property
    def messages(self) -> Sequence[Message]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> int:
        """Append a message and register any approvals it carries; returns its index."""
        message = message.model_copy(deep=True)
        index = len(self._messages)
        self.approvals.track(
            (part, (index, part_index)) for part_index, part in enumerate(message.parts) if isinstance(part, ToolPart)
        )
        self._messages.append(message)
        return index

    def reset(self) -> None:
        """Discard the whole conversation."""
        logger.info("Conversation reset (%d messages discarded)", len(self._messages))
        self._messages.clear()
        self.approvals.clear()

    def index_of(self, message_id: str) -> int | None:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    def ensure_message_id(self, index: int) -> str:
        """Give the message at ``index`` a stable id (client histories may omit it)."""
        message = self._messages[index]
        if message.id is None:
            message.id = f"msg-{uuid.uuid4().hex[:16]}"
        return message.id

    def last_assistant_index(self) -> int | None:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].role == "assistant":
                return index
        return None

    # ------------------------------------------------------------------
    # Stream merging
    # ------------------------------------------------------------------

    def apply_update(self, update: StartUpdate | TextDeltaUpdate | PartUpdate | FinishUpdate | ErrorUpdate | dict[str, Any]) -> None:
        """
        Merge one streamed update into the conversation.

        Raises:
            IllegalTransition: if a tool part snapshot would break its lifecycle
            ValueError: if the update addresses a part that cannot exist
        """
        if isinstance(update, dict):
            update = parse_update(update)

        if isinstance(update, StartUpdate):
            if self.index_of(update.message_id) is None:
                self._messages.append(Message(id=update.message_id, role="assistant"))
        elif isinstance(update, TextDeltaUpdate):
            message = self._message_for(update.message_id)
            self._apply_text_delta(message, update.part_index, update.delta)
        elif isinstance(update, PartUpdate):
            opened = self.index_of(update.message_id) is None
            message_index = self._index_for(update.message_id)
            try:
                self._apply_part(message_index, update.part_index, update.part)
            except (IllegalTransition, ValueError):
                if opened:
                    self._messages.pop()
                raise
        elif isinstance(update, FinishUpdate):
            logger.debug(
                "Stream finished for message %s: %s after %d step(s)",
                update.message_id,
                update.finish_reason,
                update.steps,
            )
        elif isinstance(update, ErrorUpdate):
            logger.warning("Stream ended with error: %s", update.error_text)

    def _index_for(self, message_id: str) -> int:
        index = self.index_of(message_id)
        if index is None:
            # Updates can outrun the start marker when replayed; open the message lazily
            self._messages.append(Message(id=message_id, role="assistant"))
            index = len(self._messages) - 1
        return index

    def _message_for(self, message_id: str) -> Message:
        return self._messages[self._index_for(message_id)]

    @staticmethod
    def _apply_text_delta(message: Message, part_index: int, delta: str) -> None:
        if part_index == len(message.parts):
            message.parts.append(TextPart(text=delta))
            return
        if part_index > len(message.parts):
            raise ValueError(f"Text delta for part {part_index} skips ahead of {len(message.parts)} part(s)")
        current = message.parts[part_index]
        if not isinstance(current, TextPart):
            raise ValueError(f"Part {part_index} of message {message.id} is not a text part")
        message.parts[part_index] = TextPart(text=current.text + delta)

    def _apply_part(self, message_index: int, part_index: int, part: TextPart | ToolPart) -> None:
        message = self._messages[message_index]
        if part_index > len(message.parts):
            raise ValueError(f"Part update {part_index} skips ahead of {len(message.parts)} part(s)")

        if part_index == len(message.parts):
            if isinstance(part, ToolPart):
                self._track_approval(part, (message_index, part_index))
            message.parts.append(part)
            return

        current = message.parts[part_index]
        if isinstance(current, TextPart) and isinstance(part, TextPart):
            message.parts[part_index] = part
            return
        if not (isinstance(current, ToolPart) and isinstance(part, ToolPart)):
            raise ValueError(f"Part {part_index} of message {message.id} changed kind")

        try:
            tool_state.check_update(current, part)
            if part.state is ToolState.APPROVAL_REQUESTED and current.state is not ToolState.APPROVAL_REQUESTED:
                self.approvals.track([(part, (message_index, part_index))])
            elif current.state is ToolState.APPROVAL_REQUESTED and part.state is not ToolState.APPROVAL_REQUESTED:
                # Settled by the other side of the stream
                if current.approval is not None:
                    self.approvals.discard(current.approval.id)
        except IllegalTransition:
            logger.warning(
                "Rejected update for tool call %s: %s -> %s",
                current.tool_call_id,
                current.state.value,
                part.state.value,
            )
            raise
        message.parts[part_index] = part

    def _track_approval(self, part: ToolPart, location: tuple[int, int]) -> None:
        try:
            self.approvals.track([(part, location)])
        except IllegalTransition:
            logger.warning("Rejected second approval request for tool call %s", part.tool_call_id)
            raise

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def resolve_approval(self, approval_id: str, approved: bool, reason: str | None = None) -> bool:
        """
        Record a human decision on an open approval request.

        Returns False (and logs) when the id is unknown or already resolved;
        the stream and the user action can arrive in either order, so this is
        not treated as a failure.
        """
        try:
            message_index, part_index = self.approvals.resolve(approval_id)
        except ApprovalNotFound as e:
            logger.warning("%s; ignoring response", e.message)
            return False

        message = self._messages[message_index]
        part = message.parts[part_index]
        if not isinstance(part, ToolPart):
            raise ValueError(f"Approval {approval_id} does not point at a tool part")
        message.parts[part_index] = tool_state.respond(part, approved, reason)
        logger.info(
            "Approval %s for %s %s%s",
            approval_id,
            part.tool_name,
            "approved" if approved else "denied",
            f" ({reason})" if reason else "",
        )
        return True

    def open_approvals(self) -> list[ToolPart]:
        parts: list[ToolPart] = []
        for message in self._messages:
            for part in message.parts:
                if (
                    isinstance(part, ToolPart)
                    and part.approval is not None
                    and self.approvals.is_open(part.approval.id)
                ):
                    parts.append(part)
        return parts

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def events(self) -> list[NoteEvent | ToolEvent]:
        return project_events(self._messages)

    def status(self) -> IncidentStatus:
        return incident_status(self.events(), len(self._messages))
