"""
Chat Service Module

Message model, tool-call state machine, event projection and the bounded
orchestration loop, with clear separation of concerns.
"""

from .chat_orchestrator import ChatOrchestrator, ChatRun
from .conversation import Conversation, parse_update
from .events import incident_status, project_events
from .parts import Message, TextPart, ToolPart, ToolState

__all__ = [
    "ChatOrchestrator",
    "ChatRun",
    "Conversation",
    "Message",
    "TextPart",
    "ToolPart",
    "ToolState",
    "incident_status",
    "parse_update",
    "project_events",
]
