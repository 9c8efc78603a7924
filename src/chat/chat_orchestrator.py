"""
Chat Orchestrator

Main coordination layer for the chat system. ChatOrchestrator validates a chat
submission and binds it to a conversation; the resulting ChatRun drives the
bounded tool-use loop, delegating model streaming to StreamingHandler and tool
work to ToolExecutor.

Every update a run emits is applied to its own conversation before it is
yielded, so the server-side session and a client applying the same stream end
up with the same messages.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncGenerator, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.clients.model_catalog import is_supported_provider

from .conversation import Conversation
from .errors import ChatError, ClientInputError, ConfigurationError, IllegalTransition
from .models import (
    AssistantMessage,
    ChatCompletionMessage,
    ChatRequest,
    CompletedStep,
    ErrorUpdate,
    FinishReason,
    FinishUpdate,
    FunctionCall,
    PartUpdate,
    StartUpdate,
    SystemMessage,
    TextDeltaUpdate,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from .parts import Message, TextPart, ToolPart, ToolState
from .streaming_handler import StreamingHandler
from .tool_executor import ToolExecutor

if TYPE_CHECKING:
    from src.clients.llm_client import CompletionClient
    from src.config import Configuration
    from src.tools.registry import ToolRegistry

    from .prompts import AgentProfile

logger = logging.getLogger(__name__)

NOT_EXECUTED_PENDING = "Not executed: awaiting human approval."
NOT_EXECUTED = "Not executed."

StreamItem = StartUpdate | TextDeltaUpdate | PartUpdate | FinishUpdate | ErrorUpdate


# ==============================================================================
# PROVIDER MESSAGE CONVERSION
# ==============================================================================


def _tool_result_content(part: ToolPart) -> str:
    """What the model is told about a tool call it made earlier."""
    if part.state is ToolState.OUTPUT_AVAILABLE:
        if isinstance(part.output, str):
            return part.output
        return json.dumps(part.output, default=str)
    if part.state is ToolState.OUTPUT_ERROR:
        return f"Error: {part.error_text or 'unknown error'}"
    if part.state in (ToolState.APPROVAL_REQUESTED, ToolState.APPROVAL_RESPONDED):
        return NOT_EXECUTED_PENDING
    return NOT_EXECUTED


def _assistant_steps(message: Message) -> list[tuple[str, list[ToolPart]]]:
    """Split an assistant message into model steps; text after a tool call starts a new step."""
    steps: list[tuple[str, list[ToolPart]]] = []
    text: list[str] = []
    tool_parts: list[ToolPart] = []

    for part in message.parts:
        if isinstance(part, TextPart):
            if tool_parts:
                steps.append(("".join(text), tool_parts))
                text, tool_parts = [], []
            text.append(part.text)
        elif isinstance(part, ToolPart):
            tool_parts.append(part)

    if text or tool_parts:
        steps.append(("".join(text), tool_parts))
    return steps


def build_provider_messages(system_prompt: str, messages: Sequence[Message]) -> list[ChatCompletionMessage]:
    """Convert the conversation into OpenAI-format chat messages, system prompt first."""
    result: list[ChatCompletionMessage] = [SystemMessage(content=system_prompt)]

    for message in messages:
        if message.role == "system":
            if message.text.strip():
                result.append(SystemMessage(content=message.text))
        elif message.role == "user":
            result.append(UserMessage(content=message.text))
        else:
            for text, tool_parts in _assistant_steps(message):
                tool_calls = [
                    ToolCall(
                        id=p.tool_call_id,
                        function=FunctionCall(
                            name=p.tool_name,
                            arguments=json.dumps(p.input if isinstance(p.input, dict) else {}),
                        ),
                    )
                    for p in tool_parts
                ]
                result.append(AssistantMessage(content=text or None, tool_calls=tool_calls))
                result.extend(
                    ToolMessage(content=_tool_result_content(p), tool_call_id=p.tool_call_id) for p in tool_parts
                )

    return result


# ==============================================================================
# RUN
# ==============================================================================


class ChatRun:
    """
    One orchestration run over a conversation.

    Not reusable: call stream() once. cancel() may be called from another task
    at any time; it takes effect before the next model step or tool execution.
    """

    def __init__(
        self,
        conversation: Conversation,
        profile: AgentProfile,
        provider: str,
        model_id: str,
        streaming_handler: StreamingHandler,
        tool_executor: ToolExecutor,
        max_steps: int,
    ):
        self.conversation = conversation
        self.profile = profile
        self.provider = provider
        self.model_id = model_id
        self.streaming_handler = streaming_handler
        self.tool_executor = tool_executor
        self.max_steps = max_steps
        self.steps = 0
        self.finish_reason: FinishReason | None = None
        self._cancelled = False

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info("→ Orchestrator: run cancelled after %d step(s)", self.steps)
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _emit(self, update: StreamItem) -> StreamItem:
        self.conversation.apply_update(update)
        return update

    def _finish(self, message_id: str, reason: FinishReason) -> FinishUpdate:
        self.finish_reason = reason
        logger.info("← Orchestrator: run finished (%s) after %d step(s)", reason, self.steps)
        return FinishUpdate(message_id=message_id, finish_reason=reason, steps=self.steps)

    def _target_message_id(self) -> str:
        """Continue the trailing assistant message, or open a new one."""
        messages = self.conversation.messages
        if messages and messages[-1].role == "assistant":
            return self.conversation.ensure_message_id(len(messages) - 1)
        return f"msg-{uuid.uuid4().hex[:16]}"

    def _parts_of(self, message_id: str) -> list[Any]:
        index = self.conversation.index_of(message_id)
        if index is None:
            raise ValueError(f"Message {message_id} is not part of the conversation")
        return self.conversation.messages[index].parts

    async def stream(self) -> AsyncGenerator[StreamItem]:
        """
        Drive the run, yielding every update in order.

        Any failure after streaming started, expected or not, ends the stream
        with an error update instead of raising.
        """
        message_id = self._target_message_id()
        yield self._emit(StartUpdate(message_id=message_id))

        try:
            async for update in self._resume_approvals():
                yield update
            if self._cancelled:
                yield self._finish(message_id, "cancelled")
                return

            async for update in self._run_steps(message_id):
                yield update
        except ChatError as e:
            logger.error("Run failed: %s", e.message)
            yield self._emit(ErrorUpdate(error_text=e.message))
        except Exception as e:
            logger.exception("Run failed unexpectedly")
            yield self._emit(ErrorUpdate(error_text=str(e) or "Internal server error"))

    async def _resume_approvals(self) -> AsyncGenerator[StreamItem]:
        """Execute approved calls and close denied ones; the only cross-request resumption point."""
        for message_index, message in enumerate(self.conversation.messages):
            for part_index, part in enumerate(message.parts):
                if not (isinstance(part, ToolPart) and part.state is ToolState.APPROVAL_RESPONDED):
                    continue
                if self._cancelled:
                    return

                message_id = self.conversation.ensure_message_id(message_index)
                if part.approval and part.approval.approved:
                    logger.info("→ Orchestrator: resuming approved call %s", part.tool_call_id)
                    context = self.tool_executor.tools.make_context(self.conversation.events())
                    result = await self.tool_executor.execute(part, context)
                else:
                    result = self.tool_executor.deny(part)
                yield self._emit(PartUpdate(message_id=message_id, part_index=part_index, part=result))

    async def _run_steps(self, message_id: str) -> AsyncGenerator[StreamItem]:
        tools_payload = self.tool_executor.tools.get_openai_tools() or None

        while True:
            if self._cancelled:
                yield self._finish(message_id, "cancelled")
                return
            if self.tool_executor.check_step_limit(self.steps, self.max_steps):
                yield self._finish(message_id, "step-budget")
                return

            self.steps += 1
            provider_messages = build_provider_messages(self.profile.system_prompt, self.conversation.messages)

            text_index: int | None = None
            completed: CompletedStep | None = None
            async for item in self.streaming_handler.stream_step(
                self.provider,
                self.model_id,
                provider_messages,
                tools_payload,
                step_number=self.steps,
            ):
                if isinstance(item, CompletedStep):
                    completed = item
                    continue
                if text_index is None:
                    text_index = len(self._parts_of(message_id))
                yield self._emit(TextDeltaUpdate(message_id=message_id, part_index=text_index, delta=item))

            if completed is None or not completed.tool_calls:
                yield self._finish(message_id, "stop")
                return

            awaiting_approval = False
            total = len(completed.tool_calls)
            for call_index, call in enumerate(completed.tool_calls):
                if self._cancelled:
                    break

                part_index = len(self._parts_of(message_id))
                name = call.function.name
                try:
                    args = self.tool_executor.parse_arguments(name, call.function.arguments)
                except ValueError as e:
                    malformed = ToolPart(
                        tool_name=name,
                        tool_call_id=call.id,
                        state=ToolState.OUTPUT_ERROR,
                        error_text=str(e),
                    )
                    yield self._emit(PartUpdate(message_id=message_id, part_index=part_index, part=malformed))
                    continue

                part = ToolPart(tool_name=name, tool_call_id=call.id, state=ToolState.INPUT_AVAILABLE, input=args)
                yield self._emit(PartUpdate(message_id=message_id, part_index=part_index, part=part))
                if self._cancelled:
                    break

                if self.tool_executor.requires_approval(name):
                    part = self.tool_executor.gate(part)
                    awaiting_approval = True
                else:
                    context = self.tool_executor.tools.make_context(self.conversation.events())
                    part = await self.tool_executor.execute(part, context, call_index, total)
                yield self._emit(PartUpdate(message_id=message_id, part_index=part_index, part=part))

            if self._cancelled:
                yield self._finish(message_id, "cancelled")
                return
            if awaiting_approval:
                yield self._finish(message_id, "approval-pending")
                return


# ==============================================================================
# ORCHESTRATOR
# ==============================================================================


class ChatOrchestrator:
    """
    Conversation orchestrator - coordinates between specialized handlers
    1. Validates the chat submission
    2. Picks the profile's tools
    3. Hands back a ChatRun bound to the session's conversation
    """

    def __init__(
        self,
        llm_client: CompletionClient,
        tools: ToolRegistry,
        configuration: Configuration,
    ):
        self.llm_client = llm_client
        self.tools = tools
        self.configuration = configuration

    @staticmethod
    def validate_request(data: ChatRequest | dict[str, Any]) -> ChatRequest:
        """
        Validate a chat submission.

        Raises:
            ClientInputError: missing or malformed messages, missing provider or model
        """
        if isinstance(data, ChatRequest):
            request = data
        else:
            if not isinstance(data, dict):
                raise ClientInputError("Request body must be a JSON object")
            if not isinstance(data.get("messages"), list):
                raise ClientInputError("Messages array is required")
            if not data.get("provider") or not (data.get("modelId") or data.get("model_id")):
                raise ClientInputError("Provider and modelId are required")
            try:
                request = ChatRequest.model_validate(data)
            except ValidationError as e:
                raise ClientInputError(f"Malformed messages: {e.error_count()} validation error(s)", e) from e

        if not request.provider or not request.model_id:
            raise ClientInputError("Provider and modelId are required")
        return request

    def prepare(
        self,
        request: ChatRequest | dict[str, Any],
        profile: AgentProfile,
        conversation: Conversation | None = None,
    ) -> ChatRun:
        """
        Validate ``request`` and bind it to a conversation.

        Without ``conversation`` the request's messages are the whole history
        (stateless HTTP); with one, they are appended to it (WebSocket session).

        Raises:
            ClientInputError: see validate_request; also unsupported provider
            ConfigurationError: missing provider credential or bad step budget
        """
        request = self.validate_request(request)
        if not is_supported_provider(request.provider):
            raise ClientInputError(f"Unsupported provider: {request.provider}")

        self.configuration.get_provider_api_key(request.provider)
        try:
            max_steps = self.configuration.get_max_steps()
        except ValueError as e:
            raise ConfigurationError(str(e), e) from e

        try:
            if conversation is None:
                conversation = Conversation(request.messages)
            else:
                for message in request.messages:
                    conversation.append(message)
        except IllegalTransition as e:
            raise ClientInputError(f"Malformed messages: {e.message}", e) from e

        chat_conf = self.configuration.get_chat_service_config()
        tools = self.tools.subset(profile.tool_names)

        logger.info(
            "→ Orchestrator: prepared %s run with %s/%s (%d messages, %d tools)",
            profile.name,
            request.provider,
            request.model_id,
            len(conversation),
            len(tools),
        )
        return ChatRun(
            conversation=conversation,
            profile=profile,
            provider=request.provider,
            model_id=request.model_id,
            streaming_handler=StreamingHandler(self.llm_client, chat_conf),
            tool_executor=ToolExecutor(tools, chat_conf),
            max_steps=max_steps,
        )
