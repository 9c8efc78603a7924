"""
Streaming Response Handler

Handles the fragile part of talking to the model:
- LLM response streaming
- Immediate text delta forwarding
- Streaming tool call accumulation
- Completed tool call assembly (id, name and full argument text)

Streaming bugs are hard to debug, so this isolation makes it easier to add
detailed logging for what the model actually sent.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncGenerator, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.chat.errors import ProviderError
from src.chat.logging_utils import log_llm_reply
from src.chat.models import (
    ChatCompletionMessage,
    CompletedStep,
    FunctionCall,
    ToolCall,
    ToolCallDelta,
)

if TYPE_CHECKING:
    from src.clients.llm_client import CompletionClient

logger = logging.getLogger(__name__)


class StreamingHandler:
    """Streams one model step at a time."""

    def __init__(self, llm_client: CompletionClient, chat_conf: dict[str, Any]):
        self.llm_client = llm_client
        self.chat_conf = chat_conf

    async def stream_step(
        self,
        provider: str,
        model_id: str,
        messages: Sequence[ChatCompletionMessage],
        tools_payload: list[dict[str, Any]] | None,
        step_number: int = 1,
    ) -> AsyncGenerator[str | CompletedStep]:
        """
        Stream one completion from the model.

        Key behavior: every content delta is yielded (as ``str``) the moment it
        arrives, while tool calls are accumulated in the background. The last
        item yielded is always a ``CompletedStep``.
        """
        logger.info("→ LLM: starting streaming request (step %d, %s/%s)", step_number, provider, model_id)

        message_parts: list[str] = []
        current_tool_calls: list[dict[str, Any]] = []
        finish_reason: str | None = None

        async for chunk in self.llm_client.stream_completion(provider, model_id, messages, tools_payload):
            choices: list[dict[str, Any]] = chunk.get("choices") or []
            if not choices:
                continue

            choice: dict[str, Any] = choices[0]
            delta: dict[str, Any] = choice.get("delta") or {}

            content = delta.get("content")
            if content:
                message_parts.append(content)
                logger.debug("→ Frontend: streaming content delta, length=%d", len(content))
                yield content

            tool_calls_delta: list[dict[str, Any]] | None = delta.get("tool_calls")
            if tool_calls_delta:
                for tool_call_delta in tool_calls_delta:
                    try:
                        tcd = ToolCallDelta.model_validate(tool_call_delta)
                    except ValidationError as e:
                        logger.error("Malformed tool call delta from %s: %s", provider, tool_call_delta)
                        raise ProviderError(
                            provider,
                            f"Malformed tool call delta: {e.error_count()} validation error(s)",
                            cause=e,
                        ) from e
                    self._accumulate_tool_call_delta(current_tool_calls, tcd)

            if choice.get("finish_reason"):
                finish_reason = choice.get("finish_reason")

        logger.info("← LLM: streaming completed (step %d), finish_reason=%s", step_number, finish_reason)

        step = self._complete_step("".join(message_parts) or None, current_tool_calls, finish_reason)
        log_llm_reply(
            step.content,
            [c.function.name for c in step.tool_calls],
            model_id,
            f"step {step_number}",
            self.chat_conf,
        )
        yield step

    def _complete_step(
        self,
        content: str | None,
        current_tool_calls: list[dict[str, Any]],
        finish_reason: str | None,
    ) -> CompletedStep:
        """
        Turn accumulated deltas into tool calls.

        Calls without a function name are dropped. Arguments are passed on as
        raw text; the tool executor decides whether they parse.
        """
        tool_calls: list[ToolCall] = []

        for call in current_tool_calls:
            name = call["function"]["name"]
            if not name:
                logger.warning("Dropping tool call without a function name: %s", call)
                continue

            call_id = call["id"] or f"call_{uuid.uuid4().hex[:24]}"
            arguments = call["function"]["arguments"] or "{}"
            tool_calls.append(ToolCall(id=call_id, function=FunctionCall(name=name, arguments=arguments)))

        return CompletedStep(
            content=content,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
        )

    def _accumulate_tool_call_delta(self, current_tool_calls: list[dict[str, Any]], delta: ToolCallDelta) -> None:
        """
        Accumulate tool call delta into the current tool calls list.

        This handles the incremental nature of streaming tool calls where
        each delta may contain partial information (id, function name, arguments)
        that needs to be accumulated into complete tool call objects.
        """
        # Providers that omit the index send each call whole, one delta per call
        index = delta.index if delta.index is not None else len(current_tool_calls)

        while len(current_tool_calls) <= index:
            current_tool_calls.append(
                {
                    "id": None,
                    "type": "function",
                    "function": {"name": None, "arguments": ""},
                }
            )

        current_call = current_tool_calls[index]

        if delta.id:
            current_call["id"] = delta.id

        if delta.function:
            if delta.function.name:
                current_call["function"]["name"] = delta.function.name

            if delta.function.arguments:
                # Accumulate arguments as they come in chunks
                current_call["function"]["arguments"] += delta.function.arguments
