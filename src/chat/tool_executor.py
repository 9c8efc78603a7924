"""
Tool Execution Handler

Handles the tool side of the orchestration loop:
- Argument parsing for completed tool calls
- Approval gating for tools with external side effects
- Tool execution through the registry, captured on the tool part
- Step budget checks

Tool failures never abort the loop: they end the part in output-error and the
model sees the error text on its next step.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from src.chat import tool_state
from src.chat.errors import ToolExecutionError
from src.chat.logging_utils import (
    log_tool_approval_requested,
    log_tool_args_error,
    log_tool_arguments,
    log_tool_execution_error,
    log_tool_execution_start,
    log_tool_execution_success,
    log_tool_results,
)
from src.chat.parts import ToolPart, ToolState

if TYPE_CHECKING:
    from src.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

DENIED_PREFIX = "Denied by human"


class ToolExecutor:
    """Executes tool parts and decides which ones need a human first."""

    def __init__(self, tools: ToolRegistry, chat_conf: dict[str, Any]):
        self.tools = tools
        self.chat_conf = chat_conf

    @staticmethod
    def parse_arguments(tool_name: str, raw: str) -> dict[str, Any]:
        """
        Parse the JSON arguments of a completed call.

        Raises:
            ValueError: if the arguments are not a JSON object
        """
        try:
            args = json.loads(raw or "{}")
        except json.JSONDecodeError as e:
            log_tool_args_error(tool_name, e)
            raise ValueError(f"Invalid JSON arguments: {e}") from e
        if not isinstance(args, dict):
            raise ValueError("Invalid JSON arguments: expected an object")
        return args

    def requires_approval(self, tool_name: str) -> bool:
        return self.tools.requires_approval(tool_name)

    def gate(self, part: ToolPart) -> ToolPart:
        """Move an input-available part to approval-requested with a fresh approval id."""
        approval_id = f"approval-{uuid.uuid4().hex[:12]}"
        gated = tool_state.request_approval(part, approval_id)
        log_tool_approval_requested(part.tool_name, approval_id)
        return gated

    def deny(self, part: ToolPart) -> ToolPart:
        """Close a denied part; execution is suppressed."""
        reason = part.approval.reason if part.approval and part.approval.reason else "no reason given"
        logger.info("← Tools[%s]: execution suppressed, approval denied (%s)", part.tool_name, reason)
        return tool_state.fail(part, f"{DENIED_PREFIX}: {reason}")

    async def execute(
        self,
        part: ToolPart,
        context: ToolContext,
        call_index: int = 0,
        total_calls: int = 1,
    ) -> ToolPart:
        """
        Run the tool for ``part`` and return the part in its terminal state.

        ``part`` must be input-available or approved approval-responded.
        """
        if part.state is ToolState.APPROVAL_RESPONDED and not (part.approval and part.approval.approved):
            return self.deny(part)

        args: dict[str, Any] = part.input if isinstance(part.input, dict) else {}
        log_config = self.chat_conf.get("logging", {})
        log_tool_arguments(
            part.tool_name,
            args,
            f"call {call_index + 1}/{total_calls}",
            log_config.get("tool_arguments_truncate", 500),
        )
        log_tool_execution_start(part.tool_name, call_index, total_calls)

        try:
            output = await self.tools.call_tool(part.tool_name, args, context)
        except ToolExecutionError as e:
            log_tool_execution_error(part.tool_name, e.message)
            return tool_state.fail(part, e.message)

        log_tool_execution_success(part.tool_name, len(json.dumps(output, default=str)))
        log_tool_results(part.tool_name, output, "result", log_config.get("tool_results_truncate", 200))
        return tool_state.complete(part, output)

    def check_step_limit(self, steps: int, max_steps: int) -> bool:
        """
        Check if the step budget has been used up.

        Returns:
            True when no further model step may run
        """
        if steps >= max_steps:
            logger.info("Step budget (%d) exhausted, stopping run", max_steps)
            return True
        return False
