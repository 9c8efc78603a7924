"""Local Tool Registry

This module provides a lightweight registry for the tools the assistant can call:
- Holds tool specs (name, description, JSON schema, approval flag, handler)
- Emits OpenAI-compatible tool definitions on demand (minimal wrapper)
- Calls tools with raw parameters, wrapping every failure in ToolExecutionError

Design goals:
- No schema conversion beyond the minimal OpenAI wrapper
- Handlers validate their own arguments (keyword signature)
- Approval gating is declared on the ToolSpec, never probed at runtime
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from src.chat.errors import ChatError, ToolExecutionError
from src.chat.events import NoteEvent, ToolEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ToolContext:
    """What a tool may see of the session it runs in."""

    events: Sequence[NoteEvent | ToolEvent] = ()
    clock: Callable[[], datetime] = _utcnow

    def timestamp(self) -> str:
        return self.clock().isoformat()


@dataclass(frozen=True)
class ToolSpec:
    """A named capability with a declared input schema."""

    name: str
    description: str
    handler: Callable[..., Any]
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    requires_approval: bool = False


class ToolRegistry:
    """
    Registry of local tools keyed by name.

    Key characteristics:
    - Lean: parameters are plain JSON schema dicts, sent to the model as-is
    - Minimal OpenAI wrapper: {"type": "function", "function": {name, description,
      parameters}}
    - Profiles get a restricted view through subset()
    """

    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._tool_registry: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tool_registry:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tool_registry[spec.name] = spec
        logger.debug("Registered tool '%s' (approval=%s)", spec.name, spec.requires_approval)

    def subset(self, names: Iterable[str]) -> ToolRegistry:
        """Registry restricted to ``names``; unknown names raise KeyError."""
        return ToolRegistry(self._tool_registry[name] for name in names)

    def __contains__(self, name: object) -> bool:
        return name in self._tool_registry

    def __len__(self) -> int:
        return len(self._tool_registry)

    @property
    def names(self) -> list[str]:
        return list(self._tool_registry.keys())

    def get_tool_info(self, tool_name: str) -> ToolSpec:
        spec = self._tool_registry.get(tool_name)
        if spec is None:
            raise ToolExecutionError(tool_name, f"Tool '{tool_name}' not found")
        return spec

    def requires_approval(self, tool_name: str) -> bool:
        spec = self._tool_registry.get(tool_name)
        return bool(spec and spec.requires_approval)

    def _to_openai_tool(self, spec: ToolSpec) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.parameters,
            },
        }

    def get_openai_tools(self) -> list[dict[str, Any]]:
        """Build the OpenAI tools list on demand from the current registry."""
        return [self._to_openai_tool(spec) for spec in self._tool_registry.values()]

    def make_context(self, events: Sequence[NoteEvent | ToolEvent] = ()) -> ToolContext:
        return ToolContext(events=events)

    async def call_tool(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        context: ToolContext | None = None,
    ) -> Any:
        """
        Call a tool with raw parameters and return its JSON-ready output.

        Raises:
            ToolExecutionError: unknown tool, bad arguments or handler failure
        """
        spec = self.get_tool_info(tool_name)
        context = context or ToolContext()

        try:
            result = spec.handler(context, **parameters)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except TypeError as e:
            raise ToolExecutionError(tool_name, f"Invalid arguments for {tool_name}: {e}", e) from e
        except ChatError as e:
            raise ToolExecutionError(tool_name, e.message, e) from e
        except Exception as e:
            raise ToolExecutionError(tool_name, f"Tool execution failed: {e!s}", e) from e

        if isinstance(result, BaseModel):
            to_output = getattr(result, "to_output", None)
            return to_output() if callable(to_output) else result.model_dump(by_alias=True, mode="json")
        return result
