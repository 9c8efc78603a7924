#!/usr/bin/env python3
"""
Tests for the local tool registry, the documentation file server and the
simulated incident-response tools.
"""

import asyncio
from datetime import UTC, datetime

import pytest

from src.chat.errors import ToolExecutionError
from src.chat.events import project_events
from src.chat.parts import Approval, Message, ToolPart, ToolState
from src.chat.results import DynatraceSnapshot, parse_snapshot
from src.tools import FileNotFound, ToolContext, ToolRegistry, ToolSpec, build_default_registry
from src.tools.file_server import FILES, list_files, read_file
from src.tools.incident import current_phase

FIXED_CLOCK = datetime(2026, 10, 18, 3, 0, tzinfo=UTC)


def _context(*parts: ToolPart) -> ToolContext:
    events = project_events([Message(role="assistant", parts=list(parts))]) if parts else ()
    return ToolContext(events=events, clock=lambda: FIXED_CLOCK)


def _done(tool_name: str, output: dict, call_id: str) -> ToolPart:
    return ToolPart(tool_name=tool_name, tool_call_id=call_id, state=ToolState.OUTPUT_AVAILABLE, input={}, output=output)


# ==============================================================================
# FILE SERVER
# ==============================================================================


def test_list_files_catalogue():
    listing = list_files()

    paths = [f["path"] for f in listing["files"]]
    assert len(paths) == 6
    assert "/docs/development-workflow.md" in paths
    assert all(f["type"] == "file" for f in listing["files"])


def test_every_listed_file_is_readable():
    for info in FILES:
        result = read_file(info.path)
        assert result["fileContent"].startswith("# ")
        assert result["metadata"]["path"] == info.path
        assert result["metadata"]["lastModified"]


def test_unknown_file_is_not_found():
    with pytest.raises(FileNotFound) as exc_info:
        read_file("/docs/missing.md")

    assert exc_info.value.message == "File not found: /docs/missing.md"
    assert exc_info.value.status_code == 404


def test_paths_outside_the_catalogue_are_rejected():
    with pytest.raises(FileNotFound):
        read_file("/docs/../config.yaml")


# ==============================================================================
# REGISTRY
# ==============================================================================


def test_default_registry_and_approval_flags():
    registry = build_default_registry()

    assert registry.names == [
        "listFiles",
        "readFile",
        "getDynatraceSnapshot",
        "sendF5RedirectEmail",
        "pageHumanOnCall",
    ]
    assert registry.requires_approval("sendF5RedirectEmail")
    assert not registry.requires_approval("getDynatraceSnapshot")
    assert not registry.requires_approval("pageHumanOnCall")
    assert not registry.requires_approval("unknown")


def test_openai_tool_definitions():
    tools = build_default_registry().subset(["readFile"]).get_openai_tools()

    assert len(tools) == 1
    assert tools[0]["type"] == "function"
    assert tools[0]["function"]["name"] == "readFile"
    assert tools[0]["function"]["parameters"]["required"] == ["filePath"]


def test_duplicate_registration_is_rejected():
    spec = ToolSpec(name="echo", description="Echo", handler=lambda context, **kw: kw)
    registry = ToolRegistry([spec])

    with pytest.raises(ValueError):
        registry.register(spec)


def test_call_tool_sync_and_async_handlers():
    async def shout(context: ToolContext, text: str) -> dict:
        return {"text": text.upper()}

    registry = ToolRegistry(
        [
            ToolSpec(name="echo", description="Echo", handler=lambda context, text: {"text": text}),
            ToolSpec(name="shout", description="Shout", handler=shout),
        ]
    )

    assert asyncio.run(registry.call_tool("echo", {"text": "hi"})) == {"text": "hi"}
    assert asyncio.run(registry.call_tool("shout", {"text": "hi"})) == {"text": "HI"}


def test_call_tool_wraps_failures():
    registry = build_default_registry()

    with pytest.raises(ToolExecutionError, match="not found"):
        asyncio.run(registry.call_tool("deleteProduction", {}))
    with pytest.raises(ToolExecutionError, match="Invalid arguments for readFile"):
        asyncio.run(registry.call_tool("readFile", {"path": "/docs/resources.md"}))
    with pytest.raises(ToolExecutionError, match="File not found: /docs/nope.md"):
        asyncio.run(registry.call_tool("readFile", {"filePath": "/docs/nope.md"}))


def test_call_tool_unexpected_exception():
    def broken(context: ToolContext) -> None:
        raise RuntimeError("disk on fire")

    registry = ToolRegistry([ToolSpec(name="broken", description="Broken", handler=broken)])

    with pytest.raises(ToolExecutionError, match="Tool execution failed: disk on fire"):
        asyncio.run(registry.call_tool("broken", {}))


# ==============================================================================
# INCIDENT TOOLS
# ==============================================================================


def test_snapshot_starts_degraded():
    registry = build_default_registry()

    output = asyncio.run(registry.call_tool("getDynatraceSnapshot", {}, _context()))
    snapshot = parse_snapshot(output)

    assert isinstance(snapshot, DynatraceSnapshot)
    assert snapshot.phase == "degraded"
    assert snapshot.service == "checkout-api"
    assert output["at"] == FIXED_CLOCK.isoformat()
    assert output["schemaVersion"] == 1
    assert output["metrics"]["errorRatePct"] > 5


def test_incident_phase_progression():
    registry = build_default_registry()

    degraded = asyncio.run(registry.call_tool("getDynatraceSnapshot", {}, _context()))
    page = _done("pageHumanOnCall", {"pageId": "PG-1"}, "p1")
    email = ToolPart(
        tool_name="sendF5RedirectEmail",
        tool_call_id="e1",
        state=ToolState.OUTPUT_AVAILABLE,
        input={"reason": "shift"},
        output={"ticketId": "F5-1"},
        approval=Approval(id="appr-1", approved=True),
    )
    first = _done("getDynatraceSnapshot", degraded, "s1")

    assert current_phase(_context(first, page)) == "monitoring"
    assert current_phase(_context(first, page, email)) == "rerouted"

    rerouted = asyncio.run(registry.call_tool("getDynatraceSnapshot", {}, _context(first, email)))
    assert rerouted["phase"] == "rerouted"
    assert current_phase(_context(first, email, _done("getDynatraceSnapshot", rerouted, "s2"))) == "resolved"


def test_denied_email_does_not_reroute():
    denied = ToolPart(
        tool_name="sendF5RedirectEmail",
        tool_call_id="e1",
        state=ToolState.OUTPUT_ERROR,
        input={"reason": "shift"},
        error_text="Denied by human: not during peak",
        approval=Approval(id="appr-1", approved=False, reason="not during peak"),
    )

    assert current_phase(_context(denied)) == "degraded"


def test_redirect_email_and_page_receipts():
    registry = build_default_registry()

    receipt = asyncio.run(registry.call_tool("sendF5RedirectEmail", {"reason": "pool A failing"}, _context()))
    page = asyncio.run(registry.call_tool("pageHumanOnCall", {"summary": "checkout down"}, _context()))

    assert receipt["ticketId"].startswith("F5-")
    assert receipt["recipients"] == ["network-ops@company.example"]
    assert receipt["at"] == FIXED_CLOCK.isoformat()
    assert page["pageId"].startswith("PG-")
    assert page["severity"] == "high"
