"""
Incident Response Tools

Simulated telemetry, traffic-redirect and paging actions for the on-call demo.
Nothing here talks to a real system: the snapshot phase is derived from what
already happened in the session, so a scripted incident plays out the same way
every time.
"""

from __future__ import annotations

import logging
import uuid

from src.chat.events import (
    PAGER_TOOL,
    REDIRECT_EMAIL_TOOL,
    SNAPSHOT_TOOL,
    latest_snapshot_phase,
    tool_events,
)
from src.chat.parts import ToolState
from src.chat.results import (
    DynatraceSnapshot,
    HealthSummary,
    IncidentPhase,
    PageReceipt,
    RedirectEmailReceipt,
    SnapshotMetrics,
)

from .registry import ToolContext, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "checkout-api"
DEFAULT_RECIPIENTS = ["network-ops@company.example"]

# phase -> (error rate %, p95 latency ms, summary)
PHASE_PROFILES: dict[str, tuple[float, int, str]] = {
    "degraded": (18.4, 2450, "Elevated 5xx errors on the primary pool; p95 latency well above SLO."),
    "monitoring": (12.7, 1900, "Still degraded; a human responder has been paged and is investigating."),
    "rerouted": (1.1, 420, "Traffic shifted to the secondary pool; error rate dropping."),
    "resolved": (0.2, 180, "All health checks green; metrics back within SLO."),
}


def current_phase(context: ToolContext) -> IncidentPhase:
    """Phase the next snapshot reports, given what the session already did."""
    last = latest_snapshot_phase(context.events)
    if last in ("rerouted", "resolved"):
        return "resolved"

    emails = tool_events(context.events, REDIRECT_EMAIL_TOOL)
    if any(e.state is ToolState.OUTPUT_AVAILABLE for e in emails):
        return "rerouted"
    if tool_events(context.events, PAGER_TOOL):
        return "monitoring"
    return "degraded"


def get_dynatrace_snapshot(context: ToolContext, service: str = DEFAULT_SERVICE) -> DynatraceSnapshot:
    phase = current_phase(context)
    error_rate, p95, summary = PHASE_PROFILES[phase]
    logger.info("Snapshot for %s: phase=%s", service, phase)
    return DynatraceSnapshot(
        at=context.timestamp(),
        service=service,
        phase=phase,
        health=HealthSummary(summary=summary),
        metrics=SnapshotMetrics(error_rate_pct=error_rate, p95_latency_ms=p95),
    )


def send_f5_redirect_email(
    context: ToolContext,
    reason: str,
    to: list[str] | None = None,
) -> RedirectEmailReceipt:
    recipients = to or list(DEFAULT_RECIPIENTS)
    ticket_id = f"F5-{uuid.uuid4().hex[:8].upper()}"
    logger.info("F5 redirect email %s sent to %s: %s", ticket_id, ", ".join(recipients), reason)
    return RedirectEmailReceipt(at=context.timestamp(), ticket_id=ticket_id, recipients=recipients)


def page_human_on_call(context: ToolContext, summary: str, severity: str = "high") -> PageReceipt:
    page_id = f"PG-{uuid.uuid4().hex[:8].upper()}"
    logger.warning("Paged human on-call (%s, severity=%s): %s", page_id, severity, summary)
    return PageReceipt(at=context.timestamp(), page_id=page_id, severity=severity)


DYNATRACE_SNAPSHOT = ToolSpec(
    name=SNAPSHOT_TOOL,
    description=(
        "Fetch the current Dynatrace health snapshot for a service: incident phase, "
        "error rate and p95 latency. Call this first and again after every mitigation."
    ),
    handler=get_dynatrace_snapshot,
    parameters={
        "type": "object",
        "properties": {
            "service": {"type": "string", "description": f"Service name, defaults to '{DEFAULT_SERVICE}'"},
        },
        "required": [],
        "additionalProperties": False,
    },
)

F5_REDIRECT_EMAIL = ToolSpec(
    name=REDIRECT_EMAIL_TOOL,
    description=(
        "Email network operations asking them to redirect traffic on the F5 load balancer "
        "to the secondary pool. Has external side effects and requires human approval."
    ),
    handler=send_f5_redirect_email,
    requires_approval=True,
    parameters={
        "type": "object",
        "properties": {
            "reason": {"type": "string", "description": "Why the redirect is needed"},
            "to": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Recipient addresses; defaults to the network-ops list",
            },
        },
        "required": ["reason"],
        "additionalProperties": False,
    },
)

PAGE_HUMAN_ON_CALL = ToolSpec(
    name=PAGER_TOOL,
    description=(
        "Page the human on-call engineer with a short incident summary. Use when a mitigation "
        "is denied or does not improve the snapshot."
    ),
    handler=page_human_on_call,
    parameters={
        "type": "object",
        "properties": {
            "summary": {"type": "string", "description": "One-paragraph incident summary"},
            "severity": {"type": "string", "enum": ["low", "high", "critical"]},
        },
        "required": ["summary"],
        "additionalProperties": False,
    },
)
