"""
Versioned Tool Result Schemas

Structured outputs of the incident-response tools. Both the tools (producing)
and the status projection (consuming) go through these models, so a missing
field is a validation failure instead of a silent ``None``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

RESULT_SCHEMA_VERSION = 1

IncidentPhase = Literal["degraded", "monitoring", "rerouted", "resolved"]


class ToolResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    schema_version: int = RESULT_SCHEMA_VERSION
    at: str

    def to_output(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class HealthSummary(BaseModel):
    summary: str


class SnapshotMetrics(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error_rate_pct: float
    p95_latency_ms: int


class DynatraceSnapshot(ToolResult):
    service: str
    phase: IncidentPhase
    health: HealthSummary
    metrics: SnapshotMetrics


class RedirectEmailReceipt(ToolResult):
    ticket_id: str
    recipients: list[str]


class PageReceipt(ToolResult):
    page_id: str
    severity: str


def parse_snapshot(output: Any) -> DynatraceSnapshot | None:
    """Validate a snapshot tool output; ``None`` if it does not match the schema."""
    if not isinstance(output, dict):
        return None
    try:
        return DynatraceSnapshot.model_validate(output)
    except ValidationError:
        return None
