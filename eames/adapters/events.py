"""Lifecycle events emitted by the phase orchestrator.

Each event is a typed dataclass. ``event_to_dict`` flattens one into a
plain dict for the debug log.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class OrchestratorEvent:
    """Base lifecycle event."""
    event_type: str = ""
    session_id: str | None = None


@dataclass
class TurnStarted(OrchestratorEvent):
    event_type: str = "turn_started"
    query: str = ""


@dataclass
class TurnFinished(OrchestratorEvent):
    event_type: str = "turn_finished"
    phase: str = ""
    success: bool = True
    error: str | None = None
    failed_phase: str | None = None
    duration_seconds: float = 0.0


@dataclass
class PhaseStarted(OrchestratorEvent):
    event_type: str = "phase_started"
    phase: str = ""


@dataclass
class PhaseCompleted(OrchestratorEvent):
    event_type: str = "phase_completed"
    phase: str = ""


@dataclass
class PlanCreated(OrchestratorEvent):
    event_type: str = "plan_created"
    plan_id: str = ""
    task_count: int = 0
    cycle: int = 0


@dataclass
class ProgressMessage(OrchestratorEvent):
    event_type: str = "progress_message"
    text: str = ""


@dataclass
class AnswerChunk(OrchestratorEvent):
    event_type: str = "answer_chunk"
    text: str = ""


@dataclass
class PermissionRequested(OrchestratorEvent):
    event_type: str = "permission_requested"
    request_id: str = ""
    tool_name: str = ""
    description: str = ""
    side_effect: str = ""
    preview: str | None = None


@dataclass
class ClarificationRequested(OrchestratorEvent):
    event_type: str = "clarification_requested"
    question: str = ""
    index: int = 0
    total: int = 0


@dataclass
class TaskStatusChanged(OrchestratorEvent):
    event_type: str = "task_status_changed"
    task_id: str = ""
    description: str = ""
    capability: str = ""
    status: str = ""


@dataclass
class DisplayStateChanged(OrchestratorEvent):
    event_type: str = "display_state_changed"
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReflectionCompleted(OrchestratorEvent):
    event_type: str = "reflection_completed"
    verdict: str = ""
    rationale: str = ""
    cycle: int = 0


def event_to_dict(event: OrchestratorEvent) -> dict[str, Any]:
    """Flatten an event into a dict keyed by "event" instead of "event_type"."""
    d: dict[str, Any] = {}
    for name in event.__dataclass_fields__:
        value = getattr(event, name)
        if value is not None:
            d[name] = value
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d
