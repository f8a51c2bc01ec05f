"""Phase and task state machines.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

Phase diagram:

    UNDERSTAND ──┬──> CLARIFY ──┬──> UNDERSTAND
                 │              └──> PLAN
                 └──> PLAN ──> EXECUTE ──> REFLECT ──┬──> ANSWER ──> DONE
                       ^          ^                  │
                       │          └──── retry ───────┤
                       └─────────────── replan ──────┘

    Any nonterminal phase ──> CANCELLED | FAILED

Task diagram:

    PENDING ──> RUNNING ──> SUCCEEDED | FAILED | SKIPPED
    PENDING ──> SKIPPED  (never dispatched)
"""
from __future__ import annotations

from .models import Phase, TaskStatus

_ABORT = {Phase.CANCELLED, Phase.FAILED}

PHASE_TRANSITIONS: dict[Phase, set[Phase]] = {
    Phase.UNDERSTAND: {Phase.CLARIFY, Phase.PLAN} | _ABORT,
    Phase.CLARIFY: {Phase.UNDERSTAND, Phase.PLAN} | _ABORT,
    Phase.PLAN: {Phase.EXECUTE} | _ABORT,
    Phase.EXECUTE: {Phase.REFLECT} | _ABORT,
    Phase.REFLECT: {Phase.ANSWER, Phase.EXECUTE, Phase.PLAN} | _ABORT,
    Phase.ANSWER: {Phase.DONE} | _ABORT,
    Phase.DONE: set(),
    Phase.CANCELLED: set(),
    Phase.FAILED: set(),
}

TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.SKIPPED},
    TaskStatus.RUNNING: {
        TaskStatus.SUCCEEDED,
        TaskStatus.FAILED,
        TaskStatus.SKIPPED,
    },
    TaskStatus.SUCCEEDED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.SKIPPED: set(),
}


def validate_phase_transition(current: Phase, target: Phase) -> None:
    """Validate a phase transition. Raises ValueError if invalid."""
    allowed = PHASE_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(p.value for p in allowed)) or "none (terminal)"
        raise ValueError(
            f"Invalid phase transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def validate_task_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Validate a task status transition. Raises ValueError if invalid."""
    allowed = TASK_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none (terminal)"
        raise ValueError(
            f"Invalid task transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
