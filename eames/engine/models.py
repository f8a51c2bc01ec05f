"""Core data models for the agent engine.

All dataclasses, enums, and type aliases shared by the orchestrator,
executor, and permission gate. Single source of truth to avoid circular
imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Phase(str, Enum):
    """Orchestrator phases. See lifecycle.py for transition rules."""
    UNDERSTAND = "understand"
    CLARIFY = "clarify"
    PLAN = "plan"
    EXECUTE = "execute"
    REFLECT = "reflect"
    ANSWER = "answer"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.CANCELLED, Phase.FAILED)


class TaskStatus(str, Enum):
    """Task lifecycle states. Terminal once succeeded, failed, or skipped."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.SKIPPED)


class Verdict(str, Enum):
    """Reflection outcome driving the next orchestrator transition."""
    DONE = "done"
    RETRY = "retry"
    REPLAN = "replan"


class PermissionMode(str, Enum):
    """How side-effecting capabilities are authorized."""
    PROMPT = "prompt"
    AUTO_ACCEPT_EDITS = "auto-accept-edits"
    PLAN_ONLY = "plan-only"
    BYPASS = "bypass"


class SideEffect(str, Enum):
    """What a capability changes outside the process, if anything."""
    NONE = "none"
    FILE_WRITE = "file_write"
    COMMAND = "command"


class Resolution(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


def _make_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Query:
    """A raw user request for one turn."""
    text: str
    context: str | None = None

    def with_context(self, extra: str) -> Query:
        """Return a new query whose context has *extra* appended."""
        context = f"{self.context}\n\n{extra}" if self.context else extra
        return Query(text=self.text, context=context)

    def render(self) -> str:
        if not self.context:
            return self.text
        return f"{self.text}\n\n{self.context}"


@dataclass
class Understanding:
    """Classification of a query's clarity and intent."""
    goal: str
    is_clear: bool = True
    open_questions: list[str] = field(default_factory=list)
    intent: str = ""
    entities: list[str] = field(default_factory=list)

    @property
    def needs_clarification(self) -> bool:
        return not self.is_clear and bool(self.open_questions)


@dataclass
class Task:
    """One unit of work for the task executor.

    Status only moves forward (see lifecycle.TASK_TRANSITIONS). Retrying
    or replanning creates new Task instances via ``fresh_copy``.
    """
    description: str
    capability: str
    arguments: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    task_id: str = field(default_factory=_make_id)
    status: TaskStatus = TaskStatus.PENDING
    status_history: list[TaskStatus] = field(
        default_factory=lambda: [TaskStatus.PENDING]
    )

    def transition(self, target: TaskStatus) -> None:
        """Move to *target*. Raises ValueError on a backwards transition."""
        from .lifecycle import validate_task_transition

        validate_task_transition(self.status, target)
        self.status = target
        self.status_history.append(target)

    def fresh_copy(self, depends_on: list[str] | None = None) -> Task:
        """A new pending Task with the same id, work, and arguments."""
        return Task(
            description=self.description,
            capability=self.capability,
            arguments=dict(self.arguments),
            depends_on=list(self.depends_on if depends_on is None else depends_on),
            task_id=self.task_id,
        )


@dataclass
class Plan:
    """Ordered set of tasks with optional dependency edges."""
    tasks: list[Task] = field(default_factory=list)
    rationale: str = ""
    plan_id: str = field(default_factory=_make_id)

    def __len__(self) -> int:
        return len(self.tasks)

    def get(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def validate(self) -> None:
        """Raise InvalidPlanError for duplicate ids, unknown deps, or cycles."""
        from .errors import InvalidPlanError

        ids = [t.task_id for t in self.tasks]
        if len(ids) != len(set(ids)):
            raise InvalidPlanError("Plan contains duplicate task ids")
        known = set(ids)
        for task in self.tasks:
            missing = [d for d in task.depends_on if d not in known]
            if missing:
                raise InvalidPlanError(
                    f"Task {task.task_id} depends on unknown task(s): "
                    f"{', '.join(missing)}"
                )

        # Kahn's algorithm; anything left over sits on a cycle.
        remaining = {t.task_id: set(t.depends_on) for t in self.tasks}
        while remaining:
            ready = [tid for tid, deps in remaining.items() if not deps]
            if not ready:
                raise InvalidPlanError(
                    "Dependency cycle between tasks: "
                    + " -> ".join(sorted(remaining))
                )
            for tid in ready:
                del remaining[tid]
            for deps in remaining.values():
                deps.difference_update(ready)

    def subset(self, task_ids: list[str]) -> Plan:
        """A new plan with fresh copies of only *task_ids*.

        Dependency edges pointing outside the subset are dropped because
        those tasks already reached a terminal state in this plan.
        """
        wanted = [t for t in self.tasks if t.task_id in set(task_ids)]
        keep = {t.task_id for t in wanted}
        return Plan(
            tasks=[
                t.fresh_copy(depends_on=[d for d in t.depends_on if d in keep])
                for t in wanted
            ],
            rationale=f"Retry of {len(wanted)} task(s)",
        )


@dataclass
class TaskResult:
    """Outcome of executing one task."""
    task_id: str
    success: bool
    output: Any = None
    error: str | None = None
    error_kind: str | None = None
    duration_seconds: float = 0.0
    attempts: int = 0


@dataclass
class ReflectionResult:
    """Evaluation of a batch of task results."""
    verdict: Verdict
    rationale: str = ""
    retry_task_ids: list[str] = field(default_factory=list)
    guidance: str = ""
    proceed_question: str | None = None


@dataclass
class PermissionRequest:
    """A pending approval for a side-effecting action."""
    tool_name: str
    description: str
    side_effect: SideEffect = SideEffect.COMMAND
    preview: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=_make_id)
    resolution: Resolution = Resolution.PENDING
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_resolved(self) -> bool:
        return self.resolution != Resolution.PENDING

    def resolve(self, approved: bool) -> bool:
        """Record the decision. Returns False if already resolved."""
        if self.is_resolved:
            return False
        self.resolution = Resolution.APPROVED if approved else Resolution.DENIED
        return True
