"""Abstract base for reasoning engines.

The orchestrator calls understand(), plan(), and reflect() for structured
decisions and answer() for the streamed synthesis. Every call accepts an
``on_event`` sink; implementations forward each protocol event they see
(tool progress, usage-bearing results) so it passes through the reducer.
"""
from __future__ import annotations

import abc
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from ..errors import ReasoningEngineError
from ..models import (
    Plan,
    Query,
    ReflectionResult,
    Task,
    TaskResult,
    Understanding,
    Verdict,
)
from ..protocol import ProtocolEvent
from ..session import SessionState

logger = logging.getLogger(__name__)

EventSink = Callable[[ProtocolEvent], Awaitable[None]]


class ReasoningEngine(abc.ABC):
    """Abstract reasoning-engine interface."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short engine name (e.g. 'claude')."""

    @abc.abstractmethod
    async def understand(
        self,
        query: Query,
        session: SessionState,
        *,
        on_event: EventSink | None = None,
    ) -> Understanding:
        """Classify the query's clarity and extract its goal."""

    @abc.abstractmethod
    async def plan(
        self,
        query: Query,
        understanding: Understanding,
        capabilities: list[dict[str, Any]],
        *,
        guidance: str = "",
        previous_results: list[TaskResult] | None = None,
        on_event: EventSink | None = None,
    ) -> Plan:
        """Produce a plan using only the listed capabilities."""

    @abc.abstractmethod
    async def reflect(
        self,
        query: Query,
        plan: Plan,
        results: list[TaskResult],
        *,
        on_event: EventSink | None = None,
    ) -> ReflectionResult:
        """Judge whether the results answer the query."""

    @abc.abstractmethod
    def answer(
        self,
        query: Query,
        understanding: Understanding,
        results: list[TaskResult],
        session: SessionState,
    ) -> AsyncIterator[ProtocolEvent]:
        """Stream the final synthesis as protocol events.

        The stream should end with a FinalResult carrying the full answer.
        """


# ── Response parsing shared by engines ──────────────────────────────


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def understanding_from_dict(data: dict[str, Any], query: Query) -> Understanding:
    open_questions = _str_list(data.get("open_questions"))
    is_clear = data.get("is_clear")
    if not isinstance(is_clear, bool):
        is_clear = not open_questions
    return Understanding(
        goal=str(data.get("goal") or query.text),
        is_clear=is_clear,
        open_questions=open_questions,
        intent=str(data.get("intent") or ""),
        entities=_str_list(data.get("entities")),
    )


def plan_from_dict(data: dict[str, Any]) -> Plan:
    """Build a Plan from ``{"rationale": str, "tasks": [...]}``.

    Task ids chosen by the engine are kept so dependency edges resolve.
    Raises ReasoningEngineError when the shape is wrong; dependency
    problems are left to Plan.validate().
    """
    raw_tasks = data.get("tasks")
    if not isinstance(raw_tasks, list):
        raise ReasoningEngineError("plan", "response has no 'tasks' list")
    tasks: list[Task] = []
    for index, raw in enumerate(raw_tasks):
        if not isinstance(raw, dict) or not raw.get("capability"):
            raise ReasoningEngineError(
                "plan", f"task #{index + 1} has no capability",
            )
        arguments = raw.get("arguments")
        task_kwargs: dict[str, Any] = {
            "description": str(raw.get("description") or raw["capability"]),
            "capability": str(raw["capability"]),
            "arguments": arguments if isinstance(arguments, dict) else {},
            "depends_on": _str_list(raw.get("depends_on")),
        }
        if raw.get("id") is not None:
            task_kwargs["task_id"] = str(raw["id"])
        tasks.append(Task(**task_kwargs))
    return Plan(tasks=tasks, rationale=str(data.get("rationale") or ""))


def reflection_from_dict(data: dict[str, Any]) -> ReflectionResult:
    raw_verdict = str(data.get("verdict") or "").lower()
    try:
        verdict = Verdict(raw_verdict)
    except ValueError:
        raise ReasoningEngineError(
            "reflect", f"unknown verdict {raw_verdict!r}",
        ) from None
    question = data.get("proceed_question")
    return ReflectionResult(
        verdict=verdict,
        rationale=str(data.get("rationale") or ""),
        retry_task_ids=_str_list(data.get("retry_task_ids")),
        guidance=str(data.get("guidance") or ""),
        proceed_question=str(question) if question else None,
    )
