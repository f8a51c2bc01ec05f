"""Prompt templates for the Claude reasoning engine.

Each structured phase asks for a single JSON object. Only the response
shape matters to the engine; wording can change freely.
"""
from __future__ import annotations

import json
from datetime import date
from typing import Any

from ..models import Plan, Query, TaskResult, Understanding

SYSTEM_PROMPT = (
    "You are Eames, an autonomous product design agent. You research, "
    "plan, and build. Today is {today}."
)

UNDERSTAND_PROMPT = """\
Classify the user's request.

Conversation so far:
{history}

Request:
{query}

Respond with only a JSON object:
{{"goal": str, "intent": str, "entities": [str], "is_clear": bool,
  "open_questions": [str]}}
Set is_clear to false only when the request cannot be acted on without
answers to open_questions."""

PLAN_PROMPT = """\
Goal: {goal}

Request:
{query}

Available capabilities:
{capabilities}
{guidance}{previous}
Break the goal into tasks using only the capabilities above.
Respond with only a JSON object:
{{"rationale": str, "tasks": [{{"id": str, "description": str,
  "capability": str, "arguments": object, "depends_on": [str]}}]}}"""

REFLECT_PROMPT = """\
Request:
{query}

Plan rationale: {rationale}

Task results:
{results}

Decide whether the results are enough to answer the request.
Respond with only a JSON object:
{{"verdict": "done" | "retry" | "replan", "rationale": str,
  "retry_task_ids": [str], "guidance": str, "proceed_question": str | null}}
Use "retry" for tasks that failed transiently, "replan" when the approach
itself was wrong (put the new direction in guidance)."""

ANSWER_PROMPT = """\
Request:
{query}

Goal: {goal}

Task results:
{results}

Write the final answer for the user."""


def system_prompt() -> str:
    return SYSTEM_PROMPT.format(today=date.today().strftime("%A, %B %d, %Y"))


def _render_results(plan: Plan | None, results: list[TaskResult]) -> str:
    if not results:
        return "(no results)"
    lines = []
    for result in results:
        task = plan.get(result.task_id) if plan is not None else None
        label = task.description if task is not None else result.task_id
        if result.success:
            output = result.output if isinstance(result.output, str) else json.dumps(
                result.output, default=str,
            )
            lines.append(f"- [{result.task_id}] {label}: OK\n  {output}")
        else:
            lines.append(
                f"- [{result.task_id}] {label}: FAILED ({result.error_kind}) {result.error}"
            )
    return "\n".join(lines)


def understand_prompt(query: Query, history: str) -> str:
    return UNDERSTAND_PROMPT.format(
        history=history or "(none)", query=query.render(),
    )


def plan_prompt(
    query: Query,
    understanding: Understanding,
    capabilities: list[dict[str, Any]],
    guidance: str = "",
    previous_results: list[TaskResult] | None = None,
) -> str:
    return PLAN_PROMPT.format(
        goal=understanding.goal,
        query=query.render(),
        capabilities=json.dumps(capabilities, indent=2),
        guidance=f"\nGuidance from the last review: {guidance}\n" if guidance else "",
        previous=(
            "\nResults so far:\n" + _render_results(None, previous_results) + "\n"
            if previous_results else ""
        ),
    )


def reflect_prompt(query: Query, plan: Plan, results: list[TaskResult]) -> str:
    return REFLECT_PROMPT.format(
        query=query.render(),
        rationale=plan.rationale or "(none)",
        results=_render_results(plan, results),
    )


def answer_prompt(
    query: Query,
    understanding: Understanding,
    results: list[TaskResult],
) -> str:
    return ANSWER_PROMPT.format(
        query=query.render(),
        goal=understanding.goal,
        results=_render_results(None, results),
    )
