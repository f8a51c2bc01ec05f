"""Streaming message reducer.

Folds protocol events into a ``DisplayState``. ``reduce_event`` is pure:
it returns only the fields that change (or None when nothing does) and
``apply_update`` produces the next state.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any

from .protocol import (
    AssistantMessage,
    BlockStart,
    BlockStop,
    FinalResult,
    ProtocolEvent,
    TextDelta,
    ThinkingDelta,
    ToolProgress,
    ToolResult,
    ToolResults,
)


@dataclass(frozen=True)
class ToolActivity:
    """One tool call seen in the stream."""
    tool_use_id: str
    tool_name: str
    status: str = "running"  # running | completed | failed


@dataclass(frozen=True)
class DisplayState:
    """What a renderer needs to draw the current turn."""
    status_line: str | None = None
    answer_text: str = ""
    streaming: bool = False
    tool_activity: tuple[ToolActivity, ...] = ()
    thinking: bool = False


def _format_elapsed(seconds: float) -> str:
    # Half rounds up: 2.5 -> "3s".
    return f"{int(math.floor(seconds + 0.5))}s"


def _complete_activity(
    activity: tuple[ToolActivity, ...], results: tuple[ToolResult, ...],
) -> tuple[ToolActivity, ...] | None:
    outcome = {r.tool_use_id: "failed" if r.is_error else "completed" for r in results}
    changed = False
    updated = []
    for entry in activity:
        status = outcome.get(entry.tool_use_id)
        if status is not None and entry.status == "running":
            entry = replace(entry, status=status)
            changed = True
        updated.append(entry)
    return tuple(updated) if changed else None


def reduce_event(event: ProtocolEvent, state: DisplayState) -> dict[str, Any] | None:
    """Return the DisplayState fields changed by *event*, or None."""
    if isinstance(event, ToolProgress):
        return {"status_line": f"{event.tool_name} {_format_elapsed(event.elapsed_seconds)}"}

    if isinstance(event, BlockStart):
        if not event.tool_name:
            return None
        update: dict[str, Any] = {"status_line": event.tool_name}
        if event.tool_use_id:
            update["tool_activity"] = state.tool_activity + (
                ToolActivity(tool_use_id=event.tool_use_id, tool_name=event.tool_name),
            )
        return update

    if isinstance(event, TextDelta):
        return {"answer_text": state.answer_text + event.text, "streaming": True}

    if isinstance(event, ThinkingDelta):
        if state.thinking:
            return None
        return {"thinking": True}

    if isinstance(event, BlockStop):
        if state.thinking:
            return {"thinking": False}
        return None

    if isinstance(event, AssistantMessage):
        tool_uses = event.tool_uses
        if not tool_uses:
            return None
        added = tuple(
            ToolActivity(tool_use_id=b.tool_use_id, tool_name=b.name)
            for b in tool_uses
        )
        return {
            "tool_activity": state.tool_activity + added,
            "status_line": tool_uses[-1].name,
        }

    if isinstance(event, (ToolResult, ToolResults)):
        results = event.results if isinstance(event, ToolResults) else (event,)
        activity = _complete_activity(state.tool_activity, results)
        if activity is None:
            return None
        return {"tool_activity": activity}

    if isinstance(event, FinalResult):
        return {
            "status_line": None,
            "streaming": False,
            "answer_text": event.result,
        }

    # SessionInit, UnknownEvent
    return None


def apply_update(state: DisplayState, update: dict[str, Any] | None) -> DisplayState:
    """Merge a reducer update into a new DisplayState."""
    if not update:
        return state
    return replace(state, **update)
