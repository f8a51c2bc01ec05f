"""Claude Agent SDK reasoning engine.

Wraps claude_agent_sdk.query(). Structured phases ask for a JSON object
and parse the final result text; answer() streams partial messages so
the reducer sees text deltas as they arrive.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator
from typing import Any

from ..errors import ReasoningEngineError
from ..models import Plan, Query, ReflectionResult, TaskResult, Understanding
from ..protocol import FinalResult, ProtocolEvent, parse_event
from ..session import SessionState
from . import prompts
from .base import (
    EventSink,
    ReasoningEngine,
    plan_from_dict,
    reflection_from_dict,
    understanding_from_dict,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str, operation: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model response."""
    candidates = [m.group(1).strip() for m in _FENCE_RE.finditer(text)]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise ReasoningEngineError(operation, "response did not contain a JSON object")


def _block_to_dict(block: Any) -> dict[str, Any]:
    kind = type(block).__name__
    if kind == "TextBlock":
        return {"type": "text", "text": block.text}
    if kind == "ThinkingBlock":
        return {"type": "thinking", "thinking": block.thinking}
    if kind == "ToolUseBlock":
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": getattr(block, "input", {}) or {},
        }
    if kind == "ToolResultBlock":
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": getattr(block, "content", None),
            "is_error": bool(getattr(block, "is_error", False)),
        }
    if isinstance(block, dict):
        return block
    return {"type": kind}


def sdk_message_to_dict(message: Any) -> dict[str, Any]:
    """Convert an SDK message object into the protocol's wire dict."""
    if isinstance(message, dict):
        return message
    kind = type(message).__name__
    if kind == "SystemMessage":
        data = getattr(message, "data", None) or {}
        return {
            "type": "system",
            "subtype": getattr(message, "subtype", ""),
            "session_id": data.get("session_id"),
        }
    if kind == "StreamEvent":
        return {"type": "stream_event", "event": getattr(message, "event", {})}
    if kind == "AssistantMessage":
        return {
            "type": "assistant",
            "message": {"content": [_block_to_dict(b) for b in message.content]},
        }
    if kind == "UserMessage":
        content = message.content
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        else:
            content = [_block_to_dict(b) for b in content]
        return {"type": "user", "message": {"content": content}}
    if kind == "ResultMessage":
        return {
            "type": "result",
            "subtype": getattr(message, "subtype", "success"),
            "result": getattr(message, "result", None),
            "is_error": bool(getattr(message, "is_error", False)),
            "usage": getattr(message, "usage", None) or {},
            "total_cost_usd": getattr(message, "total_cost_usd", None),
        }
    return {"type": kind}


class ClaudeReasoningEngine(ReasoningEngine):
    """Reasoning engine backed by the Claude Agent SDK.

    Auth follows the SDK: OAuth by default, ANTHROPIC_API_KEY if set.
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        cwd: str | None = None,
        history_turns: int = 10,
    ) -> None:
        self._model = model
        self._cwd = cwd
        self._history_turns = history_turns

    @property
    def name(self) -> str:
        return "claude"

    @property
    def model(self) -> str:
        return self._model

    def _options(self, *, partial: bool = False) -> Any:
        try:
            from claude_agent_sdk import ClaudeAgentOptions
        except ImportError as exc:
            raise ReasoningEngineError("setup", "claude_agent_sdk not installed") from exc
        kwargs: dict[str, Any] = {
            "system_prompt": prompts.system_prompt(),
            "allowed_tools": [],
            "permission_mode": "plan",
            "model": self._model,
        }
        if self._cwd:
            kwargs["cwd"] = self._cwd
        if partial:
            kwargs["include_partial_messages"] = True
        return ClaudeAgentOptions(**kwargs)

    async def _stream(self, prompt: str, *, partial: bool) -> AsyncIterator[ProtocolEvent]:
        try:
            from claude_agent_sdk import query
        except ImportError as exc:
            raise ReasoningEngineError("setup", "claude_agent_sdk not installed") from exc
        options = self._options(partial=partial)
        async for message in query(prompt=prompt, options=options):
            yield parse_event(sdk_message_to_dict(message))

    async def _ask_json(
        self,
        operation: str,
        prompt: str,
        on_event: EventSink | None,
    ) -> dict[str, Any]:
        final: FinalResult | None = None
        try:
            async for event in self._stream(prompt, partial=False):
                if on_event is not None:
                    await on_event(event)
                if isinstance(event, FinalResult):
                    final = event
        except ReasoningEngineError:
            raise
        except Exception as exc:
            raise ReasoningEngineError(operation, f"{type(exc).__name__}: {exc}") from exc

        if final is None:
            raise ReasoningEngineError(operation, "stream ended without a result")
        if final.is_error:
            detail = "; ".join(final.errors) or final.result or "error result"
            raise ReasoningEngineError(operation, detail)
        logger.debug("%s response: %s", operation, final.result[:500])
        return extract_json(final.result, operation)

    async def understand(
        self,
        query: Query,
        session: SessionState,
        *,
        on_event: EventSink | None = None,
    ) -> Understanding:
        prompt = prompts.understand_prompt(
            query, session.render_history(self._history_turns),
        )
        data = await self._ask_json("understand", prompt, on_event)
        return understanding_from_dict(data, query)

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
        prompt = prompts.plan_prompt(
            query, understanding, capabilities, guidance, previous_results,
        )
        data = await self._ask_json("plan", prompt, on_event)
        return plan_from_dict(data)

    async def reflect(
        self,
        query: Query,
        plan: Plan,
        results: list[TaskResult],
        *,
        on_event: EventSink | None = None,
    ) -> ReflectionResult:
        prompt = prompts.reflect_prompt(query, plan, results)
        data = await self._ask_json("reflect", prompt, on_event)
        return reflection_from_dict(data)

    async def answer(
        self,
        query: Query,
        understanding: Understanding,
        results: list[TaskResult],
        session: SessionState,
    ) -> AsyncIterator[ProtocolEvent]:
        prompt = prompts.answer_prompt(query, understanding, results)
        try:
            async for event in self._stream(prompt, partial=True):
                yield event
        except ReasoningEngineError:
            raise
        except Exception as exc:
            raise ReasoningEngineError("answer", f"{type(exc).__name__}: {exc}") from exc
