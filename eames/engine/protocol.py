"""Reasoning-engine protocol events.

The agent SDK emits loosely-typed dicts. ``parse_event`` turns each one
into a member of a closed set of dataclasses so the reducer never has to
look up optional keys. Anything unrecognised becomes ``UnknownEvent``.

Recognised wire shapes:

    {"type": "system", "subtype": "init", ...}
    {"type": "tool_progress", "tool_name": str, "elapsed_time_seconds": num}
    {"type": "stream_event", "event": {"type": "content_block_start",
        "content_block": {"type": "tool_use" | "text" | "thinking", "name": str}}}
    {"type": "stream_event", "event": {"type": "content_block_delta",
        "delta": {"type": "text_delta", "text": str}
               | {"type": "thinking_delta", "thinking": str}}}
    {"type": "stream_event", "event": {"type": "content_block_stop"}}
    {"type": "assistant", "message": {"content": [block, ...]}}
    {"type": "user", "message": {"content": [{"type": "tool_result", ...}, ...]}}
    {"type": "tool_result", "tool_use_id": str, "content": ..., "is_error": bool}
    {"type": "result", "subtype": str, "result": str, "usage": dict,
        "total_cost_usd": num, "errors": list}
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class SessionInit:
    session_id: str | None = None


@dataclass(frozen=True)
class BlockStart:
    block_type: str
    tool_name: str | None = None
    # Set for in-process tool calls, which have no assistant message.
    tool_use_id: str | None = None


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True)
class BlockStop:
    pass


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssistantMessage:
    blocks: tuple[TextBlock | ToolUseBlock, ...] = ()

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class ToolResults:
    """Every tool result carried by one user message."""
    results: tuple[ToolResult, ...] = ()


@dataclass(frozen=True)
class ToolProgress:
    tool_name: str
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class FinalResult:
    result: str = ""
    is_error: bool = False
    usage: dict[str, Any] = field(default_factory=dict)
    cost_usd: float | None = None
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class UnknownEvent:
    raw_type: str = ""


ProtocolEvent = Union[
    SessionInit,
    BlockStart,
    TextDelta,
    ThinkingDelta,
    BlockStop,
    AssistantMessage,
    ToolResult,
    ToolResults,
    ToolProgress,
    FinalResult,
    UnknownEvent,
]


def _content_to_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)


def _parse_block(block: Any) -> TextBlock | ToolUseBlock | None:
    if not isinstance(block, dict):
        return None
    block_type = block.get("type")
    if block_type == "text":
        return TextBlock(text=str(block.get("text", "")))
    if block_type == "tool_use":
        tool_input = block.get("input")
        return ToolUseBlock(
            tool_use_id=str(block.get("id", "")),
            name=str(block.get("name", "")),
            input=tool_input if isinstance(tool_input, dict) else {},
        )
    return None


def _parse_stream_event(inner: Any) -> ProtocolEvent:
    if not isinstance(inner, dict):
        return UnknownEvent(raw_type="stream_event")
    inner_type = inner.get("type", "")
    if inner_type == "content_block_start":
        block = inner.get("content_block") or {}
        block_type = str(block.get("type", ""))
        tool_name = block.get("name") if block_type in ("tool_use", "server_tool_use") else None
        return BlockStart(block_type=block_type, tool_name=tool_name)
    if inner_type == "content_block_delta":
        delta = inner.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return TextDelta(text=str(delta.get("text", "")))
        if delta_type == "thinking_delta":
            return ThinkingDelta(text=str(delta.get("thinking", "")))
        return UnknownEvent(raw_type=f"stream_event.{delta_type}")
    if inner_type == "content_block_stop":
        return BlockStop()
    return UnknownEvent(raw_type=f"stream_event.{inner_type}")


def parse_event(raw: dict[str, Any]) -> ProtocolEvent:
    """Convert one wire dict into a typed protocol event."""
    if not isinstance(raw, dict):
        return UnknownEvent()
    event_type = raw.get("type", "")

    if event_type == "system":
        if raw.get("subtype") == "init":
            return SessionInit(session_id=raw.get("session_id"))
        return UnknownEvent(raw_type="system")

    if event_type == "tool_progress":
        elapsed = raw.get("elapsed_time_seconds", 0) or 0
        return ToolProgress(
            tool_name=str(raw.get("tool_name", "")),
            elapsed_seconds=float(elapsed),
        )

    if event_type == "stream_event":
        return _parse_stream_event(raw.get("event"))

    if event_type == "assistant":
        message = raw.get("message") or {}
        blocks = [_parse_block(b) for b in message.get("content") or []]
        return AssistantMessage(blocks=tuple(b for b in blocks if b is not None))

    if event_type == "user":
        # Parallel tool calls come back as several results in one message.
        message = raw.get("message") or {}
        results = tuple(
            parse_event(block)
            for block in message.get("content") or []
            if isinstance(block, dict) and block.get("type") == "tool_result"
        )
        if not results:
            return UnknownEvent(raw_type="user")
        return ToolResults(results=results)

    if event_type == "tool_result":
        return ToolResult(
            tool_use_id=str(raw.get("tool_use_id", "")),
            content=_content_to_text(raw.get("content")),
            is_error=bool(raw.get("is_error", False)),
        )

    if event_type == "result":
        subtype = raw.get("subtype", "success")
        cost = raw.get("total_cost_usd")
        return FinalResult(
            result=str(raw.get("result") or ""),
            is_error=bool(raw.get("is_error")) or subtype != "success",
            usage=dict(raw.get("usage") or {}),
            cost_usd=float(cost) if cost is not None else None,
            errors=tuple(str(e) for e in raw.get("errors") or ()),
        )

    return UnknownEvent(raw_type=str(event_type))
