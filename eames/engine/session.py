"""Session state: conversation history, usage counters, and permission mode.

One SessionState is shared across turns. A turn claims ``lock`` for its
whole duration so two orchestrator runs never mutate the same session.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .models import PermissionMode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return _utcnow()
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass
class TokenUsage:
    """Token counts reported for one reasoning-engine result."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    cost_usd: float | None = None

    @classmethod
    def from_sdk(cls, usage: dict[str, Any] | None, cost_usd: float | None = None) -> TokenUsage:
        usage = usage or {}
        return cls(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            cache_creation_input_tokens=int(usage.get("cache_creation_input_tokens") or 0),
            cache_read_input_tokens=int(usage.get("cache_read_input_tokens") or 0),
            cost_usd=cost_usd,
        )

    @property
    def context_tokens(self) -> int:
        """Prompt size of the request, cached or not."""
        return (
            self.input_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )


@dataclass
class UsageTotals:
    """Cumulative token and cost counters."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    cost_usd: float = 0.0
    requests: int = 0

    def add(self, usage: TokenUsage, cost_usd: float = 0.0) -> None:
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.cache_creation_input_tokens += usage.cache_creation_input_tokens
        self.cache_read_input_tokens += usage.cache_read_input_tokens
        self.cost_usd += cost_usd
        self.requests += 1

    def merge(self, other: UsageTotals) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_input_tokens += other.cache_creation_input_tokens
        self.cache_read_input_tokens += other.cache_read_input_tokens
        self.cost_usd += other.cost_usd
        self.requests += other.requests

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_creation_input_tokens": self.cache_creation_input_tokens,
            "cache_read_input_tokens": self.cache_read_input_tokens,
            "cost_usd": self.cost_usd,
            "requests": self.requests,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UsageTotals:
        data = data or {}
        return cls(**{
            k: v for k, v in data.items() if k in cls.__dataclass_fields__
        })


@dataclass
class ConversationTurn:
    """One history entry: a user query or an assistant answer."""
    role: str  # "user" | "assistant"
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationTurn:
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


@dataclass
class SessionState:
    """Cross-turn bookkeeping for one interactive session."""

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    history: list[ConversationTurn] = field(default_factory=list)
    usage: UsageTotals = field(default_factory=UsageTotals)
    permission_mode: PermissionMode = PermissionMode.PROMPT
    model: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    # Prompt size of the latest reasoning request.
    context_tokens: int = 0
    lock: asyncio.Lock = field(
        default_factory=asyncio.Lock, repr=False, compare=False,
    )

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def add_turn(self, role: str, content: str) -> ConversationTurn:
        turn = ConversationTurn(role=role, content=content)
        self.history.append(turn)
        return turn

    def recent_history(self, limit: int = 10) -> list[ConversationTurn]:
        return self.history[-limit:] if limit > 0 else []

    def render_history(self, limit: int = 10) -> str:
        """Prior turns as plain text for reasoning-engine prompts."""
        lines = []
        for turn in self.recent_history(limit):
            lines.append(f"{turn.role.upper()}: {turn.content}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "history": [t.to_dict() for t in self.history],
            "usage": self.usage.to_dict(),
            "permission_mode": self.permission_mode.value,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "context_tokens": self.context_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        mode = data.get("permission_mode") or PermissionMode.PROMPT.value
        try:
            permission_mode = PermissionMode(mode)
        except ValueError:
            permission_mode = PermissionMode.PROMPT
        return cls(
            session_id=str(data.get("session_id") or uuid.uuid4()),
            history=[ConversationTurn.from_dict(t) for t in data.get("history", [])],
            usage=UsageTotals.from_dict(data.get("usage")),
            permission_mode=permission_mode,
            model=data.get("model"),
            created_at=_parse_timestamp(data.get("created_at")),
            context_tokens=int(data.get("context_tokens") or 0),
        )
