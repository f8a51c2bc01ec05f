"""Token pricing and usage history.

Prices are USD per million tokens. Unknown models fall back to the
default row. History is kept in the settings store under ``cost_history``
as per-day and all-time totals.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from .session import TokenUsage, UsageTotals

if TYPE_CHECKING:
    from eames.shared.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)

PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4-20250514": (15.0, 75.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-3-5-haiku-20241022": (0.25, 1.25),
    "default": (3.0, 15.0),
}

HISTORY_KEY = "cost_history"
CONTEXT_WINDOW_TOKENS = 200_000


def get_pricing(model: str | None) -> tuple[float, float]:
    return PRICING.get(model or "", PRICING["default"])


def calculate_cost(usage: TokenUsage, model: str | None) -> float:
    """Estimated cost of *usage* on *model* (input and output tokens only)."""
    input_price, output_price = get_pricing(model)
    return (
        usage.input_tokens / 1_000_000 * input_price
        + usage.output_tokens / 1_000_000 * output_price
    )


def format_tokens(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.2f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return f"${cost:.4f}"
    return f"${cost:.2f}"


def usage_summary(totals: UsageTotals, context_tokens: int = 0) -> str:
    """One-line summary for a status bar.

    With *context_tokens* the share of the context window in use is
    appended, flagged once it crosses the warning threshold.
    """
    tokens = totals.input_tokens + totals.output_tokens
    summary = f"{format_tokens(tokens)} tokens · {format_cost(totals.cost_usd)}"
    if context_tokens:
        summary += f" · {context_usage_percent(context_tokens)}% context"
        if is_approaching_context_limit(context_tokens):
            summary += " (near limit)"
    return summary


def context_usage_percent(current_tokens: int, max_tokens: int = CONTEXT_WINDOW_TOKENS) -> int:
    return round(current_tokens / max_tokens * 100)


def is_approaching_context_limit(
    current_tokens: int, max_tokens: int = CONTEXT_WINDOW_TOKENS,
) -> bool:
    return context_usage_percent(current_tokens, max_tokens) >= 80


class UsageHistory:
    """Daily and all-time usage totals persisted in the settings store."""

    def __init__(self, store: SettingsStore) -> None:
        self._store = store

    def load(self) -> dict[str, Any]:
        data = self._store.get(HISTORY_KEY, {})
        if not isinstance(data, dict):
            data = {}
        data.setdefault("daily", {})
        data.setdefault("all_time", {})
        return data

    def record(self, totals: UsageTotals, day: date | None = None) -> None:
        """Add a session's totals to today's bucket and the all-time bucket."""
        if totals.requests == 0 and totals.total_tokens == 0:
            return
        history = self.load()
        key = (day or date.today()).isoformat()

        daily = UsageTotals.from_dict(history["daily"].get(key))
        daily.merge(totals)
        history["daily"][key] = daily.to_dict()

        all_time = UsageTotals.from_dict(history["all_time"])
        all_time.merge(totals)
        history["all_time"] = all_time.to_dict()

        if not self._store.set(HISTORY_KEY, history):
            logger.warning("Failed to record usage history")

    def day(self, day: date) -> UsageTotals:
        return UsageTotals.from_dict(self.load()["daily"].get(day.isoformat()))

    def all_time(self) -> UsageTotals:
        return UsageTotals.from_dict(self.load()["all_time"])
