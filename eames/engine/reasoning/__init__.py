"""Reasoning engines used by the phase orchestrator."""
from .base import ReasoningEngine

__all__ = ["ReasoningEngine", "ClaudeReasoningEngine"]


def __getattr__(name: str):
    if name == "ClaudeReasoningEngine":
        from .claude_engine import ClaudeReasoningEngine
        return ClaudeReasoningEngine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
