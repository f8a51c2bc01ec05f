"""Exception hierarchy for the agent engine.

Task-level errors (capability and permission failures) are absorbed by the
task executor into TaskResults. Orchestrator-level errors end a turn in the
FAILED phase. TurnCancelled marks cooperative cancellation and is not a
failure.
"""
from __future__ import annotations


class OrchestrationError(Exception):
    """Base exception for all engine errors."""


class ReasoningEngineError(OrchestrationError):
    """The reasoning engine was unreachable or returned an unusable response."""
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Reasoning engine failed during {operation}: {reason}")


class InvalidPlanError(OrchestrationError):
    """A plan has unknown dependency ids or a dependency cycle."""


class PlanningFailedError(OrchestrationError):
    """No usable plan was produced within the allowed attempts."""
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"No executable tasks were planned after {attempts} attempt(s)"
        )


class SessionBusyError(OrchestrationError):
    """Another run already owns this session."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is already running a turn")


class PermissionModeLockedError(OrchestrationError):
    """Permission mode changes are not allowed while a turn is in progress."""


class TurnCancelled(OrchestrationError):
    """Raised at a suspension point once cancellation has been requested."""
    def __init__(self, reason: str = ""):
        self.reason = reason
        super().__init__(reason or "Turn cancelled")


# ── Capability errors ───────────────────────────────────────────────


class CapabilityError(OrchestrationError):
    """Non-transient capability failure. Never retried."""

    kind = "invalid"


class InvalidInputError(CapabilityError):
    """Capability rejected its arguments."""


class UnsupportedActionError(CapabilityError):
    """Capability cannot perform the requested action."""


class UnknownCapabilityError(CapabilityError):
    """The plan names a capability that is not registered."""

    kind = "unknown_capability"

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        avail_str = ", ".join(available) if available else "none"
        super().__init__(
            f"Unknown capability '{name}'. Available capabilities: {avail_str}"
        )


class PermissionDeniedError(CapabilityError):
    """A side-effecting action was denied by the permission gate."""

    kind = "denied"

    def __init__(self, tool_name: str, reason: str = "denied"):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Permission for '{tool_name}' {reason}")


class TransientCapabilityError(OrchestrationError):
    """Capability failure that may succeed on retry."""

    kind = "transient"


class CapabilityTimeoutError(TransientCapabilityError):
    """A single capability call exceeded its time budget."""
    def __init__(self, tool_name: str, timeout_seconds: float):
        self.tool_name = tool_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Capability '{tool_name}' timed out after {timeout_seconds}s"
        )


class RateLimitedError(TransientCapabilityError):
    """The capability's backing service asked us to slow down."""
