"""Eames agent engine: phase orchestration, task execution, streaming display state."""
from .models import (
    PermissionMode,
    PermissionRequest,
    Phase,
    Plan,
    Query,
    ReflectionResult,
    SideEffect,
    Task,
    TaskResult,
    TaskStatus,
    Understanding,
    Verdict,
)
from .config import EngineConfig
from .errors import (
    CapabilityError,
    CapabilityTimeoutError,
    InvalidPlanError,
    OrchestrationError,
    PermissionDeniedError,
    PermissionModeLockedError,
    PlanningFailedError,
    RateLimitedError,
    ReasoningEngineError,
    SessionBusyError,
    TransientCapabilityError,
    TurnCancelled,
    UnknownCapabilityError,
)

__all__ = [
    # Orchestration (lazy import to avoid circular deps)
    "PhaseOrchestrator",
    "TurnOutcome",
    "TaskExecutor",
    "RetryPolicy",
    "PermissionGate",
    "CancellationToken",
    "Capability",
    "CapabilitySurface",
    "SessionState",
    "DisplayState",
    "reduce_event",
    "ClaudeReasoningEngine",
    "load_yaml_config",
    # Models
    "PermissionMode",
    "PermissionRequest",
    "Phase",
    "Plan",
    "Query",
    "ReflectionResult",
    "SideEffect",
    "Task",
    "TaskResult",
    "TaskStatus",
    "Understanding",
    "Verdict",
    # Config
    "EngineConfig",
    # Errors
    "CapabilityError",
    "CapabilityTimeoutError",
    "InvalidPlanError",
    "OrchestrationError",
    "PermissionDeniedError",
    "PermissionModeLockedError",
    "PlanningFailedError",
    "RateLimitedError",
    "ReasoningEngineError",
    "SessionBusyError",
    "TransientCapabilityError",
    "TurnCancelled",
    "UnknownCapabilityError",
]


def __getattr__(name: str):
    if name in ("PhaseOrchestrator", "TurnOutcome"):
        from . import orchestrator
        return getattr(orchestrator, name)
    if name in ("TaskExecutor", "RetryPolicy"):
        from . import executor
        return getattr(executor, name)
    if name == "PermissionGate":
        from .permissions import PermissionGate
        return PermissionGate
    if name == "CancellationToken":
        from .cancellation import CancellationToken
        return CancellationToken
    if name in ("Capability", "CapabilitySurface"):
        from . import capabilities
        return getattr(capabilities, name)
    if name == "SessionState":
        from .session import SessionState
        return SessionState
    if name in ("DisplayState", "reduce_event"):
        from . import reducer
        return getattr(reducer, name)
    if name == "ClaudeReasoningEngine":
        from .reasoning.claude_engine import ClaudeReasoningEngine
        return ClaudeReasoningEngine
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
