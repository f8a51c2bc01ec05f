"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via EAMES_* env vars.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .models import PermissionMode, PermissionRequest

logger = logging.getLogger(__name__)


# Optional async callback for permission requests.
# Signature: async def callback(request: PermissionRequest) -> str
# Returns: "allow", "deny", or "allow_always"
PermissionCallback = Callable[[PermissionRequest], Awaitable[str]]

# Optional async callback for clarification / checkpoint questions.
# Signature: async def callback(question: str) -> str | None
# Returns: the user's answer, or None to skip.
UserQuestionCallback = Callable[[str], Awaitable["str | None"]]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Agent engine configuration."""

    model: str = "claude-sonnet-4-5-20250929"
    permission_mode: PermissionMode = PermissionMode.PROMPT

    # Task executor
    max_in_flight_tasks: int = 2
    task_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 8.0
    # Max wall-clock time for any single capability call.
    # Set to 0 (or a negative value) to disable timeout.
    tool_call_timeout_seconds: float = 120.0

    # Orchestrator loop bounds
    max_reflect_cycles: int = 3
    max_plan_attempts: int = 3
    engine_max_attempts: int = 3
    max_clarify_rounds: int = 1
    # Ask the user before looping back after an incomplete reflection.
    confirm_before_iterating: bool = False
    # Max wait for clarification answers. 0 disables the timeout;
    # a timed-out question counts as skipped.
    user_question_timeout_seconds: float = 0.0

    # A second run on a busy session raises instead of waiting.
    reject_concurrent_runs: bool = True

    # Logging
    log_level: str = "INFO"

    # Called for every PermissionRequest in prompt mode. When unset the
    # request waits for PhaseOrchestrator.resolve_permission().
    permission_callback: PermissionCallback | None = field(
        default=None, repr=False,
    )

    # Called for every clarification question. When unset the question
    # waits for PhaseOrchestrator.answer_clarification().
    user_question_callback: UserQuestionCallback | None = field(
        default=None, repr=False,
    )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from EAMES_* environment variables."""
        eames_vars = {
            k: v for k, v in os.environ.items() if k.startswith("EAMES_")
        }
        if eames_vars:
            logger.info(
                "EngineConfig.from_env: EAMES_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(eames_vars.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no EAMES_* env vars set, using defaults")

        config = cls(
            model=os.getenv("EAMES_MODEL", cls.model),
            permission_mode=PermissionMode(
                os.getenv("EAMES_PERMISSION_MODE", cls.permission_mode.value)
            ),
            max_in_flight_tasks=int(os.getenv(
                "EAMES_MAX_IN_FLIGHT", str(cls.max_in_flight_tasks)
            )),
            task_max_attempts=int(os.getenv(
                "EAMES_TASK_ATTEMPTS", str(cls.task_max_attempts)
            )),
            retry_base_delay_seconds=float(os.getenv(
                "EAMES_RETRY_BASE_DELAY", str(cls.retry_base_delay_seconds)
            )),
            retry_max_delay_seconds=float(os.getenv(
                "EAMES_RETRY_MAX_DELAY", str(cls.retry_max_delay_seconds)
            )),
            tool_call_timeout_seconds=float(os.getenv(
                "EAMES_TOOL_TIMEOUT", str(cls.tool_call_timeout_seconds)
            )),
            max_reflect_cycles=int(os.getenv(
                "EAMES_MAX_REFLECT_CYCLES", str(cls.max_reflect_cycles)
            )),
            max_plan_attempts=int(os.getenv(
                "EAMES_MAX_PLAN_ATTEMPTS", str(cls.max_plan_attempts)
            )),
            engine_max_attempts=int(os.getenv(
                "EAMES_ENGINE_ATTEMPTS", str(cls.engine_max_attempts)
            )),
            max_clarify_rounds=int(os.getenv(
                "EAMES_MAX_CLARIFY_ROUNDS", str(cls.max_clarify_rounds)
            )),
            confirm_before_iterating=_env_bool(
                "EAMES_CONFIRM_BEFORE_ITERATING", cls.confirm_before_iterating
            ),
            user_question_timeout_seconds=float(os.getenv(
                "EAMES_USER_QUESTION_TIMEOUT",
                str(cls.user_question_timeout_seconds),
            )),
            reject_concurrent_runs=_env_bool(
                "EAMES_REJECT_CONCURRENT_RUNS", cls.reject_concurrent_runs
            ),
            log_level=os.getenv("EAMES_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: model=%s permission_mode=%s in_flight=%d log_level=%s",
            config.model, config.permission_mode.value,
            config.max_in_flight_tasks, config.log_level,
        )
        return config
