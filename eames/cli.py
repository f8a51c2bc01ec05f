"""Command-line entry point.

Usage:
    eames "research onboarding flows for a budgeting app"
    eames --permission-mode acceptEdits --model claude-sonnet "build a landing page"
    eames --config eames.yaml --new-session "..."
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.prompt import Prompt
from rich.text import Text

from eames.adapters.event_bus import EventBus
from eames.adapters.events import (
    AnswerChunk,
    ClarificationRequested,
    OrchestratorEvent,
    PermissionRequested,
    PhaseStarted,
    PlanCreated,
    ProgressMessage,
    ReflectionCompleted,
    TaskStatusChanged,
    TurnFinished,
    event_to_dict,
)
from eames.adapters.permission_store import PermissionStore
from eames.engine.builtin_tools import build_builtin_capabilities
from eames.engine.config import EngineConfig
from eames.engine.cost_tracking import (
    UsageHistory,
    is_approaching_context_limit,
    usage_summary,
)
from eames.engine.models import Phase, PermissionRequest
from eames.engine.orchestrator import PhaseOrchestrator, TurnOutcome
from eames.engine.permissions import MODE_LABELS, PermissionGate, parse_mode
from eames.engine.reasoning.claude_engine import ClaudeReasoningEngine
from eames.engine.session import SessionState
from eames.engine.yaml_config import load_yaml_config, resolve_model_alias
from eames.shared.services.persistence import SessionPersistence
from eames.shared.services.settings_store import SettingsStore

logger = logging.getLogger(__name__)

LOG_DIR = Path.home() / ".eames" / "logs"

_TASK_MARKS = {
    "running": "[yellow]…[/yellow]",
    "succeeded": "[green]✓[/green]",
    "failed": "[red]✗[/red]",
    "skipped": "[dim]-[/dim]",
}


def _setup_logging(verbose: bool, log_level: str) -> Path:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "eames.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eames",
        description="Autonomous product design agent",
    )
    parser.add_argument("query", nargs="?", default=None, help="What to do")
    parser.add_argument(
        "--model", default=None,
        help="Model id or alias (claude-opus, claude-sonnet, claude-haiku)",
    )
    parser.add_argument(
        "--permission-mode", default=None,
        help="prompt | auto-accept-edits | plan-only | bypass (SDK names also accepted)",
    )
    parser.add_argument(
        "--max-in-flight", type=int, default=None,
        help="Max tasks running at once",
    )
    parser.add_argument("--config", default=None, help="Path to eames.yaml")
    parser.add_argument("--cwd", default=None, help="Working directory for tools")
    parser.add_argument(
        "--new-session", action="store_true",
        help="Start a fresh session instead of resuming the last one",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging to stderr")
    return parser


class ConsoleRenderer:
    """Prints lifecycle events and answers prompts on the terminal."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self._streaming = False
        self._answer_parts: list[str] = []
        # Prompts share stdin; only one may be on screen.
        self._prompt_lock = asyncio.Lock()

    @property
    def streamed_answer(self) -> bool:
        return bool(self._answer_parts)

    async def ask_permission(self, request: PermissionRequest) -> str:
        async with self._prompt_lock:
            self._end_stream()
            self._console.print(f"\n[bold yellow]Permission needed:[/bold yellow] {request.description}")
            if request.preview:
                self._console.print(Text(request.preview, style="dim"))
            choice = await asyncio.to_thread(
                Prompt.ask,
                "Allow? ([b]y[/b]es / [b]n[/b]o / [b]a[/b]lways)",
                choices=["y", "n", "a"],
                default="n",
                console=self._console,
            )
            return {"y": "allow", "a": "allow_always"}.get(choice, "deny")

    async def ask_question(self, question: str) -> str | None:
        async with self._prompt_lock:
            self._end_stream()
            reply = await asyncio.to_thread(
                Prompt.ask,
                f"[bold cyan]?[/bold cyan] {question} [dim](enter to skip)[/dim]",
                default="",
                show_default=False,
                console=self._console,
            )
            return reply or None

    async def consume(self, bus: EventBus) -> None:
        async for event in bus.consume():
            logger.debug("Event %s", event_to_dict(event))
            self.render(event)
            if isinstance(event, TurnFinished):
                return

    def render(self, event: OrchestratorEvent) -> None:
        if isinstance(event, AnswerChunk):
            if not self._streaming:
                self._console.print()
                self._streaming = True
            self._answer_parts.append(event.text)
            self._console.print(event.text, end="", markup=False, highlight=False)
            return

        if isinstance(event, (PermissionRequested, ClarificationRequested)):
            # Prompted directly by the callbacks.
            return
        self._end_stream()
        if isinstance(event, PhaseStarted):
            self._console.print(f"[dim]▸ {event.phase}[/dim]")
        elif isinstance(event, PlanCreated):
            self._console.print(f"[bold]Plan:[/bold] {event.task_count} task(s)")
        elif isinstance(event, TaskStatusChanged):
            mark = _TASK_MARKS.get(event.status)
            if mark:
                self._console.print(f"  {mark} {event.description}")
        elif isinstance(event, ProgressMessage):
            self._console.print(f"[dim]{event.text}[/dim]")
        elif isinstance(event, ReflectionCompleted):
            self._console.print(f"[dim]Review: {event.verdict}. {event.rationale}[/dim]")
        elif isinstance(event, TurnFinished) and not event.success:
            if event.phase == Phase.CANCELLED.value:
                self._console.print("[yellow]Cancelled.[/yellow]")
            else:
                self._console.print(
                    f"[red]Failed during {event.failed_phase}:[/red] {event.error}"
                )

    def _end_stream(self) -> None:
        if self._streaming:
            self._console.print()
            self._streaming = False


async def run_query(args: argparse.Namespace, console: Console) -> TurnOutcome:
    settings = SettingsStore()
    config = EngineConfig.from_env()
    if args.config:
        config = load_yaml_config(args.config).engine
    if args.model:
        config.model = resolve_model_alias(args.model)
    elif settings.get("model"):
        config.model = resolve_model_alias(settings.get("model"))
    if args.max_in_flight is not None:
        config.max_in_flight_tasks = args.max_in_flight

    persistence = SessionPersistence()
    session = None if args.new_session else persistence.latest()
    if session is None:
        session = SessionState(permission_mode=config.permission_mode, model=config.model)
    else:
        logger.info("Resuming session %s", session.session_id)
        session.model = config.model

    mode_name = args.permission_mode or settings.get("permission_mode")
    if mode_name:
        session.permission_mode = parse_mode(mode_name)

    renderer = ConsoleRenderer(console)
    config.permission_callback = renderer.ask_permission
    config.user_question_callback = renderer.ask_question

    bus = EventBus()
    cwd = Path(args.cwd or Path.cwd())
    gate = PermissionGate(
        session.permission_mode,
        callback=config.permission_callback,
        store=PermissionStore(project_dir=cwd),
    )
    orchestrator = PhaseOrchestrator(
        ClaudeReasoningEngine(model=config.model, cwd=str(cwd)),
        build_builtin_capabilities(cwd),
        session=session,
        config=config,
        event_bus=bus,
        gate=gate,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, "interrupted")
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported on this platform")

    console.print(
        f"[dim]{config.model} · {MODE_LABELS[session.permission_mode]}[/dim]"
    )
    consumer = asyncio.create_task(renderer.consume(bus))
    try:
        outcome = await orchestrator.run(args.query)
    finally:
        bus.close()
        await consumer
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if outcome.phase == Phase.DONE and not renderer.streamed_answer:
        console.print()
        console.print(Markdown(outcome.answer_text))
    console.print(f"\n[dim]{usage_summary(outcome.usage, session.context_tokens)}[/dim]")
    if is_approaching_context_limit(session.context_tokens):
        console.print(
            "[yellow]Context window nearly full; start a new session with --new-session.[/yellow]"
        )

    persistence.save(session)
    UsageHistory(settings).record(outcome.usage)
    if args.permission_mode:
        settings.set("permission_mode", session.permission_mode.value)
    return outcome


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    if not args.query:
        parser.error("a query is required")

    log_file = _setup_logging(args.verbose, EngineConfig.log_level)
    logger.info("Starting eames cwd=%s log=%s", Path.cwd(), log_file)

    console = Console()
    try:
        outcome = asyncio.run(run_query(args, console))
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(130)
    if outcome.phase == Phase.CANCELLED:
        sys.exit(130)
    if outcome.phase == Phase.FAILED:
        sys.exit(1)


if __name__ == "__main__":
    main()
