"""Phase orchestrator: drives one user query from intake to answer.

    Understand -> (Clarify) -> Plan -> Execute -> Reflect -> Answer -> Done

Reflect may loop back to Execute (retry a subset of tasks) or to Plan
(replan with guidance), at most ``max_reflect_cycles`` times. Any phase
can end the turn in Cancelled (cooperative cancellation) or Failed
(reasoning engine exhausted its retries, no plan could be made).

The orchestrator never renders. Everything a UI needs is published on
the EventBus as lifecycle events, and ``run()`` returns a TurnOutcome.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any, TypeVar

from eames.adapters.event_bus import EventBus
from eames.adapters.events import (
    AnswerChunk,
    ClarificationRequested,
    DisplayStateChanged,
    OrchestratorEvent,
    PermissionRequested,
    PhaseCompleted,
    PhaseStarted,
    PlanCreated,
    ProgressMessage,
    ReflectionCompleted,
    TaskStatusChanged,
    TurnFinished,
    TurnStarted,
)

from .cancellation import CancellationToken
from .capabilities import CapabilitySurface
from .config import EngineConfig
from .cost_tracking import calculate_cost
from .errors import (
    InvalidPlanError,
    OrchestrationError,
    PlanningFailedError,
    ReasoningEngineError,
    SessionBusyError,
    TurnCancelled,
)
from .executor import RetryPolicy, TaskExecutor
from .lifecycle import validate_phase_transition
from .models import (
    PermissionMode,
    PermissionRequest,
    Phase,
    Plan,
    Query,
    ReflectionResult,
    Task,
    TaskResult,
    Understanding,
    Verdict,
)
from .permissions import PermissionGate
from .protocol import FinalResult, ProtocolEvent, TextDelta
from .reasoning.base import ReasoningEngine
from .reducer import DisplayState, apply_update, reduce_event
from .session import SessionState, TokenUsage, UsageTotals

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLARIFICATION_HEADER = "--- Clarification from user ---"
PROCEED_ANSWERS = frozenset({"proceed", "yes", "y", "continue"})


@dataclass
class TurnOutcome:
    """What a finished turn produced, including partial work."""
    phase: Phase
    answer_text: str = ""
    task_results: list[TaskResult] = field(default_factory=list)
    plan: Plan | None = None
    error: str | None = None
    failed_phase: Phase | None = None
    usage: UsageTotals = field(default_factory=UsageTotals)
    reflect_cycles: int = 0

    @property
    def success(self) -> bool:
        return self.phase == Phase.DONE


class PhaseOrchestrator:
    """Runs turns for one SessionState."""

    def __init__(
        self,
        engine: ReasoningEngine,
        capabilities: CapabilitySurface,
        *,
        session: SessionState | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        gate: PermissionGate | None = None,
    ) -> None:
        self._engine = engine
        self._capabilities = capabilities
        self._config = config or EngineConfig()
        self._session = session or SessionState(
            permission_mode=self._config.permission_mode,
            model=self._config.model,
        )
        self._bus = event_bus or EventBus()
        if gate is None:
            gate = PermissionGate(
                self._session.permission_mode,
                callback=self._config.permission_callback,
            )
        gate.set_on_request(self._publish_permission)
        self._gate = gate

        self._phase = Phase.UNDERSTAND
        self._display = DisplayState()
        self._active_plan: Plan | None = None
        self._results: dict[str, TaskResult] = {}
        self._turn_usage = UsageTotals()
        self._cancel: CancellationToken | None = None
        self._question: asyncio.Future[str | None] | None = None

    # ── Public surface ──

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def display_state(self) -> DisplayState:
        return self._display

    @property
    def active_plan(self) -> Plan | None:
        return self._active_plan

    @property
    def session(self) -> SessionState:
        return self._session

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def gate(self) -> PermissionGate:
        return self._gate

    @property
    def awaiting_answer(self) -> bool:
        return self._question is not None and not self._question.done()

    def pending_permissions(self) -> list[PermissionRequest]:
        return self._gate.pending()

    def set_permission_mode(self, mode: PermissionMode) -> None:
        """Change the mode between turns. Raises PermissionModeLockedError mid-turn."""
        self._gate.set_mode(mode)
        self._session.permission_mode = mode

    def cancel(self, reason: str = "") -> None:
        """Request cancellation of the running turn, if any."""
        if self._cancel is not None:
            self._cancel.cancel(reason)

    def resolve_permission(
        self, request_id: str, approved: bool, *, remember: bool = False,
    ) -> bool:
        return self._gate.resolve(request_id, approved, remember=remember)

    def answer_clarification(self, text: str) -> bool:
        """Answer the question currently waiting. False if none is waiting."""
        return self._reply(text)

    def skip_clarification(self) -> bool:
        return self._reply(None)

    async def run(
        self,
        query: Query | str,
        cancel: CancellationToken | None = None,
    ) -> TurnOutcome:
        """Run one turn to a terminal phase.

        Raises SessionBusyError when another turn holds the session and
        ``reject_concurrent_runs`` is set; otherwise waits for it.
        """
        if isinstance(query, str):
            query = Query(text=query)
        if self._session.busy and self._config.reject_concurrent_runs:
            raise SessionBusyError(self._session.session_id)
        async with self._session.lock:
            return await self._run_turn(query, cancel or CancellationToken())

    # ── Turn driver ──

    async def _run_turn(self, query: Query, cancel: CancellationToken) -> TurnOutcome:
        self._cancel = cancel
        self._phase = Phase.UNDERSTAND
        self._display = DisplayState()
        self._active_plan = None
        self._results = {}
        self._turn_usage = UsageTotals()
        outcome = TurnOutcome(phase=Phase.UNDERSTAND)
        start = time.monotonic()

        logger.info(
            "Turn starting session=%s: %s",
            self._session.session_id[:8], query.text[:200],
        )
        await self._emit(TurnStarted(query=query.text))
        self._gate.set_mode(self._session.permission_mode)
        try:
            with self._gate.turn():
                await self._emit(PhaseStarted(phase=self._phase.value))
                outcome.reflect_cycles = await self._drive(query)
        except TurnCancelled as exc:
            logger.info("Turn cancelled during %s: %s", self._phase.value, exc.reason)
            await self._enter(Phase.CANCELLED)
        except OrchestrationError as exc:
            logger.error("Turn failed during %s: %s", self._phase.value, exc)
            outcome.failed_phase = self._phase
            outcome.error = str(exc)
            await self._enter(Phase.FAILED)
        except Exception as exc:
            logger.exception("Turn crashed during %s", self._phase.value)
            outcome.failed_phase = self._phase
            outcome.error = f"{type(exc).__name__}: {exc}"
            await self._enter(Phase.FAILED)
        finally:
            self._cancel = None
            if self._question is not None and not self._question.done():
                self._question.cancel()
            self._question = None

        outcome.phase = self._phase
        outcome.answer_text = self._display.answer_text
        outcome.task_results = list(self._results.values())
        outcome.plan = self._active_plan
        outcome.usage = self._turn_usage

        if outcome.phase == Phase.DONE:
            self._session.add_turn("user", query.text)
            self._session.add_turn("assistant", outcome.answer_text)

        duration = time.monotonic() - start
        logger.info(
            "Turn finished phase=%s duration=%.1fs tasks=%d",
            outcome.phase.value, duration, len(outcome.task_results),
        )
        await self._emit(TurnFinished(
            phase=outcome.phase.value,
            success=outcome.success,
            error=outcome.error,
            failed_phase=outcome.failed_phase.value if outcome.failed_phase else None,
            duration_seconds=duration,
        ))
        return outcome

    async def _drive(self, query: Query) -> int:
        """Walk the phases. Returns the number of reflect loop-backs."""
        understanding = await self._understand(query)
        rounds = 0
        while (
            understanding.needs_clarification
            and rounds < self._config.max_clarify_rounds
        ):
            await self._enter(Phase.CLARIFY)
            query, answered = await self._clarify(query, understanding)
            rounds += 1
            if not (answered and rounds < self._config.max_clarify_rounds):
                break
            await self._enter(Phase.UNDERSTAND)
            understanding = await self._understand(query)

        cycles = 0
        await self._enter(Phase.PLAN)
        plan = await self._plan(query, understanding, cycle=cycles)
        while True:
            await self._enter(Phase.EXECUTE)
            results = await self._execute(plan)

            await self._enter(Phase.REFLECT)
            reflection = await self._reflect(query, plan, cycles)
            if reflection.verdict == Verdict.DONE:
                break
            if cycles >= self._config.max_reflect_cycles:
                logger.warning(
                    "Reflect limit (%d) reached; answering with best-effort results",
                    self._config.max_reflect_cycles,
                )
                await self._progress(
                    "Reached the iteration limit, answering with what we have"
                )
                break
            if self._config.confirm_before_iterating:
                if not await self._confirm_iteration(reflection):
                    await self._progress("Stopping here as requested")
                    break
            cycles += 1

            if reflection.verdict == Verdict.RETRY:
                retry_plan = self._retry_plan(plan, reflection, results)
                if retry_plan is None:
                    await self._progress("Nothing left to retry")
                    break
                await self._progress(f"Retrying {len(retry_plan)} task(s)")
                plan = retry_plan
                self._active_plan = plan
                continue

            await self._progress("Revising the plan")
            await self._enter(Phase.PLAN)
            plan = await self._plan(
                query,
                understanding,
                cycle=cycles,
                guidance=reflection.guidance or reflection.rationale,
                previous_results=list(self._results.values()),
            )

        await self._enter(Phase.ANSWER)
        await self._answer(query, understanding)
        await self._enter(Phase.DONE)
        return cycles

    # ── Phases ──

    async def _understand(self, query: Query) -> Understanding:
        understanding = await self._call_engine(
            "understand",
            lambda: self._engine.understand(
                query, self._session, on_event=self._on_structured_event,
            ),
        )
        logger.info(
            "Understood goal=%r clear=%s open_questions=%d",
            understanding.goal[:120], understanding.is_clear,
            len(understanding.open_questions),
        )
        return understanding

    async def _clarify(
        self, query: Query, understanding: Understanding,
    ) -> tuple[Query, bool]:
        questions = understanding.open_questions
        lines: list[str] = []
        answered = False
        for index, question in enumerate(questions, start=1):
            reply = await self._ask_user(
                ClarificationRequested(
                    question=question, index=index, total=len(questions),
                )
            )
            if reply is None or not reply.strip():
                lines.append(f"Q: {question}\nA: (skipped)")
                logger.info("Clarification skipped at question %d/%d", index, len(questions))
                break
            lines.append(f"Q: {question}\nA: {reply.strip()}")
            answered = True

        if lines:
            query = query.with_context(CLARIFICATION_HEADER + "\n" + "\n\n".join(lines))
        return query, answered

    async def _plan(
        self,
        query: Query,
        understanding: Understanding,
        *,
        cycle: int,
        guidance: str = "",
        previous_results: list[TaskResult] | None = None,
    ) -> Plan:
        capabilities = self._capabilities.describe()
        for attempt in range(1, self._config.max_plan_attempts + 1):
            plan = await self._call_engine(
                "plan",
                lambda: self._engine.plan(
                    query,
                    understanding,
                    capabilities,
                    guidance=guidance,
                    previous_results=previous_results,
                    on_event=self._on_structured_event,
                ),
            )
            if not plan.tasks:
                logger.warning(
                    "Plan attempt %d/%d produced no tasks",
                    attempt, self._config.max_plan_attempts,
                )
                continue
            try:
                plan.validate()
            except InvalidPlanError as exc:
                logger.warning(
                    "Plan attempt %d/%d invalid: %s",
                    attempt, self._config.max_plan_attempts, exc,
                )
                continue

            self._active_plan = plan
            logger.info(
                "Plan %s created with %d task(s) (cycle %d)",
                plan.plan_id[:8], len(plan), cycle,
            )
            await self._emit(PlanCreated(
                plan_id=plan.plan_id, task_count=len(plan), cycle=cycle,
            ))
            return plan
        raise PlanningFailedError(self._config.max_plan_attempts)

    async def _execute(self, plan: Plan) -> list[TaskResult]:
        executor = TaskExecutor(
            self._capabilities,
            self._gate,
            max_in_flight=self._config.max_in_flight_tasks,
            retry_policy=RetryPolicy(
                max_attempts=self._config.task_max_attempts,
                base_delay=self._config.retry_base_delay_seconds,
                max_delay=self._config.retry_max_delay_seconds,
            ),
            tool_call_timeout=self._config.tool_call_timeout_seconds,
            on_status=self._on_task_status,
            on_event=self._apply_protocol_event,
        )
        results = await executor.execute(plan, self._cancel)
        for result in results:
            self._results[result.task_id] = result
        self._cancel.raise_if_cancelled()
        return results

    async def _reflect(self, query: Query, plan: Plan, cycle: int) -> ReflectionResult:
        results = list(self._results.values())
        reflection = await self._call_engine(
            "reflect",
            lambda: self._engine.reflect(
                query, plan, results, on_event=self._on_structured_event,
            ),
        )
        logger.info(
            "Reflection cycle %d verdict=%s: %s",
            cycle, reflection.verdict.value, reflection.rationale[:200],
        )
        await self._emit(ReflectionCompleted(
            verdict=reflection.verdict.value,
            rationale=reflection.rationale,
            cycle=cycle,
        ))
        return reflection

    @staticmethod
    def _retry_plan(
        plan: Plan, reflection: ReflectionResult, results: list[TaskResult],
    ) -> Plan | None:
        ids = [tid for tid in reflection.retry_task_ids if plan.get(tid) is not None]
        if not ids:
            ids = [r.task_id for r in results if not r.success]
        if not ids:
            return None
        return plan.subset(ids)

    async def _answer(self, query: Query, understanding: Understanding) -> None:
        results = list(self._results.values())
        policy = self._engine_retry_policy()
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._stream_answer(query, understanding, results)
                return
            except ReasoningEngineError as exc:
                # Once text has reached the user a retry would duplicate it.
                if self._display.answer_text or attempt >= policy.max_attempts:
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    "answer attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt, policy.max_attempts, exc, delay,
                )
                await self._cancel.sleep(delay)

    async def _stream_answer(
        self,
        query: Query,
        understanding: Understanding,
        results: list[TaskResult],
    ) -> None:
        stream = self._engine.answer(query, understanding, results, self._session)
        iterator = stream.__aiter__()
        try:
            while True:
                event = await self._cancel.race(_next_event(iterator))
                if event is None:
                    break
                if isinstance(event, FinalResult) and event.is_error:
                    self._record_usage(event)
                    detail = "; ".join(event.errors) or event.result or "error result"
                    raise ReasoningEngineError("answer", detail)
                streamed = self._display.answer_text
                await self._apply_protocol_event(event)
                if isinstance(event, TextDelta) and event.text:
                    await self._emit(AnswerChunk(text=event.text))
                elif isinstance(event, FinalResult):
                    self._record_usage(event)
                    if event.result.startswith(streamed) and len(event.result) > len(streamed):
                        await self._emit(AnswerChunk(text=event.result[len(streamed):]))
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except (RuntimeError, StopAsyncIteration):
                    logger.debug("Answer stream did not close cleanly", exc_info=True)

    # ── Helpers ──

    async def _enter(self, target: Phase) -> None:
        current = self._phase
        if current.is_terminal:
            return
        validate_phase_transition(current, target)
        if target not in (Phase.CANCELLED, Phase.FAILED):
            await self._emit(PhaseCompleted(phase=current.value))
        self._phase = target
        logger.debug("Phase %s -> %s", current.value, target.value)
        if not target.is_terminal:
            await self._emit(PhaseStarted(phase=target.value))

    def _engine_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self._config.engine_max_attempts,
            base_delay=self._config.retry_base_delay_seconds,
            max_delay=self._config.retry_max_delay_seconds,
        )

    async def _call_engine(
        self, operation: str, call: Callable[[], Awaitable[T]],
    ) -> T:
        """Run a reasoning-engine call with bounded retries and backoff."""
        policy = self._engine_retry_policy()
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._cancel.race(call())
            except ReasoningEngineError as exc:
                if attempt >= policy.max_attempts:
                    logger.error(
                        "%s failed after %d attempt(s): %s", operation, attempt, exc,
                    )
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.2fs",
                    operation, attempt, policy.max_attempts, exc, delay,
                )
                await self._cancel.sleep(delay)

    async def _ask_user(self, event: ClarificationRequested) -> str | None:
        """Publish a question and wait for the answer. None means skipped."""
        callback = self._config.user_question_callback
        if callback is not None:
            await self._emit(event)
            pending: Awaitable[str | None] = callback(event.question)
        else:
            self._question = asyncio.get_running_loop().create_future()
            await self._emit(event)
            pending = self._question

        timeout = self._config.user_question_timeout_seconds
        if timeout and timeout > 0:
            pending = asyncio.wait_for(pending, timeout=timeout)
        try:
            return await self._cancel.race(pending)
        except asyncio.TimeoutError:
            logger.info("No answer within %.0fs, treating as skipped", timeout)
            return None
        except TurnCancelled:
            raise
        except Exception:
            logger.exception("User question callback failed, treating as skipped")
            return None
        finally:
            self._question = None

    def _reply(self, text: str | None) -> bool:
        if self._question is None or self._question.done():
            return False
        self._question.set_result(text)
        return True

    async def _confirm_iteration(self, reflection: ReflectionResult) -> bool:
        question = reflection.proceed_question or (
            f"Results look incomplete ({reflection.verdict.value}): "
            f"{reflection.rationale or 'no rationale given'}. "
            "Type 'proceed' to continue or 'stop' to answer now."
        )
        reply = await self._ask_user(
            ClarificationRequested(question=question, index=1, total=1)
        )
        proceed = reply is not None and reply.strip().lower() in PROCEED_ANSWERS
        logger.info("Proceed checkpoint: %s", "proceed" if proceed else "stop")
        return proceed

    async def _progress(self, text: str) -> None:
        await self._emit(ProgressMessage(text=text))

    async def _emit(self, event: OrchestratorEvent) -> None:
        event.session_id = self._session.session_id
        await self._bus.emit(event)

    async def _apply_protocol_event(self, event: ProtocolEvent) -> None:
        update = reduce_event(event, self._display)
        if update is None:
            return
        self._display = apply_update(self._display, update)
        await self._emit(DisplayStateChanged(changes=_jsonable(update)))

    async def _on_structured_event(self, event: ProtocolEvent) -> None:
        # Structured phases return JSON, not user-facing text: their final
        # result only contributes usage and their text never reaches the answer.
        if isinstance(event, FinalResult):
            self._record_usage(event)
            return
        if isinstance(event, TextDelta):
            return
        await self._apply_protocol_event(event)

    def _record_usage(self, event: FinalResult) -> None:
        usage = TokenUsage.from_sdk(event.usage, event.cost_usd)
        model = self._session.model or self._config.model
        cost = event.cost_usd if event.cost_usd is not None else calculate_cost(usage, model)
        self._turn_usage.add(usage, cost)
        self._session.usage.add(usage, cost)
        if usage.context_tokens:
            self._session.context_tokens = usage.context_tokens

    async def _on_task_status(self, task: Task) -> None:
        await self._emit(TaskStatusChanged(
            task_id=task.task_id,
            description=task.description,
            capability=task.capability,
            status=task.status.value,
        ))

    async def _publish_permission(self, request: PermissionRequest) -> None:
        await self._emit(PermissionRequested(
            request_id=request.request_id,
            tool_name=request.tool_name,
            description=request.description,
            side_effect=request.side_effect.value,
            preview=request.preview,
        ))


async def _next_event(iterator: AsyncIterator[ProtocolEvent]) -> ProtocolEvent | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def _jsonable(update: dict[str, Any]) -> dict[str, Any]:
    out = dict(update)
    if "tool_activity" in out:
        out["tool_activity"] = [asdict(a) for a in out["tool_activity"]]
    return out
