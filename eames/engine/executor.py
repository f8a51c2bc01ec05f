"""Task executor: runs a plan's tasks against the capability surface.

Independent tasks run concurrently up to ``max_in_flight``. A task is
dispatched only once every task it depends on is terminal. Transient
capability errors are retried with exponential backoff; everything else
fails the task immediately. Task-level errors never escape ``execute``;
they are recorded in the returned TaskResults.

Each authorized capability call is reported to ``on_event`` as a
``BlockStart`` keyed by task id, then a ``ToolResult`` when it ends, so
the display reducer tracks executor tools like engine tools.

Cancellation is cooperative: once the token fires no new task is
dispatched, pending tasks become skipped, and tasks already running are
allowed to finish but their results are dropped.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .cancellation import CancellationToken
from .capabilities import Capability, CapabilitySurface
from .errors import (
    CapabilityError,
    CapabilityTimeoutError,
    TransientCapabilityError,
    TurnCancelled,
)
from .models import Plan, Task, TaskResult, TaskStatus
from .permissions import PermissionGate
from .protocol import BlockStart, ProtocolEvent, ToolResult

logger = logging.getLogger(__name__)

StatusHook = Callable[[Task], Awaitable[None]]
EventSink = Callable[[ProtocolEvent], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Attempt budget and backoff schedule for transient failures."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Backoff after the *attempt*-th failed attempt (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


class TaskExecutor:
    """Dispatches plan tasks with bounded concurrency and retries."""

    def __init__(
        self,
        capabilities: CapabilitySurface,
        gate: PermissionGate,
        *,
        max_in_flight: int = 2,
        retry_policy: RetryPolicy | None = None,
        tool_call_timeout: float = 120.0,
        on_status: StatusHook | None = None,
        on_event: EventSink | None = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self._capabilities = capabilities
        self._gate = gate
        self._max_in_flight = max_in_flight
        self._retry = retry_policy or RetryPolicy()
        self._tool_call_timeout = tool_call_timeout
        self._on_status = on_status
        self._on_event = on_event

    async def execute(
        self,
        plan: Plan,
        cancel: CancellationToken | None = None,
    ) -> list[TaskResult]:
        """Run every task in *plan*. Returns results in plan order."""
        plan.validate()
        cancel = cancel or CancellationToken()
        results: dict[str, TaskResult] = {}
        pending: list[Task] = [t for t in plan.tasks if t.status == TaskStatus.PENDING]
        running: dict[asyncio.Task[TaskResult], Task] = {}
        cancel_waiter = asyncio.ensure_future(cancel.wait())

        logger.info(
            "Executing plan %s: %d task(s), max_in_flight=%d",
            plan.plan_id[:8], len(pending), self._max_in_flight,
        )
        try:
            while pending or running:
                if cancel.cancelled:
                    await self._skip_all(pending)
                    pending.clear()
                else:
                    await self._dispatch_ready(plan, pending, running, cancel)

                if not running:
                    if pending:
                        # Unreachable for a validated plan.
                        logger.error(
                            "No runnable tasks left; skipping %d blocked task(s)",
                            len(pending),
                        )
                        await self._skip_all(pending)
                        pending.clear()
                    break

                wait_on: set[asyncio.Future[Any]] = set(running)
                if not cancel_waiter.done():
                    wait_on.add(cancel_waiter)
                done, _ = await asyncio.wait(
                    wait_on, return_when=asyncio.FIRST_COMPLETED,
                )
                for finished in done:
                    if finished is cancel_waiter:
                        continue
                    task = running.pop(finished)
                    await self._collect(task, finished, results, cancel)
        finally:
            cancel_waiter.cancel()
            for leftover in running:
                leftover.cancel()

        ordered = [results[t.task_id] for t in plan.tasks if t.task_id in results]
        logger.info(
            "Plan %s finished: %d result(s), %d succeeded%s",
            plan.plan_id[:8],
            len(ordered),
            sum(1 for r in ordered if r.success),
            " (cancelled)" if cancel.cancelled else "",
        )
        return ordered

    async def _dispatch_ready(
        self,
        plan: Plan,
        pending: list[Task],
        running: dict[asyncio.Task[TaskResult], Task],
        cancel: CancellationToken,
    ) -> None:
        for task in list(pending):
            if len(running) >= self._max_in_flight:
                return
            if not self._dependencies_done(plan, task):
                continue
            pending.remove(task)
            await self._set_status(task, TaskStatus.RUNNING)
            runner = asyncio.create_task(self._run_task(task, cancel))
            running[runner] = task

    @staticmethod
    def _dependencies_done(plan: Plan, task: Task) -> bool:
        for dep_id in task.depends_on:
            dep = plan.get(dep_id)
            if dep is not None and not dep.status.is_terminal:
                return False
        return True

    async def _collect(
        self,
        task: Task,
        finished: asyncio.Task[TaskResult],
        results: dict[str, TaskResult],
        cancel: CancellationToken,
    ) -> None:
        try:
            result = finished.result()
        except TurnCancelled:
            logger.info("Task %s interrupted by cancellation", task.task_id[:8])
            await self._set_status(task, TaskStatus.SKIPPED)
            return

        await self._set_status(
            task, TaskStatus.SUCCEEDED if result.success else TaskStatus.FAILED,
        )
        if cancel.cancelled:
            logger.info(
                "Discarding result of task %s finished after cancellation",
                task.task_id[:8],
            )
            return
        results[task.task_id] = result

    async def _skip_all(self, tasks: list[Task]) -> None:
        for task in tasks:
            await self._set_status(task, TaskStatus.SKIPPED)

    async def _set_status(self, task: Task, status: TaskStatus) -> None:
        task.transition(status)
        logger.debug("Task %s -> %s", task.task_id[:8], status.value)
        if self._on_status is not None:
            await self._on_status(task)

    async def _run_task(self, task: Task, cancel: CancellationToken) -> TaskResult:
        """Execute one task. Raises only TurnCancelled."""
        start = time.monotonic()
        attempts = 0
        started = False
        try:
            capability = self._capabilities.get(task.capability)
            await self._gate.authorize(capability, task.arguments, cancel)
            await self._notify(BlockStart(
                block_type="tool_use",
                tool_name=capability.name,
                tool_use_id=task.task_id,
            ))
            started = True
            while True:
                attempts += 1
                try:
                    output = await self._invoke(capability, task.arguments)
                except TransientCapabilityError as exc:
                    if attempts >= self._retry.max_attempts:
                        raise
                    delay = self._retry.delay_for(attempts)
                    logger.warning(
                        "Task %s attempt %d/%d failed (%s), retrying in %.2fs",
                        task.task_id[:8], attempts, self._retry.max_attempts,
                        exc, delay,
                    )
                    await cancel.sleep(delay)
                    cancel.raise_if_cancelled()
                    continue
                result = TaskResult(
                    task_id=task.task_id,
                    success=True,
                    output=output,
                    duration_seconds=time.monotonic() - start,
                    attempts=attempts,
                )
                break
        except TurnCancelled:
            if started:
                await self._notify(ToolResult(
                    tool_use_id=task.task_id, content="cancelled", is_error=True,
                ))
            raise
        except (CapabilityError, TransientCapabilityError) as exc:
            logger.info(
                "Task %s failed (%s) after %d attempt(s): %s",
                task.task_id[:8], exc.kind, attempts, exc,
            )
            result = TaskResult(
                task_id=task.task_id,
                success=False,
                error=str(exc),
                error_kind=exc.kind,
                duration_seconds=time.monotonic() - start,
                attempts=attempts,
            )
        except Exception as exc:
            logger.exception("Task %s raised unexpectedly", task.task_id[:8])
            result = TaskResult(
                task_id=task.task_id,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
                error_kind="error",
                duration_seconds=time.monotonic() - start,
                attempts=attempts,
            )

        if started:
            await self._notify(ToolResult(
                tool_use_id=task.task_id,
                content=str(result.output if result.success else result.error)[:500],
                is_error=not result.success,
            ))
        return result

    async def _notify(self, event: ProtocolEvent) -> None:
        if self._on_event is not None:
            await self._on_event(event)

    async def _invoke(self, capability: Capability, arguments: dict[str, Any]) -> Any:
        if self._tool_call_timeout and self._tool_call_timeout > 0:
            try:
                return await asyncio.wait_for(
                    capability.invoke(dict(arguments)),
                    timeout=self._tool_call_timeout,
                )
            except asyncio.TimeoutError:
                raise CapabilityTimeoutError(
                    capability.name, self._tool_call_timeout,
                ) from None
        return await capability.invoke(dict(arguments))
