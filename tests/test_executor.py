from __future__ import annotations

import asyncio
import time

import pytest

from eames.engine.cancellation import CancellationToken
from eames.engine.capabilities import Capability, CapabilitySurface
from eames.engine.errors import InvalidInputError, InvalidPlanError, TransientCapabilityError
from eames.engine.executor import RetryPolicy, TaskExecutor
from eames.engine.models import PermissionMode, Plan, SideEffect, Task, TaskStatus
from eames.engine.permissions import PermissionGate
from eames.engine.protocol import BlockStart, ToolResult


def _executor(
    capabilities: list[Capability],
    *,
    mode: PermissionMode = PermissionMode.BYPASS,
    max_in_flight: int = 2,
    base_delay: float = 0.01,
    on_status=None,
) -> TaskExecutor:
    return TaskExecutor(
        CapabilitySurface(capabilities),
        PermissionGate(mode),
        max_in_flight=max_in_flight,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=base_delay, max_delay=1.0),
        tool_call_timeout=5.0,
        on_status=on_status,
    )


def _echo(name: str = "echo", side_effect: SideEffect = SideEffect.NONE) -> Capability:
    async def invoke(args):
        return args.get("value")

    return Capability(name=name, description="echo", invoke=invoke, side_effect=side_effect)


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=3.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_max_in_flight_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _executor([], max_in_flight=0)


@pytest.mark.asyncio
async def test_transient_failures_retry_until_success() -> None:
    calls = {"n": 0}

    async def flaky(args):
        calls["n"] += 1
        if calls["n"] < 3:
            raise TransientCapabilityError("rate limited")
        return "ok"

    executor = _executor(
        [Capability(name="flaky", description="", invoke=flaky), _echo()],
        base_delay=0.02,
    )
    plan = Plan(tasks=[
        Task(description="fetch", capability="flaky"),
        Task(description="echo", capability="echo", arguments={"value": 1}),
    ])

    results = await executor.execute(plan)

    assert len(results) == 2
    retried, steady = results
    assert retried.success and steady.success
    assert retried.output == "ok"
    assert retried.attempts == 3
    assert steady.attempts == 1
    # 0.02 + 0.04 of backoff
    assert retried.duration_seconds >= 0.05
    assert [t.status for t in plan.tasks] == [TaskStatus.SUCCEEDED] * 2


@pytest.mark.asyncio
async def test_transient_failures_exhaust_attempts() -> None:
    async def always_down(args):
        raise TransientCapabilityError("down")

    executor = _executor([Capability(name="down", description="", invoke=always_down)])
    [result] = await executor.execute(Plan(tasks=[Task(description="x", capability="down")]))
    assert not result.success
    assert result.attempts == 3
    assert result.error_kind == "transient"


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried() -> None:
    calls = {"n": 0}

    async def bad_input(args):
        calls["n"] += 1
        raise InvalidInputError("missing 'path'")

    executor = _executor([Capability(name="bad", description="", invoke=bad_input)])
    [result] = await executor.execute(Plan(tasks=[Task(description="x", capability="bad")]))
    assert calls["n"] == 1
    assert not result.success
    assert result.error_kind == "invalid"
    assert "missing 'path'" in result.error


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failed_result() -> None:
    async def boom(args):
        raise RuntimeError("kaboom")

    executor = _executor([Capability(name="boom", description="", invoke=boom)])
    [result] = await executor.execute(Plan(tasks=[Task(description="x", capability="boom")]))
    assert not result.success
    assert result.error_kind == "error"
    assert "kaboom" in result.error


@pytest.mark.asyncio
async def test_plan_only_denies_without_invoking() -> None:
    invoked = []

    async def write(args):
        invoked.append(args)
        return "written"

    capability = Capability(
        name="write_file", description="", invoke=write, side_effect=SideEffect.FILE_WRITE,
    )
    executor = _executor([capability], mode=PermissionMode.PLAN_ONLY)
    plan = Plan(tasks=[Task(description="w", capability="write_file", arguments={"path": "a"})])

    [result] = await executor.execute(plan)

    assert invoked == []
    assert not result.success
    assert result.error_kind == "denied"
    assert plan.tasks[0].status == TaskStatus.FAILED


@pytest.mark.asyncio
async def test_unknown_capability_fails_task() -> None:
    executor = _executor([_echo()])
    [result] = await executor.execute(Plan(tasks=[Task(description="x", capability="teleport")]))
    assert not result.success
    assert result.error_kind == "unknown_capability"
    assert "echo" in result.error


@pytest.mark.asyncio
async def test_invalid_plan_raises_before_running() -> None:
    executor = _executor([_echo()])
    plan = Plan(tasks=[Task(description="x", capability="echo", depends_on=["nope"])])
    with pytest.raises(InvalidPlanError):
        await executor.execute(plan)
    assert plan.tasks[0].status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_dependencies_run_first_even_when_they_fail() -> None:
    order: list[str] = []

    async def record(args):
        order.append(args["name"])
        if args["name"] == "first":
            raise InvalidInputError("nope")
        return args["name"]

    executor = _executor(
        [Capability(name="record", description="", invoke=record)], max_in_flight=4,
    )
    plan = Plan(tasks=[
        Task(description="b", capability="record", task_id="b",
             arguments={"name": "second"}, depends_on=["a"]),
        Task(description="a", capability="record", task_id="a", arguments={"name": "first"}),
    ])

    results = await executor.execute(plan)

    assert order == ["first", "second"]
    # Results come back in plan order.
    assert [r.task_id for r in results] == ["b", "a"]
    assert [r.success for r in results] == [True, False]


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_max_in_flight() -> None:
    active = {"now": 0, "peak": 0}

    async def slow(args):
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0.02)
        active["now"] -= 1
        return "done"

    executor = _executor(
        [Capability(name="slow", description="", invoke=slow)], max_in_flight=2,
    )
    plan = Plan(tasks=[Task(description=str(i), capability="slow") for i in range(6)])

    results = await executor.execute(plan)

    assert len(results) == 6
    assert all(r.success for r in results)
    assert active["peak"] == 2


@pytest.mark.asyncio
async def test_parallel_gated_tasks_never_prompt_at_once() -> None:
    active = {"now": 0, "peak": 0}

    async def ask(request):
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0.02)
        active["now"] -= 1
        return "allow"

    surface = CapabilitySurface([
        _echo("write_a", SideEffect.FILE_WRITE),
        _echo("write_b", SideEffect.FILE_WRITE),
    ])
    executor = TaskExecutor(
        surface, PermissionGate(PermissionMode.PROMPT, callback=ask), max_in_flight=2,
    )
    plan = Plan(tasks=[
        Task(description="a", capability="write_a", arguments={"value": 1}),
        Task(description="b", capability="write_b", arguments={"value": 2}),
    ])

    results = await executor.execute(plan)

    assert [r.output for r in results] == [1, 2]
    assert active["peak"] == 1


@pytest.mark.asyncio
async def test_tool_events_bracket_each_invocation() -> None:
    events = []

    async def sink(event):
        events.append(event)

    async def flaky(args):
        raise InvalidInputError("bad")

    executor = TaskExecutor(
        CapabilitySurface([_echo(), Capability(name="bad", description="", invoke=flaky)]),
        PermissionGate(PermissionMode.BYPASS),
        max_in_flight=1,
        on_event=sink,
    )
    plan = Plan(tasks=[
        Task(description="e", capability="echo", task_id="e", arguments={"value": "hi"}),
        Task(description="b", capability="bad", task_id="b"),
        Task(description="missing", capability="teleport", task_id="m"),
    ])

    await executor.execute(plan)

    assert events == [
        BlockStart(block_type="tool_use", tool_name="echo", tool_use_id="e"),
        ToolResult(tool_use_id="e", content="hi"),
        BlockStart(block_type="tool_use", tool_name="bad", tool_use_id="b"),
        ToolResult(tool_use_id="b", content="bad", is_error=True),
    ]


@pytest.mark.asyncio
async def test_cancellation_skips_pending_and_discards_running_result() -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def blocking(args):
        started.set()
        await release.wait()
        return "late"

    statuses: list[tuple[str, TaskStatus]] = []

    async def on_status(task):
        statuses.append((task.task_id, task.status))

    executor = _executor(
        [Capability(name="block", description="", invoke=blocking)],
        max_in_flight=1,
        on_status=on_status,
    )
    plan = Plan(tasks=[
        Task(description=f"t{i}", capability="block", task_id=f"t{i}") for i in range(4)
    ])
    cancel = CancellationToken()

    async def cancel_soon():
        await started.wait()
        cancel.cancel("stop")
        release.set()

    canceller = asyncio.create_task(cancel_soon())
    results = await executor.execute(plan, cancel)
    await canceller

    assert results == []
    assert plan.tasks[0].status == TaskStatus.SUCCEEDED
    assert [t.status for t in plan.tasks[1:]] == [TaskStatus.SKIPPED] * 3
    for task in plan.tasks[1:]:
        assert task.status_history == [TaskStatus.PENDING, TaskStatus.SKIPPED]
    assert ("t0", TaskStatus.RUNNING) in statuses


@pytest.mark.asyncio
async def test_cancellation_during_backoff_skips_task() -> None:
    async def down(args):
        raise TransientCapabilityError("down")

    executor = _executor(
        [Capability(name="down", description="", invoke=down)], base_delay=5.0,
    )
    plan = Plan(tasks=[Task(description="x", capability="down")])
    cancel = CancellationToken()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        cancel.cancel()

    canceller = asyncio.create_task(cancel_soon())
    start = time.monotonic()
    results = await executor.execute(plan, cancel)
    await canceller

    assert time.monotonic() - start < 2.0
    assert results == []
    assert plan.tasks[0].status_history == [
        TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.SKIPPED,
    ]


@pytest.mark.asyncio
async def test_tool_call_timeout_is_transient() -> None:
    async def hang(args):
        await asyncio.sleep(10)

    executor = TaskExecutor(
        CapabilitySurface([Capability(name="hang", description="", invoke=hang)]),
        PermissionGate(PermissionMode.BYPASS),
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.01),
        tool_call_timeout=0.05,
    )
    [result] = await executor.execute(Plan(tasks=[Task(description="x", capability="hang")]))
    assert not result.success
    assert result.attempts == 2
    assert result.error_kind == "transient"
    assert "timed out" in result.error
