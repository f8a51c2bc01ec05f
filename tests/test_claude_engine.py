from __future__ import annotations

import pytest

from eames.engine.errors import ReasoningEngineError
from eames.engine.models import Plan, Query, Task, TaskResult, Understanding, Verdict
from eames.engine.protocol import FinalResult, SessionInit, TextDelta, ToolProgress, parse_event
from eames.engine.reasoning import prompts
from eames.engine.reasoning.base import (
    plan_from_dict,
    reflection_from_dict,
    understanding_from_dict,
)
from eames.engine.reasoning.claude_engine import (
    ClaudeReasoningEngine,
    extract_json,
    sdk_message_to_dict,
)
from eames.engine.session import SessionState

# Stand-ins named like the SDK's message types; conversion matches on class name.


class TextBlock:
    def __init__(self, text):
        self.text = text


class ToolUseBlock:
    def __init__(self, id, name, input):
        self.id = id
        self.name = name
        self.input = input


class AssistantMessage:
    def __init__(self, content):
        self.content = content


class ResultMessage:
    def __init__(self, result, subtype="success", is_error=False, usage=None, total_cost_usd=None):
        self.result = result
        self.subtype = subtype
        self.is_error = is_error
        self.usage = usage
        self.total_cost_usd = total_cost_usd


class SystemMessage:
    def __init__(self, subtype, data):
        self.subtype = subtype
        self.data = data


class StreamEvent:
    def __init__(self, event):
        self.event = event


def test_extract_json_from_fenced_block() -> None:
    text = 'Sure.\n```json\n{"goal": "logo", "is_clear": true}\n```\nAnything else?'
    assert extract_json(text, "understand") == {"goal": "logo", "is_clear": True}


def test_extract_json_from_bare_braces() -> None:
    text = 'Here you go: {"verdict": "done", "rationale": "ok"} hope that helps'
    assert extract_json(text, "reflect")["verdict"] == "done"


def test_extract_json_failure_names_operation() -> None:
    with pytest.raises(ReasoningEngineError) as excinfo:
        extract_json("no json here, sorry", "plan")
    assert excinfo.value.operation == "plan"


def test_sdk_messages_convert_to_protocol_events() -> None:
    init = parse_event(sdk_message_to_dict(SystemMessage("init", {"session_id": "abc"})))
    assert init == SessionInit(session_id="abc")

    delta = parse_event(sdk_message_to_dict(StreamEvent({
        "type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"},
    })))
    assert delta == TextDelta(text="Hi")

    assistant = parse_event(sdk_message_to_dict(AssistantMessage([
        TextBlock("Looking"),
        ToolUseBlock("tu_1", "Read", {"path": "a"}),
    ])))
    assert assistant.text == "Looking"
    assert assistant.tool_uses[0].name == "Read"

    result = parse_event(sdk_message_to_dict(ResultMessage(
        "done", usage={"input_tokens": 3}, total_cost_usd=0.002,
    )))
    assert result == FinalResult(result="done", usage={"input_tokens": 3}, cost_usd=0.002)

    assert sdk_message_to_dict({"type": "tool_progress"}) == {"type": "tool_progress"}


def test_understanding_defaults_clarity_from_questions() -> None:
    query = Query(text="make it pop")
    vague = understanding_from_dict({"open_questions": ["What is 'it'?", ""]}, query)
    assert vague.goal == "make it pop"
    assert not vague.is_clear
    assert vague.open_questions == ["What is 'it'?"]
    assert vague.needs_clarification

    clear = understanding_from_dict({"goal": "g", "is_clear": True, "entities": ["btn"]}, query)
    assert clear.is_clear
    assert clear.entities == ["btn"]


def test_plan_from_dict_keeps_engine_ids() -> None:
    plan = plan_from_dict({
        "rationale": "read then write",
        "tasks": [
            {"id": "r", "description": "read", "capability": "read_file",
             "arguments": {"path": "a"}},
            {"id": "w", "capability": "write_file", "arguments": "bogus", "depends_on": ["r"]},
        ],
    })
    assert [t.task_id for t in plan.tasks] == ["r", "w"]
    assert plan.tasks[1].description == "write_file"
    assert plan.tasks[1].arguments == {}
    assert plan.tasks[1].depends_on == ["r"]
    plan.validate()


def test_plan_from_dict_rejects_bad_shapes() -> None:
    with pytest.raises(ReasoningEngineError):
        plan_from_dict({"steps": []})
    with pytest.raises(ReasoningEngineError, match="#2"):
        plan_from_dict({"tasks": [{"capability": "x"}, {"description": "no capability"}]})


def test_reflection_from_dict() -> None:
    reflection = reflection_from_dict({
        "verdict": "RETRY", "retry_task_ids": ["a"], "rationale": "a flaked",
    })
    assert reflection.verdict == Verdict.RETRY
    assert reflection.retry_task_ids == ["a"]
    assert reflection.proceed_question is None
    with pytest.raises(ReasoningEngineError):
        reflection_from_dict({"verdict": "maybe"})


def test_prompts_include_context_and_results() -> None:
    query = Query(text="audit the homepage", context="Q: brand?\nA: Acme")
    understanding = Understanding(goal="audit homepage")
    results = [
        TaskResult(task_id="t1", success=True, output={"score": 7}),
        TaskResult(task_id="t2", success=False, error="boom", error_kind="transient"),
    ]
    plan = Plan(tasks=[Task(description="Score it", capability="x", task_id="t1")])

    assert "A: Acme" in prompts.understand_prompt(query, "")
    planned = prompts.plan_prompt(query, understanding, [{"name": "x"}], "be brief", results)
    assert "be brief" in planned
    assert '"name": "x"' in planned
    reflected = prompts.reflect_prompt(query, plan, results)
    assert "Score it: OK" in reflected
    assert "FAILED (transient) boom" in reflected
    assert "audit homepage" in prompts.answer_prompt(query, understanding, results)


@pytest.mark.asyncio
async def test_structured_call_forwards_events_and_parses_result(monkeypatch) -> None:
    engine = ClaudeReasoningEngine(model="test-model")
    events = [
        ToolProgress(tool_name="WebSearch", elapsed_seconds=2),
        FinalResult(result='```json\n{"goal": "g", "is_clear": true}\n```'),
    ]

    async def fake_stream(prompt, *, partial):
        assert not partial
        for event in events:
            yield event

    monkeypatch.setattr(engine, "_stream", fake_stream)
    seen = []

    async def sink(event):
        seen.append(event)

    understanding = await engine.understand(Query(text="q"), SessionState(), on_event=sink)

    assert understanding.goal == "g"
    assert seen == events


@pytest.mark.asyncio
async def test_structured_call_errors(monkeypatch) -> None:
    engine = ClaudeReasoningEngine()

    async def error_result(prompt, *, partial):
        yield FinalResult(result="", is_error=True, errors=("overloaded",))

    monkeypatch.setattr(engine, "_stream", error_result)
    with pytest.raises(ReasoningEngineError, match="overloaded"):
        await engine.reflect(Query(text="q"), Plan(), [])

    async def no_result(prompt, *, partial):
        yield TextDelta(text="partial")

    monkeypatch.setattr(engine, "_stream", no_result)
    with pytest.raises(ReasoningEngineError, match="without a result"):
        await engine.plan(Query(text="q"), Understanding(goal="g"), [])

    async def crash(prompt, *, partial):
        raise ConnectionError("socket closed")
        yield  # pragma: no cover

    monkeypatch.setattr(engine, "_stream", crash)
    with pytest.raises(ReasoningEngineError, match="ConnectionError"):
        await engine.understand(Query(text="q"), SessionState())


@pytest.mark.asyncio
async def test_answer_streams_and_wraps_errors(monkeypatch) -> None:
    engine = ClaudeReasoningEngine()

    async def stream(prompt, *, partial):
        assert partial
        yield TextDelta(text="Hi")
        raise RuntimeError("dropped")

    monkeypatch.setattr(engine, "_stream", stream)
    received = []
    with pytest.raises(ReasoningEngineError) as excinfo:
        async for event in engine.answer(Query(text="q"), Understanding(goal="g"), [], SessionState()):
            received.append(event)
    assert received == [TextDelta(text="Hi")]
    assert excinfo.value.operation == "answer"
