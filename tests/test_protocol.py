from __future__ import annotations

from eames.engine.protocol import (
    AssistantMessage,
    BlockStart,
    BlockStop,
    FinalResult,
    TextDelta,
    ThinkingDelta,
    ToolResult,
    ToolResults,
    UnknownEvent,
    parse_event,
)


def test_result_event_carries_usage_and_cost() -> None:
    event = parse_event({
        "type": "result",
        "subtype": "success",
        "result": "All done",
        "usage": {"input_tokens": 120, "output_tokens": 30},
        "total_cost_usd": 0.0042,
    })
    assert isinstance(event, FinalResult)
    assert event.result == "All done"
    assert not event.is_error
    assert event.usage == {"input_tokens": 120, "output_tokens": 30}
    assert event.cost_usd == 0.0042


def test_error_subtype_marks_result_as_error() -> None:
    event = parse_event({
        "type": "result",
        "subtype": "error_max_turns",
        "errors": ["too many turns"],
    })
    assert isinstance(event, FinalResult)
    assert event.is_error
    assert event.errors == ("too many turns",)
    assert event.result == ""


def test_stream_deltas() -> None:
    text = parse_event({"type": "stream_event", "event": {
        "type": "content_block_delta", "delta": {"type": "text_delta", "text": "hi"}}})
    thinking = parse_event({"type": "stream_event", "event": {
        "type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": "hm"}}})
    other = parse_event({"type": "stream_event", "event": {
        "type": "content_block_delta", "delta": {"type": "input_json_delta"}}})
    stop = parse_event({"type": "stream_event", "event": {"type": "content_block_stop"}})
    assert text == TextDelta(text="hi")
    assert thinking == ThinkingDelta(text="hm")
    assert isinstance(other, UnknownEvent)
    assert stop == BlockStop()


def test_block_start_names_tool_only_for_tool_blocks() -> None:
    tool = parse_event({"type": "stream_event", "event": {
        "type": "content_block_start",
        "content_block": {"type": "tool_use", "name": "Bash"}}})
    text = parse_event({"type": "stream_event", "event": {
        "type": "content_block_start",
        "content_block": {"type": "text", "name": "ignored"}}})
    assert tool == BlockStart(block_type="tool_use", tool_name="Bash")
    assert text == BlockStart(block_type="text", tool_name=None)


def test_assistant_message_blocks() -> None:
    event = parse_event({
        "type": "assistant",
        "message": {"content": [
            {"type": "text", "text": "Checking"},
            {"type": "tool_use", "id": "tu_9", "name": "Grep", "input": {"pattern": "x"}},
            {"type": "thinking", "thinking": "dropped"},
        ]},
    })
    assert isinstance(event, AssistantMessage)
    assert event.text == "Checking"
    assert [b.name for b in event.tool_uses] == ["Grep"]
    assert event.tool_uses[0].input == {"pattern": "x"}


def test_tool_result_inside_user_message() -> None:
    event = parse_event({
        "type": "user",
        "message": {"content": [{
            "type": "tool_result",
            "tool_use_id": "tu_9",
            "content": [{"type": "text", "text": "3 matches"}],
            "is_error": False,
        }]},
    })
    assert event == ToolResults(results=(
        ToolResult(tool_use_id="tu_9", content="3 matches", is_error=False),
    ))


def test_user_message_keeps_every_parallel_tool_result() -> None:
    event = parse_event({
        "type": "user",
        "message": {"content": [
            {"type": "tool_result", "tool_use_id": "a", "content": "file body"},
            {"type": "text", "text": "ignored"},
            {"type": "tool_result", "tool_use_id": "b", "content": "no match",
             "is_error": True},
        ]},
    })
    assert [(r.tool_use_id, r.is_error) for r in event.results] == [("a", False), ("b", True)]


def test_user_message_without_tool_results_is_unknown() -> None:
    event = parse_event({"type": "user", "message": {"content": [{"type": "text", "text": "hi"}]}})
    assert event == UnknownEvent(raw_type="user")


def test_garbage_input_is_unknown() -> None:
    assert isinstance(parse_event({}), UnknownEvent)
    assert isinstance(parse_event({"type": "system", "subtype": "compact"}), UnknownEvent)
    assert isinstance(parse_event({"type": "stream_event", "event": None}), UnknownEvent)
