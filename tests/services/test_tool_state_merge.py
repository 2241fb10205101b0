import json

from toolchat.services.tool_state_merge import (
    ToolStateView,
    merge_tool_state,
    merge_tool_states,
    parse_tool_state_event,
    summarize_tool_states,
)


def _state(tool_id, status, *, name="search_docs", arguments=None, result=None):
    state = {"id": tool_id, "type": "function", "name": name, "status": status}
    state["arguments"] = arguments if arguments is not None else {"q": "x"}
    if result is not None:
        state["result"] = result
    return state


def test_repeated_running_then_success_collapse_to_one_entry():
    merged = []
    for result in ("partial 1", "partial 2", None):
        merged = merge_tool_state(merged, _state("t1", "running", result=result))
    merged = merge_tool_state(merged, _state("t1", "success", result="final"))

    assert len(merged) == 1
    assert merged[0]["status"] == "success"
    assert merged[0]["result"] == "final"


def test_running_never_overwrites_a_terminal_state():
    merged = merge_tool_states([], [_state("t1", "error", result="failed")])
    merged = merge_tool_state(merged, _state("t1", "running"))
    assert merged[0]["status"] == "error"
    assert merged[0]["result"] == "failed"


def test_terminal_replacement_keeps_the_original_id():
    merged = [_state("t1", "running")]
    merged = merge_tool_state(merged, _state("other-id", "success", result="ok"))
    assert merged == [{**_state("other-id", "success", result="ok"), "id": "t1"}]


def test_same_tool_with_new_arguments_after_completion_is_appended():
    merged = [_state("t1", "success", result="one")]
    merged = merge_tool_state(merged, _state("t2", "success", arguments={"q": "y"}, result="two"))
    assert [(s["id"], s["result"]) for s in merged] == [("t1", "one"), ("t2", "two")]


def test_running_for_same_name_after_completion_is_ignored():
    merged = [_state("t1", "success", result="one")]
    merged = merge_tool_state(merged, _state("t2", "running", arguments={"q": "y"}))
    assert merged == [_state("t1", "success", result="one")]


def test_merge_keeps_old_result_when_update_has_none():
    merged = [_state("t1", "running", result="progress")]
    merged = merge_tool_state(merged, _state("t1", "running"))
    assert merged[0]["result"] == "progress"


def test_status_is_monotonic_over_any_update_order():
    updates = [
        _state("t1", "running"),
        _state("t1", "success", result="done"),
        _state("t1", "running"),
        _state("t1", "running", result="late"),
    ]
    merged = []
    seen_terminal = False
    for update in updates:
        merged = merge_tool_state(merged, update)
        if merged[0]["status"] in ("success", "error"):
            seen_terminal = True
        if seen_terminal:
            assert merged[0]["status"] == "success"
    assert merged[0]["result"] == "done"


def test_batched_states_do_not_duplicate_entries():
    batch = {"type": "tool_state", "states": [_state("a", "running"), _state("b", "running", name="fetch_page")]}
    merged = merge_tool_states([], parse_tool_state_event(batch))
    merged = merge_tool_states(merged, parse_tool_state_event(batch))
    assert [s["id"] for s in merged] == ["a", "b"]


def test_parse_tool_state_event_accepts_raw_sse_lines():
    line = "data: " + json.dumps({"type": "tool_state", "state": _state("a", "running")})
    assert parse_tool_state_event(line)[0]["id"] == "a"
    assert parse_tool_state_event(line.encode("utf-8"))[0]["id"] == "a"
    assert parse_tool_state_event("data: [DONE]") == []
    assert parse_tool_state_event({"type": "content", "content": "x"}) == []


def test_incomplete_and_glued_states():
    event = {
        "type": "tool_state",
        "states": [
            {"id": "a", "status": "running"},
            {"id": "b", "type": "function", "name": "xxsearch_docs", "status": "running"},
        ],
    }
    parsed = parse_tool_state_event(event)
    assert [(s["id"], s["name"]) for s in parsed] == [("b", "search_docs")]


def test_tool_state_view_summary():
    view = ToolStateView()
    view.feed({"type": "tool_state", "states": [_state("a", "running"), _state("b", "running", name="fetch_page")]})
    view.feed({"type": "tool_state", "state": _state("a", "success", result="ok")})
    view.feed({"type": "tool_state", "state": _state("b", "error", name="fetch_page", result="Error: x")})

    assert view.summary() == {"running": 0, "success": 1, "error": 1, "total": 2}
    assert summarize_tool_states(None) == {"running": 0, "success": 0, "error": 0, "total": 0}
