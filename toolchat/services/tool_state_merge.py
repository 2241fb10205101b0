"""
Client-side merge of `tool_state` notifications.

Consumers of the conversation stream receive repeated snapshots for the
same logical tool call (a batch of `running` states, per-call `running`
states, then one terminal state). `merge_tool_states` folds them into one
stable list:

* incoming entries match existing ones by id, then by name + equal
  arguments, then by name alone;
* a `running` update never overwrites a terminal (`success`/`error`) entry;
* `running` -> terminal replaces the entry but keeps the original id;
* a terminal entry followed by a same-name call with different arguments
  is a separate invocation and is appended;
* otherwise fields are merged, keeping the old result when the update has
  none and never leaving a terminal status.

Every incoming entry is matched against the list as updated by the entries
before it, so a batch cannot append the same untracked call twice.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional, Union

from toolchat.logging_config import logger

from .tool_names import repair_tool_name

ToolState = Dict[str, Any]

TERMINAL = frozenset({"success", "error"})


def _is_terminal(state: ToolState) -> bool:
    return state.get("status") in TERMINAL


def _arguments(state: ToolState) -> Any:
    return state.get("arguments") or {}


def parse_tool_state(raw: Any) -> Optional[ToolState]:
    if not isinstance(raw, dict):
        return None
    if not raw.get("id") or not raw.get("type") or not raw.get("name"):
        logger.debug("tool_state_merge: ignoring incomplete state %s", raw)
        return None
    name = repair_tool_name(str(raw["name"]))
    return {
        "id": raw["id"],
        "type": raw["type"],
        "name": name,
        "arguments": raw.get("arguments"),
        "status": raw.get("status"),
        "result": raw.get("result"),
    }


def parse_tool_state_event(frame: Union[str, bytes, Dict[str, Any], None]) -> List[ToolState]:
    """
    Extract tool states from one event: a payload dict or a raw `data:` line.
    Handles both the single `state` and the batched `states` form.
    """
    data: Any = frame
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", errors="replace")
    if isinstance(frame, str):
        text = frame.strip()
        if text.startswith("data:"):
            text = text[len("data:") :].strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return []
    if not isinstance(data, dict) or data.get("type") != "tool_state":
        return []

    single = data.get("state")
    if isinstance(single, dict) and single.get("id"):
        parsed = parse_tool_state(single)
        return [parsed] if parsed else []
    states = data.get("states")
    if isinstance(states, list):
        return [p for p in (parse_tool_state(s) for s in states) if p is not None]
    return []


def _find_match(existing: List[ToolState], incoming: ToolState) -> int:
    for idx, state in enumerate(existing):
        if state.get("id") == incoming.get("id"):
            return idx
    for idx, state in enumerate(existing):
        if state.get("name") == incoming.get("name") and _arguments(state) == _arguments(incoming):
            return idx
    for idx, state in enumerate(existing):
        if state.get("name") == incoming.get("name"):
            return idx
    return -1


def merge_tool_state(existing: List[ToolState], incoming: ToolState) -> List[ToolState]:
    idx = _find_match(existing, incoming)
    if idx < 0:
        return [*existing, dict(incoming)]

    current = existing[idx]
    merged = list(existing)

    if incoming.get("status") == "running" and _is_terminal(current):
        return existing

    if current.get("status") == "running" and _is_terminal(incoming):
        merged[idx] = {**incoming, "id": current.get("id")}
        return merged

    if (
        _is_terminal(current)
        and incoming.get("arguments")
        and _arguments(current) != _arguments(incoming)
    ):
        return [*existing, dict(incoming)]

    status = current.get("status") if _is_terminal(current) else (
        incoming.get("status") or current.get("status")
    )
    merged[idx] = {
        **current,
        **{k: v for k, v in incoming.items() if v is not None},
        "id": current.get("id"),
        "result": incoming.get("result") or current.get("result"),
        "status": status,
    }
    return merged


def merge_tool_states(
    existing: Optional[Iterable[ToolState]], incoming: Optional[Iterable[ToolState]]
) -> List[ToolState]:
    merged = list(existing or [])
    for state in incoming or []:
        merged = merge_tool_state(merged, state)
    return merged


def summarize_tool_states(states: Optional[Iterable[ToolState]]) -> Dict[str, int]:
    items = list(states or [])
    return {
        "running": sum(1 for s in items if s.get("status") == "running"),
        "success": sum(1 for s in items if s.get("status") == "success"),
        "error": sum(1 for s in items if s.get("status") == "error"),
        "total": len(items),
    }


class ToolStateView:
    """
    Running merged view for a consumer reading the event stream.
    """

    def __init__(self) -> None:
        self.states: List[ToolState] = []

    def feed(self, frame: Union[str, bytes, Dict[str, Any]]) -> List[ToolState]:
        incoming = parse_tool_state_event(frame)
        if incoming:
            self.states = merge_tool_states(self.states, incoming)
        return self.states

    def summary(self) -> Dict[str, int]:
        return summarize_tool_states(self.states)


__all__ = [
    "ToolState",
    "ToolStateView",
    "merge_tool_state",
    "merge_tool_states",
    "parse_tool_state",
    "parse_tool_state_event",
    "summarize_tool_states",
]
