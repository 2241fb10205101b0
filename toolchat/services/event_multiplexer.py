"""
Encode outbound events as SSE frames and enforce their ordering rules.

* per tool id, any number of `running` states and at most one terminal
  (`success`/`error`) state; nothing for that id after the terminal one;
* `new_turn` at most once per turn;
* after `close()` (normal end, error or cancellation) nothing is written;
  the stream always ends with `{"type": "done"}` and `data: [DONE]`.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Set

from toolchat.logging_config import logger
from toolchat.models import OutboundEvent, OutboundEventType

TERMINAL_STATUSES = frozenset({"success", "error"})


def encode_sse_event(payload: Dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def encode_sse_done() -> bytes:
    return b"data: [DONE]\n\n"


class EventMultiplexer:
    def __init__(self) -> None:
        self._terminal_ids: Set[str] = set()
        self._new_turn_sent = False
        self._closed = False
        self.content_chars = 0
        self.sent: List[OutboundEventType] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def new_turn_sent(self) -> bool:
        return self._new_turn_sent

    def _admit_state(self, state: Dict[str, Any]) -> bool:
        tool_id = state.get("id")
        if not tool_id:
            return True
        if tool_id in self._terminal_ids:
            logger.debug(
                "multiplexer: dropping %s state for finished tool %s",
                state.get("status"),
                tool_id,
            )
            return False
        if state.get("status") in TERMINAL_STATUSES:
            self._terminal_ids.add(tool_id)
        return True

    def _filter(self, event: OutboundEvent) -> Optional[OutboundEvent]:
        if event.type == OutboundEventType.TOOL_STATE:
            if event.state is not None and not self._admit_state(event.state):
                return None
            if event.states is not None:
                kept = [s for s in event.states if self._admit_state(s)]
                if not kept:
                    return None
                if len(kept) != len(event.states):
                    event = OutboundEvent(
                        OutboundEventType.TOOL_STATE, states=kept, extra=event.extra
                    )
            return event
        if event.type == OutboundEventType.NEW_TURN:
            if self._new_turn_sent:
                return None
            self._new_turn_sent = True
            return event
        if event.type == OutboundEventType.CONTENT:
            if not event.content:
                return None
            self.content_chars += len(event.content)
        if event.type == OutboundEventType.DONE:
            return None
        return event

    def encode(self, event: OutboundEvent) -> Optional[bytes]:
        if self._closed:
            return None
        admitted = self._filter(event)
        if admitted is None:
            return None
        self.sent.append(admitted.type)
        return encode_sse_event(admitted.to_payload())

    def close(self) -> List[bytes]:
        if self._closed:
            return []
        self._closed = True
        self.sent.append(OutboundEventType.DONE)
        return [encode_sse_event({"type": OutboundEventType.DONE.value}), encode_sse_done()]

    def abort(self) -> None:
        """
        Mark the stream closed without writing anything (client went away).
        """
        self._closed = True


__all__ = ["EventMultiplexer", "encode_sse_done", "encode_sse_event"]
