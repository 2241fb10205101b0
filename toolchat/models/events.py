"""
Event types flowing through a conversation turn.

Upstream events are decoded once from the model's SSE stream into a closed
set of frozen dataclasses; downstream events are what the caller receives,
one SSE frame each.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_fragment: Optional[str] = None


@dataclass(frozen=True)
class StreamDone:
    finish_reason: Optional[str] = None


@dataclass(frozen=True)
class UpstreamError:
    """An `{"error": ...}` frame sent by the model API inside the stream."""

    message: str
    code: Optional[str] = None


UpstreamEvent = Union[ContentDelta, ToolCallDelta, StreamDone, UpstreamError]


class OutboundEventType(str, Enum):
    SESSION = "session"
    STATUS = "status"
    CONTENT = "content"
    TOOL_STATE = "tool_state"
    NEW_TURN = "new_turn"
    ERROR = "error"
    DONE = "done"


@dataclass
class OutboundEvent:
    type: OutboundEventType
    content: Optional[str] = None
    state: Optional[Dict[str, Any]] = None
    states: Optional[List[Dict[str, Any]]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type.value}
        if self.content is not None:
            payload["content"] = self.content
        if self.state is not None:
            payload["state"] = self.state
        if self.states is not None:
            payload["states"] = self.states
        payload.update(self.extra)
        return payload

    @classmethod
    def status(cls, message: str, **extra: Any) -> "OutboundEvent":
        return cls(OutboundEventType.STATUS, content=message, extra=extra)

    @classmethod
    def text(cls, chunk: str) -> "OutboundEvent":
        return cls(OutboundEventType.CONTENT, content=chunk)

    @classmethod
    def error(cls, message: str, **extra: Any) -> "OutboundEvent":
        return cls(OutboundEventType.ERROR, content=message, extra=extra)


__all__ = [
    "ContentDelta",
    "OutboundEvent",
    "OutboundEventType",
    "StreamDone",
    "ToolCallDelta",
    "UpstreamError",
    "UpstreamEvent",
]
