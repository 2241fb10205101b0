"""
Decoder for the model's chat-completion SSE stream.

Bytes arrive in arbitrary chunks; `SSEFrameDecoder` keeps the incomplete
tail of the last line (and any split UTF-8 sequence) between feeds and
turns every complete `data:` line into typed events. Each frame is decoded
exactly once here; downstream code only sees `ContentDelta`,
`ToolCallDelta`, `UpstreamError` and `StreamDone`.

Tool-call argument fragments are kept as raw text for diagnostics but are
never assembled into JSON: the authoritative arguments come from the
non-streaming reconciliation call.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from toolchat.errors import UpstreamModelError
from toolchat.logging_config import logger
from toolchat.models import ContentDelta, StreamDone, ToolCallDelta, UpstreamError, UpstreamEvent

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEFrameDecoder:
    def __init__(self, *, tool_calls: bool = True) -> None:
        self._tool_calls = tool_calls
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped_frames = 0

    def feed(self, chunk: bytes) -> List[UpstreamEvent]:
        self._buffer += self._utf8.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: List[UpstreamEvent] = []
        for line in lines:
            events.extend(self._decode_line(line))
        return events

    def finish(self) -> List[UpstreamEvent]:
        """
        Flush whatever is left once the byte stream has ended.
        """
        self._buffer += self._utf8.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        if not tail.strip():
            return []
        return self._decode_line(tail)

    def _decode_line(self, line: str) -> List[UpstreamEvent]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            # Comments (": keep-alive"), event names and blank separators.
            return []
        payload = line[len(DATA_PREFIX) :].strip()
        if not payload:
            return []
        if payload == DONE_SENTINEL:
            return [StreamDone()]
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.skipped_frames += 1
            logger.warning("stream_decoder: skipping malformed frame: %s", payload[:200])
            return []
        if not isinstance(data, dict):
            self.skipped_frames += 1
            logger.warning("stream_decoder: skipping non-object frame: %s", payload[:200])
            return []
        return self._decode_payload(data)

    def _decode_payload(self, data: Dict[str, Any]) -> List[UpstreamEvent]:
        error = data.get("error")
        if isinstance(error, (dict, str)):
            logger.warning("stream_decoder: upstream error frame: %s", error)
            return [_upstream_error(error)]

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]
        delta = choice.get("delta") or {}
        finish_reason = choice.get("finish_reason")
        events: List[UpstreamEvent] = []

        if not isinstance(delta, dict):
            self.skipped_frames += 1
            return []

        tool_deltas = delta.get("tool_calls")
        if isinstance(tool_deltas, list) and tool_deltas:
            if self._tool_calls:
                for position, raw in enumerate(tool_deltas):
                    event = _tool_call_delta(raw, position)
                    if event is not None:
                        events.append(event)
        else:
            content = delta.get("content")
            if isinstance(content, str) and content:
                events.append(ContentDelta(content))

        # finish_reason is informative only; the stream ends on [DONE].
        if finish_reason:
            logger.debug("stream_decoder: finish_reason=%s", finish_reason)
        return events


def _upstream_error(error: Any) -> UpstreamError:
    if isinstance(error, str):
        return UpstreamError(message=error or "Model API reported an error")
    message = error.get("message")
    code = error.get("code") or error.get("type")
    return UpstreamError(
        message=message if isinstance(message, str) and message else json.dumps(error),
        code=str(code) if code is not None else None,
    )


def _tool_call_delta(raw: Any, position: int) -> Optional[ToolCallDelta]:
    if not isinstance(raw, dict):
        return None
    index = raw.get("index")
    if not isinstance(index, int):
        index = position
    function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
    call_id = raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else None
    name = function.get("name") if isinstance(function.get("name"), str) and function.get("name") else None
    fragment = function.get("arguments") if isinstance(function.get("arguments"), str) else None
    return ToolCallDelta(index=index, id=call_id, name=name, arguments_fragment=fragment or None)


def error_from_frame(event: UpstreamError) -> UpstreamModelError:
    details = {"code": event.code} if event.code else None
    return UpstreamModelError(f"Model API error: {event.message}", details=details)


async def decode_stream(
    chunks: AsyncIterable[bytes], *, tool_calls: bool = True
) -> AsyncIterator[UpstreamEvent]:
    decoder = SSEFrameDecoder(tool_calls=tool_calls)
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.finish():
        yield event


@dataclass
class ProvisionalToolCall:
    index: int
    id: Optional[str] = None
    name: str = ""
    raw_arguments: str = ""


@dataclass
class StreamAccumulator:
    """
    Everything one streaming pass produced, threaded through `accumulate`.
    """

    content: str = ""
    tool_calls: Dict[int, ProvisionalToolCall] = field(default_factory=dict)
    saw_done: bool = False
    error: Optional[UpstreamError] = None

    @property
    def has_tool_calls(self) -> bool:
        return any(call.name or call.id for call in self.tool_calls.values())

    def provisional_calls(self) -> List[ProvisionalToolCall]:
        return [self.tool_calls[i] for i in sorted(self.tool_calls)]


def accumulate(acc: StreamAccumulator, event: UpstreamEvent) -> StreamAccumulator:
    if isinstance(event, ContentDelta):
        return replace(acc, content=acc.content + event.text)
    if isinstance(event, StreamDone):
        return replace(acc, saw_done=True)
    if isinstance(event, UpstreamError):
        return replace(acc, error=event)
    if isinstance(event, ToolCallDelta):
        calls = dict(acc.tool_calls)
        current = calls.get(event.index) or ProvisionalToolCall(index=event.index)
        updated = ProvisionalToolCall(
            index=event.index,
            id=current.id or event.id,
            # Names occasionally arrive split across deltas.
            name=current.name + (event.name or "") if event.name != current.name else current.name,
            raw_arguments=current.raw_arguments + (event.arguments_fragment or ""),
        )
        calls[event.index] = updated
        return replace(acc, tool_calls=calls)
    return acc


__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "ProvisionalToolCall",
    "SSEFrameDecoder",
    "StreamAccumulator",
    "accumulate",
    "decode_stream",
    "error_from_frame",
]
