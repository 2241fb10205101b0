import json

from toolchat.models import OutboundEvent, OutboundEventType
from toolchat.services.event_multiplexer import EventMultiplexer, encode_sse_done, encode_sse_event


def _decode(frame: bytes):
    text = frame.decode("utf-8")
    assert text.startswith("data: ") and text.endswith("\n\n")
    body = text[len("data: ") : -2]
    return body if body == "[DONE]" else json.loads(body)


def _tool_state(tool_id, status):
    return OutboundEvent(
        OutboundEventType.TOOL_STATE,
        state={"id": tool_id, "type": "function", "name": "search_docs", "status": status},
    )


def test_encode_sse_event_keeps_unicode():
    assert encode_sse_event({"type": "content", "content": "héllo"}) == (
        'data: {"type": "content", "content": "héllo"}\n\n'.encode("utf-8")
    )
    assert encode_sse_done() == b"data: [DONE]\n\n"


def test_nothing_follows_a_terminal_state_for_the_same_tool():
    mux = EventMultiplexer()
    assert mux.encode(_tool_state("a", "running")) is not None
    assert mux.encode(_tool_state("a", "running")) is not None
    assert mux.encode(_tool_state("a", "success")) is not None
    assert mux.encode(_tool_state("a", "running")) is None
    assert mux.encode(_tool_state("a", "error")) is None
    assert mux.encode(_tool_state("b", "running")) is not None


def test_batched_states_are_filtered_per_tool():
    mux = EventMultiplexer()
    mux.encode(_tool_state("a", "error"))
    frame = mux.encode(
        OutboundEvent(
            OutboundEventType.TOOL_STATE,
            states=[
                {"id": "a", "status": "running"},
                {"id": "b", "status": "running"},
            ],
        )
    )
    assert _decode(frame)["states"] == [{"id": "b", "status": "running"}]


def test_new_turn_is_sent_once_and_empty_content_is_dropped():
    mux = EventMultiplexer()
    assert mux.encode(OutboundEvent(OutboundEventType.NEW_TURN)) is not None
    assert mux.encode(OutboundEvent(OutboundEventType.NEW_TURN)) is None
    assert mux.new_turn_sent
    assert mux.encode(OutboundEvent.text("")) is None
    assert mux.encode(OutboundEvent.text("abc")) is not None
    assert mux.content_chars == 3


def test_close_ends_with_done_frames_and_blocks_later_writes():
    mux = EventMultiplexer()
    mux.encode(OutboundEvent.status("working"))
    assert mux.encode(OutboundEvent(OutboundEventType.DONE)) is None

    frames = mux.close()
    assert [_decode(f) for f in frames] == [{"type": "done"}, "[DONE]"]
    assert mux.closed
    assert mux.encode(OutboundEvent.text("late")) is None
    assert mux.close() == []
    assert mux.sent == [OutboundEventType.STATUS, OutboundEventType.DONE]


def test_abort_stops_output_without_frames():
    mux = EventMultiplexer()
    mux.abort()
    assert mux.encode(OutboundEvent.text("x")) is None
    assert mux.close() == []


def test_error_event_payload_carries_extra_fields():
    mux = EventMultiplexer()
    frame = mux.encode(OutboundEvent.error("bad", error_type="upstream_error", recoverable=True))
    assert _decode(frame) == {
        "type": "error",
        "content": "bad",
        "error_type": "upstream_error",
        "recoverable": True,
    }
