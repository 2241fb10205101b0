"""
Sequential tool execution and the follow-up model call.

`ToolSequencer.execute` runs the final tool queue strictly in order over the
session's single transport. Every call is guarded on its own: a failure
becomes an `error` state plus an error tool message and the next call
still runs. Results are normalized to display strings; the
sequential-reasoning tool additionally writes its state back into the
session record so the next turn can resume the chain.

`build_history` + `follow_up` then replay the validated history through a
second streaming call whose content becomes the user-facing reply.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence

from redis.asyncio import Redis

from toolchat.errors import UpstreamModelError
from toolchat.log_sanitizer import truncate_for_log
from toolchat.logging_config import logger
from toolchat.mcp.base import ToolTransport
from toolchat.models import (
    ContentDelta,
    ModelConfig,
    OutboundEvent,
    OutboundEventType,
    ReasoningState,
    ToolCall,
    ToolCallStatus,
    UpstreamError,
)
from toolchat.provider.llm_client import LLMClient
from toolchat.storage.redis_service import update_session_fields

from .message_history import validate_history
from .prompts import is_sequential_thinking_tool
from .stream_decoder import StreamAccumulator, accumulate, decode_stream, error_from_frame
from .tool_names import KNOWN_TOOL_PREFIXES, repair_tool_name
from .tool_result_formatter import extract_reasoning_state, normalize_tool_result, preview

UNCONFIRMED_ERROR = "Tool call could not be confirmed by the model and was not executed"


@dataclass
class SequenceOutcome:
    calls: List[ToolCall] = field(default_factory=list)
    reasoning_state: Optional[ReasoningState] = None
    reasoning_cleared: bool = False

    @property
    def failed(self) -> List[ToolCall]:
        return [c for c in self.calls if c.status == ToolCallStatus.ERROR]


class ToolSequencer:
    def __init__(
        self,
        llm: LLMClient,
        redis: Redis,
        *,
        preview_chars: Optional[int] = None,
    ) -> None:
        self.llm = llm
        self.redis = redis
        self.preview_chars = preview_chars

    def _state_event(self, call: ToolCall) -> OutboundEvent:
        text = call.result if call.status != ToolCallStatus.ERROR else (call.result or call.error)
        return OutboundEvent(
            OutboundEventType.TOOL_STATE,
            state=call.to_state(result_preview=preview(text, self.preview_chars)),
        )

    async def execute(
        self,
        calls: Sequence[ToolCall],
        *,
        transport: ToolTransport,
        session_id: Optional[str],
        known_tools: Iterable[str] = (),
        outcome: Optional[SequenceOutcome] = None,
    ) -> AsyncIterator[OutboundEvent]:
        """
        Run `calls` in order, yielding tool_state/status events; results are
        recorded on the ToolCall objects and in `outcome`.
        """
        outcome = outcome if outcome is not None else SequenceOutcome()
        known = list(known_tools)
        queue = list(calls)
        outcome.calls = queue

        if queue:
            snapshot = []
            for call in queue:
                call.mark(ToolCallStatus.RUNNING)
                snapshot.append(call.to_state())
            yield OutboundEvent(OutboundEventType.TOOL_STATE, states=snapshot)

        for position, call in enumerate(queue, start=1):
            if not call.confirmed:
                call.error = UNCONFIRMED_ERROR
                call.result = f"Error: {UNCONFIRMED_ERROR}"
                call.mark(ToolCallStatus.ERROR)
                logger.info("sequencer: skipping unconfirmed call %s (%s)", call.id, call.name)
                yield self._state_event(call)
                continue

            repaired = repair_tool_name(call.name, known)
            if repaired != call.name:
                logger.warning("sequencer: repaired tool name %r -> %r", call.name, repaired)
                call.name = repaired

            yield OutboundEvent.status(
                f"Running tool {call.name} ({position}/{len(queue)})",
                tool_call_id=call.id,
            )
            yield self._state_event(call)
            logger.info(
                "sequencer: calling %s id=%s args=%s",
                call.name,
                call.id,
                truncate_for_log(call.arguments),
            )

            try:
                raw_result = await transport.call_tool(call.name, call.arguments)
            except Exception as exc:
                message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
                call.error = message
                call.result = f"Error: {message}"
                call.mark(ToolCallStatus.ERROR)
                logger.warning("sequencer: tool %s (%s) failed: %s", call.name, call.id, message)
                yield self._state_event(call)
                continue

            call.result = normalize_tool_result(raw_result)
            call.mark(ToolCallStatus.SUCCESS)
            logger.info(
                "sequencer: tool %s (%s) succeeded: %s",
                call.name,
                call.id,
                truncate_for_log(call.result),
            )
            yield self._state_event(call)

            if is_sequential_thinking_tool(call.name):
                async for event in self._persist_reasoning(call, raw_result, session_id, outcome):
                    yield event

    async def _persist_reasoning(
        self,
        call: ToolCall,
        raw_result: Any,
        session_id: Optional[str],
        outcome: SequenceOutcome,
    ) -> AsyncIterator[OutboundEvent]:
        state = extract_reasoning_state(raw_result)
        if state is None:
            return
        number = state.get("thoughtNumber")
        total = state.get("totalThoughts")
        if number and total:
            yield OutboundEvent.status(f"Thinking step {number}/{total}")

        if state.get("nextThoughtNeeded") is True:
            outcome.reasoning_state = ReasoningState(name=call.name, state=state)
            outcome.reasoning_cleared = False
        else:
            outcome.reasoning_state = None
            outcome.reasoning_cleared = True

        if not session_id:
            return
        await update_session_fields(
            self.redis, session_id, reasoning_state=outcome.reasoning_state
        )

    @staticmethod
    def build_history(
        base_messages: Sequence[Any],
        calls: Sequence[ToolCall],
        *,
        assistant_content: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        history: List[Any] = list(base_messages)
        if calls:
            history.append(
                {
                    "role": "assistant",
                    "content": assistant_content or None,
                    "tool_calls": [call.to_openai() for call in calls],
                }
            )
            for call in calls:
                history.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "name": call.name,
                        "content": call.result,
                    }
                )
        return validate_history(history)

    async def follow_up(
        self,
        config: ModelConfig,
        history: Sequence[Dict[str, Any]],
    ) -> AsyncIterator[OutboundEvent]:
        """
        Stream the reply to the tool results; tool-call deltas are ignored.
        """
        yield OutboundEvent(OutboundEventType.NEW_TURN)
        state = StreamAccumulator()
        async for event in decode_stream(self.llm.stream_chat(config, history), tool_calls=False):
            state = accumulate(state, event)
            if isinstance(event, UpstreamError):
                raise error_from_frame(event)
            if isinstance(event, ContentDelta):
                yield OutboundEvent.text(event.text)
        if not state.saw_done:
            raise UpstreamModelError("Model stream ended without a terminal signal")


__all__ = [
    "KNOWN_TOOL_PREFIXES",
    "SequenceOutcome",
    "ToolSequencer",
    "UNCONFIRMED_ERROR",
    "repair_tool_name",
]
