"""
One conversation turn, end to end.

`prepare` does everything that may reject the request before a response
starts (model config, connection params, first connect). `stream` then
runs the pipeline in a producer task and relays its events through the
multiplexer:

    session/status -> first streaming pass (content + provisional tool calls)
    -> authoritative reconciliation -> sequential tool execution
    -> new_turn -> follow-up streaming pass -> done

The producer task owns every upstream read, so a turn timeout or a client
disconnect cancels it as a whole; the outbound side stops writing at once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from redis.asyncio import Redis

from toolchat.errors import ToolchatError, UpstreamModelError
from toolchat.logging_config import logger
from toolchat.mcp.connector import ToolConnector
from toolchat.models import (
    ChatMessage,
    ContentDelta,
    ConversationRequest,
    ModelConfig,
    OutboundEvent,
    OutboundEventType,
    UpstreamError,
    build_openai_tools,
)
from toolchat.provider.config import ModelConfigProvider
from toolchat.provider.llm_client import LLMClient
from toolchat.sessions.resolver import ResolvedSession, SessionResolver
from toolchat.sessions.transport_registry import TransportRegistry
from toolchat.settings import settings
from toolchat.storage.redis_service import touch_session

from .event_multiplexer import EventMultiplexer
from .prompts import TOOLS_UNAVAILABLE_NOTE, build_user_content
from .stream_decoder import StreamAccumulator, accumulate, decode_stream, error_from_frame
from .tool_call_aggregator import ToolCallAggregator
from .tool_sequencer import SequenceOutcome, ToolSequencer

_END = object()


@dataclass
class PreparedTurn:
    request: ConversationRequest
    resolved: ResolvedSession
    config: ModelConfig

    def base_messages(self) -> List[ChatMessage]:
        system_prompt = self.resolved.system_prompt
        if self.resolved.tools_unavailable:
            system_prompt = f"{system_prompt}\n\n{TOOLS_UNAVAILABLE_NOTE}"
        user_content = build_user_content(
            self.request.user_message, self.resolved.reasoning_state
        )
        return [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_content),
        ]

    def tool_schemas(self) -> Optional[List[Dict[str, Any]]]:
        session = self.resolved.session
        if not self.resolved.is_tool_mode or session is None:
            return None
        return build_openai_tools(session.tools) or None


class ConversationService:
    def __init__(
        self,
        *,
        redis: Redis,
        llm: LLMClient,
        registry: TransportRegistry,
        connector: ToolConnector,
        config_provider: ModelConfigProvider,
        turn_timeout: Optional[float] = None,
    ) -> None:
        self.redis = redis
        self.llm = llm
        self.config_provider = config_provider
        self.resolver = SessionResolver(redis, registry, connector)
        self.aggregator = ToolCallAggregator(llm)
        self.sequencer = ToolSequencer(llm, redis)
        self.turn_timeout = turn_timeout or settings.turn_timeout_seconds

    async def prepare(self, request: ConversationRequest) -> PreparedTurn:
        """
        Raises ModelConfigError / ConnectionConfigError / TransportError
        before any byte of the response is produced.
        """
        config = self.config_provider.get_default()
        resolved = await self.resolver.resolve(request, model_ref=config.ref)
        if resolved.session is not None and resolved.session.model_ref not in (None, config.ref):
            config = self.config_provider.get(resolved.session.model_ref)
        logger.info(
            "conversation: session=%s mode=%s tools=%d model=%s",
            resolved.session_id,
            resolved.mode,
            len(resolved.session.tools) if resolved.is_tool_mode and resolved.session else 0,
            config.model,
        )
        return PreparedTurn(request=request, resolved=resolved, config=config)

    async def run_turn(self, request: ConversationRequest) -> AsyncIterator[bytes]:
        turn = await self.prepare(request)
        async for frame in self.stream(turn):
            yield frame

    async def stream(self, turn: PreparedTurn) -> AsyncIterator[bytes]:
        mux = EventMultiplexer()
        queue: "asyncio.Queue[Any]" = asyncio.Queue()
        producer = asyncio.create_task(self._produce(turn, queue))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.turn_timeout
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                item = await asyncio.wait_for(queue.get(), timeout=remaining)
                if item is _END:
                    break
                frame = mux.encode(item)
                if frame is not None:
                    yield frame
        except asyncio.TimeoutError:
            logger.warning(
                "conversation: turn for session %s exceeded %.0fs",
                turn.resolved.session_id,
                self.turn_timeout,
            )
            producer.cancel()
            await asyncio.wait({producer})
            frame = mux.encode(
                OutboundEvent.error(
                    f"The turn exceeded {self.turn_timeout:.0f} seconds and was stopped",
                    error_type="turn_timeout",
                )
            )
            if frame is not None:
                yield frame
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("conversation: client went away; aborting turn %s", turn.resolved.session_id)
            mux.abort()
            raise
        finally:
            if not producer.done():
                producer.cancel()
        for frame in mux.close():
            yield frame

    async def _produce(self, turn: PreparedTurn, queue: "asyncio.Queue[Any]") -> None:
        try:
            async for event in self._events(turn):
                await queue.put(event)
        except asyncio.CancelledError:
            raise
        except ToolchatError as exc:
            logger.warning("conversation: turn failed: %s", exc.message)
            await queue.put(OutboundEvent.error(exc.message, error_type=exc.error_type))
        except Exception:
            logger.exception("conversation: unexpected failure in turn")
            await queue.put(
                OutboundEvent.error(
                    "Internal error while processing the conversation",
                    error_type="internal_error",
                )
            )
        await queue.put(_END)

    async def _events(self, turn: PreparedTurn) -> AsyncIterator[OutboundEvent]:
        resolved = turn.resolved
        yield OutboundEvent(
            OutboundEventType.SESSION,
            extra={
                "session_id": resolved.session_id,
                "mode": resolved.mode,
                "tools_available": resolved.is_tool_mode,
            },
        )
        for notice in resolved.notices:
            yield OutboundEvent.status(notice)

        messages = turn.base_messages()
        tools = turn.tool_schemas()

        acc = StreamAccumulator()
        chunks = self.llm.stream_chat(turn.config, messages, tools=tools)
        async for event in decode_stream(chunks, tool_calls=tools is not None):
            acc = accumulate(acc, event)
            if isinstance(event, UpstreamError):
                raise error_from_frame(event)
            if isinstance(event, ContentDelta):
                yield OutboundEvent.text(event.text)
        if not acc.saw_done:
            raise UpstreamModelError("Model stream ended without a terminal signal")

        transport, session = resolved.transport, resolved.session
        if tools is None or not acc.has_tool_calls or transport is None or session is None:
            await self._finish(turn)
            return

        yield OutboundEvent.status("Confirming tool calls")
        aggregation = await self.aggregator.aggregate(
            acc.provisional_calls(), config=turn.config, messages=messages, tools=tools
        )
        if aggregation.error:
            yield OutboundEvent.error(aggregation.error, recoverable=True)

        if not aggregation.calls:
            if aggregation.assistant_content and not acc.content:
                yield OutboundEvent.text(aggregation.assistant_content)
            await self._finish(turn)
            return

        outcome = SequenceOutcome()
        async for event in self.sequencer.execute(
            aggregation.calls,
            transport=transport,
            session_id=resolved.session_id,
            known_tools=[tool.name for tool in session.tools],
            outcome=outcome,
        ):
            yield event

        history = self.sequencer.build_history(
            messages, outcome.calls, assistant_content=acc.content
        )
        async for event in self.sequencer.follow_up(turn.config, history):
            yield event
        await self._finish(turn)

    async def _finish(self, turn: PreparedTurn) -> None:
        if turn.resolved.session_id and turn.resolved.session is not None:
            await touch_session(self.redis, turn.resolved.session_id)


__all__ = ["ConversationService", "PreparedTurn"]
