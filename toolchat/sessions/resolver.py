"""
Session resolution at the start of every turn.

Decides whether the turn runs in tool mode (a live transport plus the cached
tool catalog) or in stateless mode, reconnecting or provisioning transports
as needed:

* no usable session id and no connection params -> stateless;
* durable record + live local transport -> tool mode;
* durable record, no local transport -> reconnect (URL-style only, bounded
  attempts); on failure the transport pointer is cleared and the turn
  degrades to stateless with an explicit notice;
* no record + connection params -> provision a new session.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional, Tuple

from redis.asyncio import Redis

from toolchat.errors import ToolchatError, TransportError
from toolchat.logging_config import logger
from toolchat.mcp.base import ToolTransport
from toolchat.mcp.connector import ToolConnector
from toolchat.models import (
    ConnectionParams,
    ConversationRequest,
    MemberInfo,
    ReasoningState,
    ToolSession,
)
from toolchat.services.prompts import build_system_prompt
from toolchat.storage.redis_service import (
    clear_transport,
    get_session,
    set_session,
    touch_session,
    update_session_fields,
)

from .transport_registry import TransportRegistry

SessionMode = Literal["tool", "stateless"]


@dataclass
class ResolvedSession:
    session_id: Optional[str]
    mode: SessionMode
    system_prompt: str
    transport: Optional[ToolTransport] = None
    session: Optional[ToolSession] = None
    reasoning_state: Optional[ReasoningState] = None
    notices: List[str] = field(default_factory=list)
    tools_unavailable: bool = False

    @property
    def is_tool_mode(self) -> bool:
        return self.mode == "tool" and self.transport is not None and self.session is not None


def parse_connection(raw: Any) -> Optional[ConnectionParams]:
    if raw is None:
        return None
    if isinstance(raw, ConnectionParams):
        return raw
    return ConnectionParams.from_descriptor(raw)


class SessionResolver:
    def __init__(
        self,
        redis: Redis,
        registry: TransportRegistry,
        connector: ToolConnector,
    ) -> None:
        self.redis = redis
        self.registry = registry
        self.connector = connector

    async def resolve(
        self, request: ConversationRequest, *, model_ref: Optional[str] = None
    ) -> ResolvedSession:
        # Malformed params are a client error; they are never downgraded.
        params = parse_connection(request.connection_descriptor())
        if params is not None:
            self.connector.validate(params)

        record: Optional[ToolSession] = None
        if request.session_id:
            record = await get_session(self.redis, request.session_id)

        if record is not None:
            return await self._resume(record, request, params)

        if params is not None:
            return await self._provision(
                request, params, model_ref=model_ref, session_id=request.session_id
            )

        if request.session_id:
            logger.info(
                "resolver: session %s not found and no connection params; stateless turn",
                request.session_id,
            )
        return ResolvedSession(
            session_id=None,
            mode="stateless",
            system_prompt=build_system_prompt(request.member_info),
            reasoning_state=request.previous_tool_state,
        )

    async def attach(self, record: ToolSession) -> Tuple[ToolTransport, ToolSession]:
        """
        Return a live transport for a stored session, reconnecting if this
        process holds none.

        Raises TransportError when the session cannot be reattached; the
        stale transport pointer is cleared in that case.
        """
        session_id = record.session_id
        transport = self.registry.get(session_id)
        if transport is not None:
            touched = await touch_session(self.redis, session_id) or record
            return transport, touched

        stored = record.connection
        if stored is None or not stored.reconnectable:
            logger.info(
                "resolver: session %s has no reconnectable transport (kind=%s)",
                session_id,
                stored.kind if stored else None,
            )
            await clear_transport(self.redis, session_id)
            raise TransportError(f"Session '{session_id}' has no reconnectable transport")

        try:
            transport, tools = await self.connector.reconnect(stored)
        except ToolchatError as exc:
            logger.warning("resolver: reconnect for session %s failed: %s", session_id, exc.message)
            await clear_transport(self.redis, session_id)
            raise TransportError(
                f"Could not reconnect session '{session_id}': {exc.message}",
                details=exc.details,
            ) from exc

        await self.registry.put(session_id, transport)
        updated = await update_session_fields(
            self.redis, session_id, transport_id=transport.transport_id, tools=tools
        )
        session = updated or record.model_copy(
            update={"transport_id": transport.transport_id, "tools": tools}
        )
        logger.info(
            "resolver: reconnected session %s (transport %s)",
            session_id,
            transport.transport_id,
        )
        return transport, session

    async def _resume(
        self,
        record: ToolSession,
        request: ConversationRequest,
        params: Optional[ConnectionParams],
    ) -> ResolvedSession:
        session_id = record.session_id
        reasoning = request.previous_tool_state or record.reasoning_state
        was_live = session_id in self.registry

        try:
            transport, session = await self.attach(record)
        except ToolchatError as exc:
            logger.info("resolver: session %s has no tools this turn: %s", session_id, exc.message)
        else:
            return ResolvedSession(
                session_id=session_id,
                mode="tool",
                system_prompt=session.system_prompt or build_system_prompt(request.member_info),
                transport=transport,
                session=session,
                reasoning_state=reasoning,
                notices=[] if was_live else ["Tool connection restored."],
            )

        if params is not None and params != record.connection:
            logger.info("resolver: provisioning a new session for %s with fresh params", session_id)
            try:
                resolved = await self._provision(
                    request, params, model_ref=record.model_ref, session_id=None
                )
            except ToolchatError as exc:
                logger.warning("resolver: fresh provisioning failed: %s", exc.message)
            else:
                resolved.notices.insert(0, "Previous tool session expired; started a new one.")
                return resolved

        return ResolvedSession(
            session_id=session_id,
            mode="stateless",
            system_prompt=record.system_prompt or build_system_prompt(request.member_info),
            session=record,
            reasoning_state=reasoning,
            notices=["Tool service is unavailable for this turn; answering without tools."],
            tools_unavailable=True,
        )

    async def create_session(
        self,
        params: ConnectionParams,
        *,
        session_id: Optional[str] = None,
        member_info: Optional[MemberInfo] = None,
        reasoning_state: Optional[ReasoningState] = None,
        model_ref: Optional[str] = None,
    ) -> ToolSession:
        """
        Connect, store the durable record and register the live transport.
        """
        session_id = session_id or uuid.uuid4().hex

        transport, tools = await self.connector.connect(params)
        now = time.time()
        session = ToolSession(
            session_id=session_id,
            connection=params,
            tools=tools,
            model_ref=model_ref,
            system_prompt=build_system_prompt(member_info),
            member=member_info,
            transport_id=transport.transport_id,
            reasoning_state=reasoning_state,
            created_at=now,
            last_used=now,
        )
        await set_session(self.redis, session)
        await self.registry.put(session_id, transport)
        logger.info(
            "resolver: provisioned session %s with %d tools (%s)",
            session_id,
            len(tools),
            params.kind,
        )
        return session

    async def _provision(
        self,
        request: ConversationRequest,
        params: ConnectionParams,
        *,
        model_ref: Optional[str],
        session_id: Optional[str],
    ) -> ResolvedSession:
        session = await self.create_session(
            params,
            session_id=session_id,
            member_info=request.member_info,
            reasoning_state=request.previous_tool_state,
            model_ref=model_ref,
        )
        return ResolvedSession(
            session_id=session.session_id,
            mode="tool",
            system_prompt=session.system_prompt,
            transport=self.registry.get(session.session_id),
            session=session,
            reasoning_state=request.previous_tool_state,
        )


__all__ = ["ResolvedSession", "SessionMode", "SessionResolver", "parse_connection"]
