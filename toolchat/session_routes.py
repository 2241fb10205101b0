from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import Response
from redis.asyncio import Redis

from toolchat.auth import require_api_key
from toolchat.deps import get_redis, get_session_resolver, get_transport_registry
from toolchat.errors import ToolchatError, bad_request, conflict, not_found
from toolchat.logging_config import logger
from toolchat.models import (
    ConnectionParams,
    SessionCreateRequest,
    SessionCreateResponse,
    ToolInvocationRequest,
    ToolInvocationResponse,
)
from toolchat.services.tool_result_formatter import normalize_tool_result
from toolchat.sessions.resolver import SessionResolver
from toolchat.sessions.transport_registry import TransportRegistry
from toolchat.storage.redis_service import delete_session, get_session

router = APIRouter(
    tags=["sessions"],
    dependencies=[Depends(require_api_key)],
)


@router.post(
    "/mcp/sessions",
    response_model=SessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session_endpoint(
    payload: SessionCreateRequest = Body(...),
    resolver: SessionResolver = Depends(get_session_resolver),
) -> SessionCreateResponse:
    """
    Connect to a tool provider and keep the session for later turns.
    """
    if payload.session_id and await get_session(resolver.redis, payload.session_id) is not None:
        raise conflict(f"Session '{payload.session_id}' already exists")
    try:
        params = ConnectionParams.from_descriptor(payload.connection)
        resolver.connector.validate(params)
        session = await resolver.create_session(
            params, session_id=payload.session_id, member_info=payload.member_info
        )
    except ToolchatError as exc:
        raise exc.to_http() from exc
    return SessionCreateResponse(session_id=session.session_id, tools=session.tools)


@router.post(
    "/mcp/sessions/{session_id}/tools/{tool_name}",
    response_model=ToolInvocationResponse,
)
async def call_tool_endpoint(
    session_id: str,
    tool_name: str,
    payload: Optional[ToolInvocationRequest] = Body(default=None),
    resolver: SessionResolver = Depends(get_session_resolver),
) -> ToolInvocationResponse:
    """
    Run one tool of a stored session outside a conversation turn.
    """
    record = await get_session(resolver.redis, session_id)
    if record is None:
        raise not_found(f"Session '{session_id}' not found")
    if tool_name not in {tool.name for tool in record.tools}:
        raise bad_request(
            f"Tool '{tool_name}' is not offered by session '{session_id}'",
            details={"tools": [tool.name for tool in record.tools]},
        )

    arguments = payload.arguments if payload is not None else {}
    try:
        transport, _ = await resolver.attach(record)
        raw = await transport.call_tool(tool_name, arguments)
    except ToolchatError as exc:
        logger.warning("session_routes: %s on session %s failed: %s", tool_name, session_id, exc.message)
        raise exc.to_http() from exc

    return ToolInvocationResponse(
        session_id=session_id,
        tool=tool_name,
        result=normalize_tool_result(raw),
        raw=raw,
    )


@router.get("/mcp/sessions/{session_id}")
async def get_session_endpoint(
    session_id: str,
    redis: Redis = Depends(get_redis),
    registry: TransportRegistry = Depends(get_transport_registry),
) -> Dict[str, Any]:
    """
    Return tool-session metadata (without secrets) and whether this
    process holds a live transport for it.
    """
    session = await get_session(redis, session_id)
    if session is None:
        raise not_found(f"Session '{session_id}' not found")
    data = session.public_view()
    data["transport_live"] = session_id in registry
    return data


@router.delete(
    "/mcp/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_session_endpoint(
    session_id: str,
    redis: Redis = Depends(get_redis),
    registry: TransportRegistry = Depends(get_transport_registry),
) -> Response:
    """
    Tear a session down: close the local transport and drop the record.
    """
    closed = await registry.close(session_id)
    existed = await delete_session(redis, session_id)
    if not existed and not closed:
        raise not_found(f"Session '{session_id}' not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
