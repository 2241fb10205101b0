from __future__ import annotations

from fastapi import APIRouter, Body, Depends
from fastapi.responses import StreamingResponse

from toolchat.auth import require_api_key
from toolchat.deps import get_conversation_service, get_tool_connector
from toolchat.errors import ToolchatError
from toolchat.logging_config import logger
from toolchat.mcp.connector import ToolConnector
from toolchat.models import (
    ConnectionParams,
    ConnectionTestRequest,
    ConnectionTestResponse,
    ConversationRequest,
)
from toolchat.services.conversation_service import ConversationService

router = APIRouter(
    tags=["conversation"],
    dependencies=[Depends(require_api_key)],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/mcp/conversation/stream")
async def conversation_stream_endpoint(
    payload: ConversationRequest = Body(...),
    service: ConversationService = Depends(get_conversation_service),
) -> StreamingResponse:
    """
    Run one conversation turn and stream its events as SSE.

    Configuration problems (model, connection params, first connect) are
    answered with a JSON error before the stream starts; everything after
    that is reported as an `error` event inside the stream.
    """
    try:
        turn = await service.prepare(payload)
    except ToolchatError as exc:
        logger.warning("conversation_stream: rejected turn: %s", exc.message)
        raise exc.to_http() from exc

    return StreamingResponse(
        service.stream(turn),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/mcp/test-connection", response_model=ConnectionTestResponse)
async def test_connection_endpoint(
    payload: ConnectionTestRequest = Body(...),
    connector: ToolConnector = Depends(get_tool_connector),
) -> ConnectionTestResponse:
    """
    Connect with the given descriptor, list its tools and disconnect again.
    """
    try:
        params = ConnectionParams.from_descriptor(payload.connection)
        transport, tools = await connector.connect(params)
    except ToolchatError as exc:
        raise exc.to_http() from exc

    try:
        return ConnectionTestResponse(success=True, transport_kind=params.kind, tools=tools)
    finally:
        await transport.aclose()


__all__ = ["router"]
