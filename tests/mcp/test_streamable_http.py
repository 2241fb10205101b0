import asyncio

import pytest

from toolchat.mcp.base import ToolProviderError
from toolchat.mcp.streamable_http import LOCAL_SESSION_PREFIX, StreamableHttpTransport

URL = "https://tools.example/mcp"


def _transport(server, **kwargs):
    kwargs.setdefault("timeout", 5)
    return StreamableHttpTransport(URL, http_transport=server.transport(), **kwargs)


@pytest.mark.asyncio
async def test_handshake_list_and_call(fakes):
    server = fakes.FakeMcpServer()
    transport = _transport(server, headers={"X-Tenant": "t1"})
    try:
        info = await transport.initialize()
        assert info["serverInfo"]["name"] == "fake"
        assert transport.transport_id == "srv-session-1"
        assert transport.reconnectable

        tools = await transport.list_tools()
        assert [t["name"] for t in tools] == ["list_files"]
        assert tools[0]["inputSchema"]["properties"]["path"]["type"] == "string"

        result = await transport.call_tool("list_files", {"path": "."})
        assert result["content"][0]["text"] == "a.txt\nb.txt"
    finally:
        await transport.aclose()

    assert server.methods[:2] == ["initialize", "notifications/initialized"]
    assert "tools/call" in server.methods
    # The server-issued session id is echoed on every request after initialize.
    assert server.session_headers[0] is None
    assert set(server.session_headers[1:]) == {"srv-session-1"}
    assert server.deleted == 1


@pytest.mark.asyncio
async def test_server_without_session_id_gets_local_id(fakes):
    server = fakes.FakeMcpServer(session_id=None)
    transport = _transport(server)
    await transport.initialize()
    assert transport.transport_id.startswith(LOCAL_SESSION_PREFIX)
    assert transport.server_session_id is None
    await transport.aclose()

    # Locally generated ids are never sent to the server.
    assert set(server.session_headers) == {None}
    assert server.deleted == 0


@pytest.mark.asyncio
async def test_tool_level_error_is_raised(fakes):
    server = fakes.FakeMcpServer(
        results={"write_file": {"isError": True, "content": [{"type": "text", "text": "disk full"}]}}
    )
    transport = _transport(server)
    await transport.initialize()
    try:
        with pytest.raises(ToolProviderError) as exc_info:
            await transport.call_tool("write_file", {})
    finally:
        await transport.aclose()
    assert exc_info.value.message == "disk full"


@pytest.mark.asyncio
async def test_json_rpc_error_carries_code(fakes):
    server = fakes.FakeMcpServer()
    transport = _transport(server)
    await transport.initialize()
    try:
        with pytest.raises(ToolProviderError) as exc_info:
            await transport.call_tool("missing_tool", {})
    finally:
        await transport.aclose()
    assert exc_info.value.code == -32602
    assert "missing_tool" in exc_info.value.message


@pytest.mark.asyncio
async def test_unreachable_provider_and_closed_transport(fakes):
    server = fakes.FakeMcpServer()
    server.down = True
    transport = _transport(server, timeout=2)
    with pytest.raises(ToolProviderError):
        await transport.initialize()

    await transport.aclose()
    with pytest.raises(ToolProviderError):
        await transport.list_tools()


@pytest.mark.asyncio
async def test_transport_is_usable_from_another_task(fakes):
    server = fakes.FakeMcpServer()
    transport = _transport(server)
    await transport.initialize()

    # Requests and teardown happen in tasks other than the one that connected,
    # as they do when the registry hands a transport to a later request.
    result = await asyncio.create_task(transport.call_tool("list_files", {}))
    assert result["content"][0]["text"] == "a.txt\nb.txt"
    await asyncio.create_task(transport.aclose())

    assert server.deleted == 1
    with pytest.raises(ToolProviderError):
        await transport.call_tool("list_files", {})

